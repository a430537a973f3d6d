"""
Provider event webhook.

POST accepts a JSON array or object of events; OPTIONS answers the
CloudEvents abuse-protection handshake. The route path comes from
``webhook.path`` so the router is built per application.
"""

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from ..core.call_service import CallService
from ..core.errors import InvalidEventPayload
from ..logging_config import get_logger
from .deps import get_call_service

logger = get_logger(__name__)


async def receive_events(request: Request, service: CallService = Depends(get_call_service)):
    if not service.authorize(request.headers):
        logger.warning("Rejected webhook call with a missing or invalid key", client=getattr(request.client, "host", None))
        return JSONResponse(status_code=401, content={"error": "Unauthorized."})

    body = await request.body()
    try:
        result = await service.record_events(body, request.headers)
    except InvalidEventPayload as e:
        logger.warning("Rejected provider events payload", error=str(e))
        return JSONResponse(status_code=400, content={"error": str(e)})

    if result.validation_response is not None:
        return JSONResponse(status_code=200, content={"validationResponse": result.validation_response})

    return JSONResponse(
        status_code=202,
        content={"received": result.received, "correlated": result.correlated},
    )


async def events_handshake(request: Request):
    origin = request.headers.get("webhook-request-origin")
    if origin:
        logger.info("Webhook handshake answered", origin=origin)
        return Response(
            status_code=200,
            headers={"WebHook-Allowed-Origin": origin, "WebHook-Allowed-Rate": "*"},
        )
    return Response(status_code=204, headers={"Allow": "POST, OPTIONS"})


def build_router(path: str) -> APIRouter:
    router = APIRouter(tags=["events"])
    router.add_api_route(path, receive_events, methods=["POST"])
    router.add_api_route(path, events_handshake, methods=["OPTIONS"])
    return router
