"""
FastAPI application factory.

The app owns one ``CallService`` and the stale-call reaper task; both live
for the lifespan of the app.
"""

import asyncio
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .api import calls, events, health
from .config import AppConfig, load_config
from .core.call_service import CallService, build_call_service
from .core.reaper import StaleSessionReaper
from .logging_config import get_logger, set_correlation_id
from .providers.openai_summarizer import OpenAISummarizationProvider

logger = get_logger(__name__)

CORRELATION_HEADER = "x-correlation-id"


def _parse_cors_origins() -> list[str]:
    raw = (os.getenv("CALLSCRIBE_CORS_ORIGINS", "") or "").strip()
    if not raw or raw == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


def create_app(
    config: Optional[AppConfig] = None,
    service: Optional[CallService] = None,
) -> FastAPI:
    config = config or load_config()

    summarizer = None
    if service is None:
        if config.openai.configured:
            summarizer = OpenAISummarizationProvider(config.openai)
        else:
            logger.warning("OpenAI configuration missing; summaries will use deterministic fallback text")
        service = build_call_service(config, summarizer=summarizer)

    reaper = StaleSessionReaper.from_config(service.registry, service.side_effects, config.reaper)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reaper_task = None
        if config.reaper.enabled:
            reaper_task = asyncio.create_task(reaper.run(), name="stale-call-reaper")
        try:
            yield
        finally:
            if reaper_task is not None:
                reaper_task.cancel()
                await asyncio.gather(reaper_task, return_exceptions=True)
            await service.close()
            if summarizer is not None:
                await summarizer.stop()
            logger.info("callscribe stopped")

    app = FastAPI(title="callscribe", lifespan=lifespan)
    app.state.config = config
    app.state.call_service = service
    app.state.reaper = reaper

    cors_origins = _parse_cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def bind_correlation_id(request: Request, call_next):
        correlation_id = set_correlation_id(request.headers.get(CORRELATION_HEADER))
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    app.include_router(events.build_router(config.webhook.path))
    app.include_router(calls.router, prefix="/api")
    app.include_router(health.router, prefix="/api")
    return app
