from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field, field_validator

from ..core.call_service import CallService, StartedCall
from ..core.errors import IdentityProvisioningError
from ..core.models import CallParticipant, CallSession
from ..logging_config import get_logger
from .deps import get_call_service, require_session_id

logger = get_logger(__name__)

router = APIRouter(prefix="/calls", tags=["calls"])


class ParticipantIn(BaseModel):
    user_id: str = Field(validation_alias=AliasChoices("userId", "user_id"))
    display_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("displayName", "display_name"))
    identity: Optional[str] = None

    @field_validator("user_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("userId is required")
        return value

    def to_participant(self) -> CallParticipant:
        display_name = (self.display_name or "").strip() or self.user_id
        return CallParticipant(user_id=self.user_id, display_name=display_name, identity=self.identity or None)


class StartCallRequest(BaseModel):
    initiator: ParticipantIn
    participants: List[ParticipantIn] = Field(default_factory=list)


class AddParticipantsRequest(BaseModel):
    participants: List[ParticipantIn] = Field(default_factory=list)


def _session_payload(session: CallSession) -> Dict[str, Any]:
    payload = session.to_dict()
    payload["callSessionId"] = payload.pop("id")
    return payload


def _with_token(started: StartedCall) -> Dict[str, Any]:
    payload = _session_payload(started.session)
    payload["identity"] = started.identity
    payload["token"] = started.token.token if started.token else None
    payload["tokenExpiresAt"] = (
        started.token.expires_at.isoformat() if started.token and started.token.expires_at else None
    )
    return payload


@router.post("")
async def start_call(request: StartCallRequest, service: CallService = Depends(get_call_service)):
    try:
        started = await service.create_session(
            request.initiator.to_participant(),
            [p.to_participant() for p in request.participants],
        )
    except IdentityProvisioningError as e:
        raise HTTPException(status_code=500, detail=f"Unable to start call ({e}).")
    return _with_token(started)


@router.post("/{session_id}/join")
async def join_call(session_id: str, request: ParticipantIn, service: CallService = Depends(get_call_service)):
    key = require_session_id(session_id)
    try:
        joined = await service.join_session(key, request.to_participant())
    except IdentityProvisioningError as e:
        raise HTTPException(status_code=500, detail=f"Unable to join call ({e}).")
    if joined is None:
        raise HTTPException(status_code=404, detail="Call session not found.")
    return _with_token(joined)


@router.post("/{session_id}/participants")
async def add_participants(
    session_id: str,
    request: AddParticipantsRequest,
    service: CallService = Depends(get_call_service),
):
    key = require_session_id(session_id)
    if not request.participants:
        raise HTTPException(status_code=400, detail="participants is required.")

    try:
        result = await service.add_participants(key, [p.to_participant() for p in request.participants])
    except IdentityProvisioningError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if result is None:
        raise HTTPException(status_code=404, detail="Call session not found.")

    skipped = [{"userId": s.user_id, "reason": s.reason} for s in result.skipped]
    if not result.added:
        return JSONResponse(status_code=400, content={"error": "No new participants to add.", "skipped": skipped})

    payload = _session_payload(result.session)
    payload["added"] = [
        {**a.participant.to_dict(), "inviteDispatched": a.invite_dispatched} for a in result.added
    ]
    payload["skipped"] = skipped
    return payload


@router.get("/{session_id}/transcript")
async def get_transcript(session_id: str, service: CallService = Depends(get_call_service)):
    view = await service.get_transcript(require_session_id(session_id))
    if view is None:
        raise HTTPException(status_code=404, detail="Call session not found.")
    payload = _session_payload(view.session)
    payload["segments"] = [s.to_dict() for s in view.segments]
    return payload


@router.get("/{session_id}/summary")
async def get_summary(session_id: str, service: CallService = Depends(get_call_service)):
    view = await service.get_summary(require_session_id(session_id))
    if view is None:
        raise HTTPException(status_code=404, detail="Call session not found.")
    summary = view.summary
    payload = _session_payload(view.session)
    payload.update({
        "summaryStatus": view.status,
        "summary": summary.summary if summary else None,
        "keyPoints": list(summary.key_points) if summary else [],
        "actionItems": list(summary.action_items) if summary else [],
        "summaryGeneratedAt": summary.generated_at.isoformat() if summary else None,
        "summarySource": summary.source if summary else None,
    })
    return payload
