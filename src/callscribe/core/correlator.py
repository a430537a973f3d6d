"""
Event correlation.

Maps an inbound event to a call session with a ranked matcher chain; the
first matcher that produces a session wins:

1. explicit session id (must parse as a UUID)
2. operation context (must parse as a UUID)
3. group id
4. connection id
5. server call id: raw, canonically padded base64, and base64-decoded text,
   each tried against the server-call-id index and then the connection-id index
6. pending connection: the most recent session with no connection id yet

A well-formed session id or operation context is trusted as-is, even when
no such session exists; the dispatcher then drops the event rather than
falling through to weaker matchers.

Step 6 is a heuristic that can misattribute events when two calls start
concurrently before either is connected. It is always logged at WARNING.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import List, Optional

from ..logging_config import get_logger
from .events import EventData
from .models import parse_session_key
from .session_registry import CallSessionRegistry

logger = get_logger(__name__)

MATCH_SESSION_ID = "session_id"
MATCH_OPERATION_CONTEXT = "operation_context"
MATCH_GROUP_ID = "group_id"
MATCH_CONNECTION_ID = "connection_id"
MATCH_SERVER_CALL_ID = "server_call_id"
MATCH_PENDING_CONNECTION = "pending_connection"


@dataclass(frozen=True)
class CorrelationMatch:
    session_id: str
    matcher: str

    @property
    def is_heuristic(self) -> bool:
        return self.matcher == MATCH_PENDING_CONNECTION


def server_call_id_variants(value: Optional[str]) -> List[str]:
    """
    Raw value, canonically padded base64, then decoded text; unique, in order.

    Providers emit the same server call id padded in some event types and
    unpadded (or url-safe) in others, and occasionally decoded.
    """
    raw = (value or "").strip()
    if not raw:
        return []
    variants = [raw]

    stripped = raw.rstrip("=")
    padded = stripped + "=" * (-len(stripped) % 4)
    variants.append(padded)

    for decoder in (base64.b64decode, base64.urlsafe_b64decode):
        try:
            decoded = decoder(padded).decode("utf-8")
        except (binascii.Error, ValueError):
            continue
        decoded = decoded.strip()
        if decoded and decoded.isprintable():
            variants.append(decoded)
            break

    unique = []
    for variant in variants:
        if variant not in unique:
            unique.append(variant)
    return unique


class EventCorrelator:
    def __init__(self, registry: CallSessionRegistry):
        self._registry = registry

    async def resolve(self, data: Optional[EventData]) -> Optional[CorrelationMatch]:
        """Resolve the session an event concerns, or None when nothing matches."""
        if data is None:
            data = EventData()

        explicit = parse_session_key(data.session_id)
        if explicit is not None:
            return CorrelationMatch(explicit, MATCH_SESSION_ID)

        context = parse_session_key(data.operation_context)
        if context is not None:
            return CorrelationMatch(context, MATCH_OPERATION_CONTEXT)

        session = await self._registry.find_by_group_id(data.group_id)
        if session is not None:
            return CorrelationMatch(session.id, MATCH_GROUP_ID)

        session = await self._registry.find_by_connection_id(data.connection_id)
        if session is not None:
            return CorrelationMatch(session.id, MATCH_CONNECTION_ID)

        for variant in server_call_id_variants(data.server_call_id):
            session = await self._registry.find_by_server_call_id(variant)
            if session is None:
                session = await self._registry.find_by_connection_id(variant)
            if session is not None:
                return CorrelationMatch(session.id, MATCH_SERVER_CALL_ID)

        session = await self._registry.find_pending_connection()
        if session is not None:
            logger.warning(
                "Event correlated by pending-connection fallback",
                matcher=MATCH_PENDING_CONNECTION,
                session_id=session.id,
                raw_identifiers=data.identifiers(),
            )
            return CorrelationMatch(session.id, MATCH_PENDING_CONNECTION)

        return None
