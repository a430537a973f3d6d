"""Shared fixtures: participants, a recording transport and an in-memory core."""

import json
from typing import List, Optional

import pytest

from callscribe.config import AppConfig
from callscribe.core.call_service import build_call_service
from callscribe.core.models import CallParticipant
from callscribe.providers.base import CallTransport, ConnectionInfo


class RecordingTransport(CallTransport):
    """Transport double that records every call."""

    def __init__(self, start_result=True, stop_result=True, invite_result=True, connection: Optional[ConnectionInfo] = None):
        self.start_result = start_result
        self.stop_result = stop_result
        self.invite_result = invite_result
        self.connection = connection
        self.started: List[str] = []
        self.stopped: List[str] = []
        self.invited: List[str] = []
        self.connected: List[str] = []

    async def add_participant(self, session, participant):
        self.invited.append(participant.user_id)
        if isinstance(self.invite_result, Exception):
            raise self.invite_result
        return self.invite_result

    async def connect_call(self, session):
        self.connected.append(session.id)
        return self.connection

    async def start_transcription(self, session):
        self.started.append(session.id)
        if isinstance(self.start_result, Exception):
            raise self.start_result
        return self.start_result

    async def stop_transcription(self, session):
        self.stopped.append(session.id)
        if isinstance(self.stop_result, Exception):
            raise self.stop_result
        return self.stop_result


def event_body(*events) -> bytes:
    """Serialize ``(event_type, data)`` pairs as a webhook body."""
    return json.dumps([{"eventType": event_type, "data": data} for event_type, data in events]).encode("utf-8")


@pytest.fixture
def alice():
    return CallParticipant(user_id="alice", display_name="Alice Smith", identity="8:acs:alice-identity")


@pytest.fixture
def bob():
    return CallParticipant(user_id="bob", display_name="Bob Jones", identity="8:acs:bob-identity")


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def service(transport):
    return build_call_service(AppConfig(), transport=transport)


@pytest.fixture
def make_body():
    return event_body


@pytest.fixture
def make_transport():
    return RecordingTransport
