"""Tests for transcription start/stop side effects and background task handling."""

import asyncio

import pytest

from callscribe.config import AppConfig, FeatureFlagsConfig
from callscribe.core.background import BackgroundTasks
from callscribe.core.call_service import build_call_service
from callscribe.core.state_machine import CallStatus
from callscribe.providers.base import ConnectionInfo


class TestStartTranscription:
    @pytest.mark.asyncio
    async def test_concurrent_starts_call_transport_once(self, service, transport, alice):
        started = await service.create_session(alice)

        results = await asyncio.gather(*(service.side_effects.start_transcription(started.session.id) for _ in range(3)))
        again = await service.side_effects.start_transcription(started.session.id)
        await service.side_effects.background.drain()

        assert sorted(results) == [False, False, True]
        assert again is False
        assert transport.started == [started.session.id]

    @pytest.mark.asyncio
    async def test_failed_start_leaves_session_retryable(self, make_transport, alice):
        transport = make_transport(start_result=False)
        service = build_call_service(AppConfig(), transport=transport)
        started = await service.create_session(alice)

        assert await service.side_effects.start_transcription(started.session.id) is False
        transport.start_result = True
        assert await service.side_effects.start_transcription(started.session.id) is True
        await service.side_effects.background.drain()

    @pytest.mark.asyncio
    async def test_terminal_or_disabled_sessions_are_skipped(self, make_transport, alice):
        transport = make_transport()
        disabled = build_call_service(
            AppConfig(features=FeatureFlagsConfig(enable_transcription=False)),
            transport=transport,
        )
        enabled = build_call_service(AppConfig(), transport=transport)
        a = await disabled.create_session(alice)
        b = await enabled.create_session(alice)
        await enabled.registry.transition_status(b.session.id, CallStatus.COMPLETED)

        assert await disabled.side_effects.start_transcription(a.session.id) is False
        assert await enabled.side_effects.start_transcription(b.session.id) is False
        assert transport.started == []
        await disabled.side_effects.background.drain()
        await enabled.side_effects.background.drain()


class TestStopTranscription:
    @pytest.mark.asyncio
    async def test_stop_needs_connection_id(self, make_transport, alice):
        transport = make_transport(connection=ConnectionInfo("cc-1"))
        service = build_call_service(AppConfig(), transport=transport)
        started = await service.create_session(alice)

        assert await service.side_effects.stop_transcription(started.session) is False
        await service.side_effects.background.drain()
        connected = await service.get_session(started.session.id)
        assert await service.side_effects.stop_transcription(connected) is True
        assert transport.stopped == [started.session.id]

    @pytest.mark.asyncio
    async def test_transport_error_is_logged_not_raised(self, make_transport, alice):
        transport = make_transport(connection=ConnectionInfo("cc-1"), stop_result=RuntimeError("gone"))
        service = build_call_service(AppConfig(), transport=transport)
        started = await service.create_session(alice)
        await service.side_effects.background.drain()

        session = await service.get_session(started.session.id)
        assert await service.side_effects.stop_transcription(session) is False


class TestCallFinished:
    @pytest.mark.asyncio
    async def test_summary_trigger_respects_feature_flag(self, make_transport, alice):
        service = build_call_service(
            AppConfig(features=FeatureFlagsConfig(enable_summaries=False)),
            transport=make_transport(),
        )
        started = await service.create_session(alice)
        change = await service.registry.transition_status(started.session.id, CallStatus.COMPLETED)

        service.side_effects.call_finished(change.session)
        await service.side_effects.background.drain()

        assert await service.summaries.get_summary(started.session.id) is None


class TestBackgroundTasks:
    @pytest.mark.asyncio
    async def test_failures_are_contained_and_tasks_released(self):
        background = BackgroundTasks()

        async def boom():
            raise RuntimeError("detached failure")

        async def fine():
            return "ok"

        failing = background.spawn(boom(), name="boom")
        ok = background.spawn(fine())
        assert len(background) == 2

        await background.drain()

        assert len(background) == 0
        assert isinstance(failing.exception(), RuntimeError)
        assert ok.result() == "ok"

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        background = BackgroundTasks()
        task = background.spawn(asyncio.sleep(60))

        await background.cancel_all()

        assert task.cancelled()
        assert len(background) == 0
