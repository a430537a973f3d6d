import json
from datetime import datetime, timezone

import aiohttp
import pytest

from callscribe.config import OpenAIConfig
from callscribe.core.errors import SummaryProviderError
from callscribe.core.models import CallParticipant, CallSession, TranscriptSegment
from callscribe.providers.openai_summarizer import (
    SYSTEM_PROMPT,
    OpenAISummarizationProvider,
    build_prompt,
    extract_json,
    parse_summary_json,
)

SESSION_ID = "11111111-1111-1111-1111-111111111111"


class _FakeResponse:
    def __init__(self, body: str, status: int = 200):
        self._body = body
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def text(self):
        return self._body


class _FakeSession:
    def __init__(self, body: str = "", status: int = 200, error: Exception = None):
        self._body = body
        self._status = status
        self._error = error
        self.requests = []
        self.closed = False

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self._error is not None:
            raise self._error
        return _FakeResponse(self._body, status=self._status)

    async def close(self):
        self.closed = True


def _completion(content: str) -> str:
    return json.dumps({"choices": [{"message": {"role": "assistant", "content": content}}]})


def _config(**overrides) -> OpenAIConfig:
    values = {"api_key": "sk-test", "base_url": "https://llm.example.com/v1/", "organization": "org-1"}
    values.update(overrides)
    return OpenAIConfig(**values)


def _call():
    alice = CallParticipant(user_id="alice", display_name="Alice Smith")
    bob = CallParticipant(user_id="bob", display_name="Bob Jones")
    session = CallSession(
        id=SESSION_ID,
        group_id="group-1",
        initiator_id="alice",
        started_at=datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc),
        ended_at=datetime(2024, 5, 1, 10, 30, 0, tzinfo=timezone.utc),
        participants=(alice, bob),
    )
    transcript = [
        TranscriptSegment(SESSION_ID, "Thanks for joining.", speaker_display_name="Alice Smith"),
        TranscriptSegment(SESSION_ID, "Happy to be here.", speaker_user_id="bob"),
    ]
    return session, transcript, [alice, bob]


class TestParseSummaryJson:
    def test_fenced_json_with_snake_case_keys(self):
        content = 'Here you go:\n```json\n{"Summary": " Good call. ", "key_points": ["A", " "], "ACTION_ITEMS": "Send offer"}\n```'

        draft = parse_summary_json(content)

        assert draft.summary == "Good call."
        assert draft.key_points == ["A"]
        assert draft.action_items == ["Send offer"]

    def test_overview_is_accepted_as_summary(self):
        draft = parse_summary_json('{"overview": "Short sync", "keyPoints": []}')

        assert draft.summary == "Short sync"

    @pytest.mark.parametrize("content", ["", "no json here", "[1, 2]", '{"summary": "", "keyPoints": []}'])
    def test_unusable_output(self, content):
        assert parse_summary_json(content) is None

    def test_extract_json(self):
        assert extract_json('prefix {"a": 1} suffix') == '{"a": 1}'
        assert extract_json("   ") is None


def test_build_prompt_lists_roster_and_transcript():
    session, transcript, roster = _call()

    prompt = build_prompt(session, transcript, roster)

    assert "Started at (UTC): 2024-05-01 10:00:00Z" in prompt
    assert "Ended at (UTC): 2024-05-01 10:30:00Z" in prompt
    assert "Started by: Alice Smith" in prompt
    assert "- Bob Jones (bob)" in prompt
    assert "Alice Smith: Thanks for joining." in prompt
    assert "bob: Happy to be here." in prompt
    assert "No transcript captured." in build_prompt(session, [], roster)


@pytest.mark.asyncio
async def test_summarize_posts_chat_completion():
    session, transcript, roster = _call()
    fake_session = _FakeSession(_completion('{"summary": "Agreed next steps.", "keyPoints": ["Offer"], "actionItems": ["Email Bob"]}'))
    provider = OpenAISummarizationProvider(_config(), session_factory=lambda: fake_session)

    draft = await provider.summarize(transcript, roster, session)

    assert draft.summary == "Agreed next steps."
    assert draft.action_items == ["Email Bob"]
    request = fake_session.requests[0]
    assert request["url"] == "https://llm.example.com/v1/chat/completions"
    assert request["headers"]["Authorization"] == "Bearer sk-test"
    assert request["headers"]["OpenAI-Organization"] == "org-1"
    assert request["json"]["model"] == "gpt-4o-mini"
    assert request["json"]["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert isinstance(request["timeout"], aiohttp.ClientTimeout)

    await provider.stop()
    assert fake_session.closed


@pytest.mark.asyncio
@pytest.mark.parametrize("fake_session", [
    _FakeSession("rate limited", status=429),
    _FakeSession("<html>"),
    _FakeSession(_completion("   ")),
    _FakeSession(_completion("I cannot summarize this.")),
    _FakeSession(error=aiohttp.ClientConnectionError("refused")),
])
async def test_summarize_failures_raise_provider_error(fake_session):
    session, transcript, roster = _call()
    provider = OpenAISummarizationProvider(_config(), session_factory=lambda: fake_session)

    with pytest.raises(SummaryProviderError):
        await provider.summarize(transcript, roster, session)


@pytest.mark.asyncio
async def test_missing_api_key_is_not_configured():
    session, transcript, roster = _call()
    provider = OpenAISummarizationProvider(_config(api_key=None))

    assert provider.configured is False
    with pytest.raises(SummaryProviderError):
        await provider.summarize(transcript, roster, session)
