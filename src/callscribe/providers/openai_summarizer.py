"""
OpenAI call summarizer.

Calls an OpenAI-compatible Chat Completions endpoint over aiohttp and parses
the JSON the model returns. One attempt per call; failures raise
SummaryProviderError and the orchestrator falls back to a local digest.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Sequence

import aiohttp

from ..config import OpenAIConfig
from ..core.errors import SummaryProviderError
from ..core.models import CallParticipant, CallSession, TranscriptSegment
from ..logging_config import get_logger
from .base import SummarizationProvider, SummaryDraft

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You summarize recruiting calls. Return compact JSON with: "
    '{ "summary": string, "keyPoints": [string], "actionItems": [string] }. '
    "Summary <= 120 words; 3-6 keyPoints; actionItems must be concrete next steps."
)


def _make_http_headers(config: OpenAIConfig) -> Dict[str, str]:
    headers = {
        "Authorization": f"Bearer {config.api_key}",
        "Content-Type": "application/json",
    }
    if config.organization:
        headers["OpenAI-Organization"] = config.organization
    return headers


def _fmt_utc(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%SZ")


def build_prompt(
    session: CallSession,
    transcript: Sequence[TranscriptSegment],
    roster: Sequence[CallParticipant],
) -> str:
    initiator_name = session.initiator_id
    for participant in roster:
        if participant.user_id.lower() == session.initiator_id.lower():
            initiator_name = participant.display_name
            break

    lines = [
        "Summarize this recruiting call.",
        f"Started at (UTC): {_fmt_utc(session.started_at)}",
    ]
    if session.ended_at is not None:
        lines.append(f"Ended at (UTC): {_fmt_utc(session.ended_at)}")
    lines.append(f"Started by: {initiator_name}")
    lines.append("Participants:")
    lines.extend(f"- {p.display_name} ({p.user_id})" for p in roster)
    lines.append("")
    lines.append("Transcript:")
    if not transcript:
        lines.append("No transcript captured.")
    else:
        lines.extend(f"{s.speaker_label}: {s.text}" for s in transcript)
    lines.append("")
    lines.append("Return JSON only with fields: summary, keyPoints, actionItems.")
    return "\n".join(lines) + "\n"


def extract_json(raw: str) -> Optional[str]:
    """Text between the first '{' and the last '}', else the trimmed input."""
    if raw is None or not raw.strip():
        return None
    trimmed = raw.strip()
    first = trimmed.find("{")
    last = trimmed.rfind("}")
    if first >= 0 and last > first:
        return trimmed[first:last + 1]
    return trimmed


def _lookup(root: Dict[str, Any], *names: str) -> Any:
    lowered = {str(k).lower(): v for k, v in root.items()}
    for name in names:
        if name.lower() in lowered:
            return lowered[name.lower()]
    return None


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]
    return []


def parse_summary_json(content: str) -> Optional[SummaryDraft]:
    """
    Parse model output into a draft.

    Accepts ``summary``/``overview``, ``keyPoints``/``key_points`` and
    ``actionItems``/``action_items`` (case-insensitive); a bare string where a
    list is expected becomes a one-item list. Returns None when nothing usable
    is found.
    """
    text = extract_json(content)
    if not text:
        return None
    try:
        root = json.loads(text)
    except ValueError:
        return None
    if not isinstance(root, dict):
        return None

    summary = _lookup(root, "summary")
    if not isinstance(summary, str):
        summary = _lookup(root, "overview")
    summary = summary.strip() if isinstance(summary, str) else ""

    key_points = _string_list(_lookup(root, "keyPoints", "key_points"))
    action_items = _string_list(_lookup(root, "actionItems", "action_items"))

    draft = SummaryDraft(summary=summary, key_points=key_points, action_items=action_items)
    return None if draft.is_empty else draft


class OpenAISummarizationProvider(SummarizationProvider):
    """Chat Completions summarizer."""

    def __init__(
        self,
        config: OpenAIConfig,
        *,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self._config = config
        self._session_factory = session_factory
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def configured(self) -> bool:
        return self._config.configured

    async def stop(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _ensure_session(self) -> None:
        if self._session and not self._session.closed:
            return
        factory = self._session_factory or aiohttp.ClientSession
        self._session = factory()

    def _build_chat_payload(
        self,
        session: CallSession,
        transcript: Sequence[TranscriptSegment],
        roster: Sequence[CallParticipant],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(session, transcript, roster)},
            ],
        }
        if self._config.temperature is not None:
            payload["temperature"] = self._config.temperature
        if self._config.max_tokens is not None:
            payload["max_tokens"] = self._config.max_tokens
        return payload

    async def summarize(
        self,
        transcript: Sequence[TranscriptSegment],
        roster: Sequence[CallParticipant],
        session: CallSession,
    ) -> SummaryDraft:
        if not self._config.api_key:
            raise SummaryProviderError("OpenAI summarizer requires an API key")

        await self._ensure_session()
        assert self._session
        payload = self._build_chat_payload(session, transcript, roster)
        url = self._config.base_url.rstrip("/") + "/chat/completions"

        logger.debug(
            "OpenAI summary request",
            session_id=session.id,
            model=payload.get("model"),
            segment_count=len(transcript),
        )

        try:
            async with self._session.post(
                url,
                json=payload,
                headers=_make_http_headers(self._config),
                timeout=aiohttp.ClientTimeout(total=self._config.timeout_sec),
            ) as response:
                body = await response.text()
                if response.status >= 400:
                    logger.error(
                        "OpenAI summary request failed",
                        session_id=session.id,
                        status=response.status,
                        body_preview=body[:128],
                    )
                    raise SummaryProviderError(f"OpenAI returned HTTP {response.status}")
        except aiohttp.ClientError as e:
            raise SummaryProviderError(f"OpenAI connection error: {e}") from e

        try:
            data = json.loads(body)
        except ValueError as e:
            raise SummaryProviderError("OpenAI returned a non-JSON body") from e

        choices = data.get("choices") or []
        content = ((choices[0].get("message") or {}).get("content") if choices else None) or ""
        if not content.strip():
            raise SummaryProviderError("OpenAI returned empty content")

        draft = parse_summary_json(content)
        if draft is None:
            raise SummaryProviderError("OpenAI summary response could not be parsed")

        logger.info(
            "OpenAI summary received",
            session_id=session.id,
            model=payload.get("model"),
            key_points=len(draft.key_points),
            action_items=len(draft.action_items),
        )
        return draft
