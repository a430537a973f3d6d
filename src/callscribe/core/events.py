"""
Inbound provider event parsing.

Webhook bodies are a JSON array or a single JSON object. Every element
carries an event type, an opaque ``data`` object and an optional event time.
Property names are matched case-insensitively (keys are lower-cased before
validation) because providers are not consistent about casing.

Transcription data comes in three shapes, modelled as a tagged union:

- ``SegmentBatch``: ``data.segments`` holds a list of fragments
- ``SingleTranscription``: ``data.transcription`` (or ``transcriptionData``)
- ``BareText``: only a top-level ``data.text``
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InvalidEventPayload
from .state_machine import CallEventKind

SUBSCRIPTION_VALIDATION_EVENT = "Microsoft.EventGrid.SubscriptionValidationEvent"

TICKS_PER_SECOND = 10_000_000


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(v) for v in value]
    return value


class TranscriptionFragment(BaseModel):
    """One transcription fragment as delivered by the provider."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    text: Optional[str] = None
    speaker_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("speakerid", "participantrawid", "participantid"),
    )
    speaker_display_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("speakerdisplayname", "participantdisplayname"),
    )
    offset_seconds: Optional[float] = Field(default=None, validation_alias=AliasChoices("offsetseconds", "offset"))
    offset_ticks: Optional[int] = Field(default=None, validation_alias="offsetinticks")
    duration_seconds: Optional[float] = Field(default=None, validation_alias=AliasChoices("durationseconds", "duration"))
    duration_ticks: Optional[int] = Field(default=None, validation_alias="durationinticks")
    confidence: Optional[float] = None
    sentiment: Optional[str] = None
    language: Optional[str] = Field(default=None, validation_alias=AliasChoices("languageidentified", "language"))
    locale: Optional[str] = None
    result_status: Optional[str] = Field(default=None, validation_alias=AliasChoices("resultstatus", "resultstate"))
    is_final: Optional[bool] = Field(default=None, validation_alias="isfinal")

    @model_validator(mode="before")
    @classmethod
    def _flatten_sentiment(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("sentiment") is None:
            nested = data.get("sentimentanalysisresult")
            if isinstance(nested, dict) and nested.get("sentiment") is not None:
                data = dict(data)
                data["sentiment"] = nested["sentiment"]
        return data

    @property
    def offset(self) -> Optional[float]:
        if self.offset_seconds is not None:
            return self.offset_seconds
        if self.offset_ticks is not None:
            return self.offset_ticks / TICKS_PER_SECOND
        return None

    @property
    def duration(self) -> Optional[float]:
        if self.duration_seconds is not None:
            return self.duration_seconds
        if self.duration_ticks is not None:
            return self.duration_ticks / TICKS_PER_SECOND
        return None


class EventData(TranscriptionFragment):
    """The ``data`` object of a provider event."""

    session_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("callsessionid", "sessionid"))
    operation_context: Optional[str] = Field(default=None, validation_alias="operationcontext")
    group_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("groupid", "acsgroupid", "groupcallid"))
    connection_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("callconnectionid", "connectionid"))
    server_call_id: Optional[str] = Field(default=None, validation_alias="servercallid")
    status: Optional[str] = None
    reason: Optional[str] = None
    validation_code: Optional[str] = Field(default=None, validation_alias="validationcode")
    segments: Optional[List[TranscriptionFragment]] = None
    transcription: Optional[TranscriptionFragment] = Field(
        default=None,
        validation_alias=AliasChoices("transcription", "transcriptiondata"),
    )
    result_information: Optional[Dict[str, Any]] = Field(default=None, validation_alias="resultinformation")

    def identifiers(self) -> Dict[str, Optional[str]]:
        """Every raw identifier, for correlation diagnostics."""
        return {
            "session_id": self.session_id,
            "operation_context": self.operation_context,
            "group_id": self.group_id,
            "connection_id": self.connection_id,
            "server_call_id": self.server_call_id,
        }


@dataclass(frozen=True)
class IncomingEvent:
    event_type: str
    data: EventData
    event_time: Optional[datetime] = None

    @property
    def kind(self) -> CallEventKind:
        return classify_event(self.event_type)


# Transcription payload variants -------------------------------------------------

@dataclass(frozen=True)
class SegmentBatch:
    fragments: Tuple[TranscriptionFragment, ...]
    envelope: EventData


@dataclass(frozen=True)
class SingleTranscription:
    fragment: TranscriptionFragment
    envelope: EventData


@dataclass(frozen=True)
class BareText:
    envelope: EventData


@dataclass(frozen=True)
class EmptyPayload:
    pass


TranscriptionPayload = Union[SegmentBatch, SingleTranscription, BareText, EmptyPayload]


@dataclass(frozen=True)
class TranscriptCandidate:
    """A fragment normalized from any payload variant, before speaker resolution."""
    text: str
    speaker_identity: Optional[str] = None
    speaker_display_name: Optional[str] = None
    offset_seconds: Optional[float] = None
    duration_seconds: Optional[float] = None
    confidence: Optional[float] = None
    sentiment: Optional[str] = None
    language: Optional[str] = None
    result_status: Optional[str] = None


def extract_transcription(data: Optional[EventData]) -> TranscriptionPayload:
    """Select the payload variant carried by a transcription event."""
    if data is None:
        return EmptyPayload()
    if data.segments is not None:
        return SegmentBatch(fragments=tuple(data.segments), envelope=data)
    if data.transcription is not None:
        return SingleTranscription(fragment=data.transcription, envelope=data)
    if data.text is not None:
        return BareText(envelope=data)
    return EmptyPayload()


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _candidate(fragment: Optional[TranscriptionFragment], envelope: EventData, text: Optional[str]) -> Optional[TranscriptCandidate]:
    if text is None or not text.strip():
        return None
    fragment = fragment or TranscriptionFragment()
    return TranscriptCandidate(
        text=text.strip(),
        speaker_identity=_first(fragment.speaker_id, envelope.speaker_id),
        speaker_display_name=_first(fragment.speaker_display_name, envelope.speaker_display_name),
        offset_seconds=_first(fragment.offset, envelope.offset),
        duration_seconds=_first(fragment.duration, envelope.duration),
        confidence=_first(fragment.confidence, envelope.confidence),
        sentiment=_first(fragment.sentiment, envelope.sentiment),
        language=_first(fragment.language, envelope.language, fragment.locale, envelope.locale),
        result_status=_first(fragment.result_status, envelope.result_status),
    )


def candidates_from(payload: TranscriptionPayload) -> List[TranscriptCandidate]:
    """Normalize any payload variant into zero or more non-empty candidates."""
    if isinstance(payload, SegmentBatch):
        found = [
            _candidate(fragment, payload.envelope, _first(fragment.text, payload.envelope.text))
            for fragment in payload.fragments
        ]
    elif isinstance(payload, SingleTranscription):
        found = [_candidate(payload.fragment, payload.envelope, _first(payload.fragment.text, payload.envelope.text))]
    elif isinstance(payload, BareText):
        found = [_candidate(None, payload.envelope, payload.envelope.text)]
    else:
        found = []
    return [c for c in found if c is not None]


# Event classification ----------------------------------------------------------

_CALL_FAILURE_MARKERS = ("callfailed", "connectfailed", "answerfailed")


def classify_event(event_type: Optional[str]) -> CallEventKind:
    """Map a provider event type string onto an event family."""
    t = (event_type or "").lower()
    if not t:
        return CallEventKind.UNKNOWN
    if "subscriptionvalidation" in t:
        return CallEventKind.VALIDATION
    if "transcri" in t:
        if "started" in t:
            return CallEventKind.TRANSCRIPTION_STARTED
        if "stopped" in t:
            return CallEventKind.TRANSCRIPTION_STOPPED
        if "failed" in t:
            return CallEventKind.TRANSCRIPTION_FAILED
        return CallEventKind.TRANSCRIPT
    if "participantsupdated" in t:
        return CallEventKind.PARTICIPANTS_UPDATED
    if "participant" in t:
        return CallEventKind.UNKNOWN
    if "callended" in t or "calldisconnected" in t:
        return CallEventKind.ENDED
    if any(marker in t for marker in _CALL_FAILURE_MARKERS):
        return CallEventKind.FAILED
    if "callconnected" in t:
        return CallEventKind.CONNECTED
    if "callstarted" in t or "callconnecting" in t:
        return CallEventKind.CONNECTING
    return CallEventKind.UNKNOWN


# Envelope parsing --------------------------------------------------------------

def _parse_event_time(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_event(element: Any) -> Optional[IncomingEvent]:
    """Parse one envelope; None when it carries no event type."""
    if not isinstance(element, dict):
        return None
    envelope = _lower_keys(element)
    event_type = envelope.get("eventtype") or envelope.get("type")
    if not isinstance(event_type, str) or not event_type.strip():
        return None

    raw_data = envelope.get("data")
    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise InvalidEventPayload(f"Event '{event_type}' has a non-object data field")
    try:
        data = EventData.model_validate(raw_data)
    except ValidationError as e:
        raise InvalidEventPayload(f"Event '{event_type}' has invalid data: {e.error_count()} error(s)") from e

    return IncomingEvent(
        event_type=event_type.strip(),
        data=data,
        event_time=_parse_event_time(envelope.get("eventtime")),
    )


def parse_events(body: Union[bytes, str]) -> List[IncomingEvent]:
    """
    Parse a webhook body into events.

    Raises:
        InvalidEventPayload: body is not JSON, an event's data is malformed,
            or no event could be found. Nothing from a broken batch is used.
    """
    try:
        root = json.loads(body)
    except (TypeError, ValueError) as e:
        raise InvalidEventPayload("Invalid events payload.") from e

    if isinstance(root, list):
        elements = root
    elif isinstance(root, dict):
        elements = [root]
    else:
        raise InvalidEventPayload("Invalid events payload.")

    events = [evt for evt in (parse_event(element) for element in elements) if evt is not None]
    if not events:
        raise InvalidEventPayload("No events found.")
    return events
