"""Typed provider webhook events.

Each supported event is a Pydantic model tagged by its ``type`` literal;
``parse_event`` validates a decoded payload against the tagged union.
Nested fields are optional on purpose: a payload with the right tag but
missing identifiers still parses, and the handler treats it as a no-op.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = structlog.get_logger(__name__)


class EventType:
    """Provider event tags handled by the service."""

    SESSION_STARTED = "call.session_started"
    SESSION_ENDED = "call.session_ended"
    TRANSCRIPTION_READY = "call.transcription_ready"
    MESSAGE_NEW = "message.new"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ── Call lifecycle ───────────────────────────────────────────────────────────


class CallCustom(_Payload):
    meeting_id: str | None = Field(default=None, alias="meetingId")


class Call(_Payload):
    custom: CallCustom = Field(default_factory=CallCustom)


class _CallSessionEvent(_Payload):
    call: Call | None = None

    @property
    def meeting_id(self) -> str | None:
        if self.call is None:
            return None
        return self.call.custom.meeting_id or None


class SessionStartedEvent(_CallSessionEvent):
    type: Literal["call.session_started"]


class SessionEndedEvent(_CallSessionEvent):
    type: Literal["call.session_ended"]


class CallTranscription(_Payload):
    url: str | None = None


class TranscriptionReadyEvent(_Payload):
    type: Literal["call.transcription_ready"]
    call_cid: str | None = None
    call_transcription: CallTranscription | None = None

    @property
    def meeting_id(self) -> str | None:
        """Call id half of ``"<call type>:<call id>"``."""
        if not self.call_cid or ":" not in self.call_cid:
            return None
        return self.call_cid.split(":", 1)[1] or None

    @property
    def transcript_url(self) -> str | None:
        if self.call_transcription is None:
            return None
        return self.call_transcription.url or None


# ── Chat ─────────────────────────────────────────────────────────────────────


class MessageUser(_Payload):
    id: str | None = None
    name: str | None = None


class Message(_Payload):
    id: str | None = None
    text: str | None = None


class MessageNewEvent(_Payload):
    type: Literal["message.new"]
    channel_id: str | None = None
    user: MessageUser | None = None
    message: Message | None = None

    @property
    def sender_id(self) -> str | None:
        return self.user.id if self.user else None

    @property
    def text(self) -> str | None:
        return self.message.text if self.message else None

    @property
    def message_id(self) -> str | None:
        return self.message.id if self.message else None


WebhookEvent = Annotated[
    Union[SessionStartedEvent, SessionEndedEvent, TranscriptionReadyEvent, MessageNewEvent],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[WebhookEvent] = TypeAdapter(WebhookEvent)

SUPPORTED_EVENT_TYPES = frozenset(
    {
        EventType.SESSION_STARTED,
        EventType.SESSION_ENDED,
        EventType.TRANSCRIPTION_READY,
        EventType.MESSAGE_NEW,
    }
)


def parse_event(payload: Any) -> WebhookEvent | None:
    """Validate a decoded webhook body.

    Returns:
        The typed event, or None for unsupported types and payloads whose
        structure does not match the tagged model.
    """
    if not isinstance(payload, dict):
        return None
    event_type = payload.get("type")
    if event_type not in SUPPORTED_EVENT_TYPES:
        logger.debug("webhook.event_ignored", event_type=event_type)
        return None
    try:
        return _event_adapter.validate_python(payload)
    except ValidationError as exc:
        logger.warning(
            "webhook.event_invalid",
            event_type=event_type,
            errors=exc.error_count(),
        )
        return None
