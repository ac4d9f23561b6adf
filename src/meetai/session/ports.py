"""Interfaces the call session controller drives."""

from __future__ import annotations

from enum import Enum
from typing import Protocol


class CallingState(str, Enum):
    """Connection state reported by the call transport."""

    IDLE = "idle"
    JOINING = "joining"
    JOINED = "joined"
    LEFT = "left"


class CallConnection(Protocol):
    """The media session for one call."""

    @property
    def calling_state(self) -> CallingState: ...

    @property
    def participant_count(self) -> int: ...

    async def join(self) -> None: ...

    async def leave(self) -> None: ...


class SpeechRecognizer(Protocol):
    """Captures one utterance at a time."""

    async def listen(self) -> str | None:
        """Return the next recognized utterance, or None if nothing was heard."""
        ...

    def stop(self) -> None:
        """Abort any active capture."""
        ...


class SpeechSynthesizer(Protocol):
    """Speaks text aloud."""

    async def load_voices(self) -> None: ...

    async def speak(self, text: str) -> None:
        """Return only once playback has finished (or raise if it failed)."""
        ...

    def cancel(self) -> None:
        """Stop current playback immediately."""
        ...


class ReplyClient(Protocol):
    """Asks the AI reply endpoint for an answer."""

    async def reply(self, meeting_id: str, meeting_name: str, text: str) -> str | None: ...
