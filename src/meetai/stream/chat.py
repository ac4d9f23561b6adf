"""Chat API client -- user upsert, channel history, and message send.

Post-call chat channels are of type ``messaging`` and their id is the
meeting id.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from src.meetai.stream.base import StreamClientBase

logger = structlog.get_logger(__name__)

CHANNEL_TYPE = "messaging"


@dataclass(frozen=True)
class ChatMessage:
    """A chat message reduced to what prompt assembly needs."""

    id: str
    user_id: str
    user_name: str
    text: str


class StreamChatClient(StreamClientBase):
    """Async client for the provider's chat API."""

    async def upsert_user(self, user_id: str, name: str, image: str | None = None) -> None:
        """Create or update a chat identity."""
        user: dict[str, str] = {"id": user_id, "name": name}
        if image:
            user["image"] = image
        await self._request("POST", "/users", json={"users": {user_id: user}})
        logger.debug("stream.user_upserted", user_id=user_id)

    async def get_recent_messages(self, channel_id: str, limit: int) -> list[ChatMessage]:
        """Return up to ``limit`` most recent messages, oldest first."""
        data = await self._request(
            "POST",
            f"/channels/{CHANNEL_TYPE}/{channel_id}/query",
            json={"state": True, "watch": False, "messages": {"limit": limit}},
            timeout=self.TIMEOUT_READ,
        )
        messages = []
        for raw in data.get("messages", []):
            user = raw.get("user") or {}
            text = raw.get("text") or ""
            if not text:
                continue
            messages.append(
                ChatMessage(
                    id=raw.get("id", ""),
                    user_id=user.get("id", ""),
                    user_name=user.get("name") or user.get("id") or "Unknown",
                    text=text,
                )
            )
        return messages[-limit:] if limit > 0 else []

    async def send_message(self, channel_id: str, text: str, user_id: str) -> dict:
        """Post ``text`` into the channel as ``user_id``."""
        data = await self._request(
            "POST",
            f"/channels/{CHANNEL_TYPE}/{channel_id}/message",
            json={"message": {"text": text, "user_id": user_id}},
        )
        logger.info("stream.message_sent", channel_id=channel_id, user_id=user_id)
        return data
