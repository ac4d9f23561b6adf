"""HTTP client for the AI reply endpoint, used by the call session controller."""

from __future__ import annotations

import httpx
import structlog

logger = structlog.get_logger(__name__)


class HttpReplyClient:
    """Posts utterances to ``POST /api/v1/ai/chat``.

    Any transport error, non-2xx response, or malformed body is logged and
    treated as "no reply" so the conversation loop keeps running.

    Args:
        base_url: Service root, e.g. ``http://localhost:8000``.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests inject MockTransport).
    """

    PATH = "/api/v1/ai/chat"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def reply(self, meeting_id: str, meeting_name: str, text: str) -> str | None:
        body = {"meetingId": meeting_id, "meetingName": meeting_name, "text": text}
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(self.PATH, json=body)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("reply_client.request_failed", meeting_id=meeting_id, exc_info=True)
            return None

        textdata = data.get("textdata") if isinstance(data, dict) else None
        if not isinstance(textdata, str) or not textdata.strip():
            return None
        return textdata
