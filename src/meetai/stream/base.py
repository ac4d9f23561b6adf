"""Shared plumbing for the provider REST clients: auth, retry, errors."""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from jose import jwt
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger(__name__)


class ProviderError(Exception):
    """The call provider rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderUnavailableError(ProviderError):
    """5xx from the provider; safe to retry."""


# 4xx are caller errors and fail fast.
_stream_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(
        (httpx.ConnectError, httpx.TimeoutException, ProviderUnavailableError)
    ),
    reraise=True,
)


def create_server_token(api_secret: str) -> str:
    """Sign the server-side token the provider expects on backend calls."""
    return jwt.encode({"server": True}, api_secret, algorithm="HS256")


class StreamClientBase:
    """Common request handling for the video and chat clients.

    Args:
        api_key: Provider API key (sent as the ``api_key`` query param).
        api_secret: Provider API secret used to sign the server token.
        base_url: API root for this product.
        transport: Optional httpx transport (tests inject MockTransport).
    """

    TIMEOUT_MUTATE = 30.0
    TIMEOUT_READ = 10.0

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": create_server_token(api_secret),
            "stream-auth-type": "jwt",
            "Content-Type": "application/json",
        }
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        """Create a new httpx client with specified timeout."""
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            params={"api_key": self._api_key},
            timeout=timeout,
            transport=self._transport,
        )

    @_stream_retry
    async def _send(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None,
        timeout: float,
    ) -> dict[str, Any]:
        async with self._client(timeout) as client:
            response = await client.request(method, path, json=json)

        if response.status_code >= 500:
            raise ProviderUnavailableError(
                f"{method} {path} failed with {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            logger.warning(
                "stream.request_rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ProviderError(
                f"{method} {path} rejected with {response.status_code}",
                status_code=response.status_code,
            )
        return response.json() if response.content else {}

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a request, retrying transient failures.

        Raises:
            ProviderError: Rejected request, exhausted retries, or a
                transport failure.
        """
        try:
            return await self._send(method, path, json, timeout or self.TIMEOUT_MUTATE)
        except httpx.HTTPError as exc:
            logger.warning("stream.request_failed", method=method, path=path, error=str(exc))
            raise ProviderError(f"{method} {path} failed: {exc}") from exc
