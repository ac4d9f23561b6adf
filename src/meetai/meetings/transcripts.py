"""Transcript retrieval and speaker resolution.

The call provider owns the transcript file (JSON Lines, one utterance per
line) and hands us a URL. TranscriptFetcher downloads and parses it;
SpeakerResolver joins each line's speaker_id against users and agents at
read time so renames show up without rewriting stored data.
"""

from __future__ import annotations

import json
from collections.abc import Iterable

import httpx
import structlog
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.meetai.meetings.avatars import AvatarVariant, generate_avatar_uri
from src.meetai.meetings.schemas import (
    Agent,
    ResolvedTranscriptEntry,
    Speaker,
    TranscriptItem,
    User,
)

logger = structlog.get_logger(__name__)

UNKNOWN_SPEAKER_NAME = "Unknown"


class TranscriptFetchError(Exception):
    """Transcript could not be downloaded (network, timeout, or HTTP error).

    ``status_code`` is set when the store answered with an error status.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def permanent(self) -> bool:
        """A 4xx other than timeout or throttling will not succeed on retry."""
        code = self.status_code
        return code is not None and 400 <= code < 500 and code not in (408, 429)


def parse_transcript(body: str) -> list[TranscriptItem]:
    """Parse a JSONL transcript body.

    Blank lines are ignored. Lines that are not valid JSON or do not match
    the transcript item shape are skipped with a warning rather than
    failing the whole transcript.
    """
    items: list[TranscriptItem] = []
    for lineno, line in enumerate(body.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            items.append(TranscriptItem.model_validate(json.loads(line)))
        except (json.JSONDecodeError, ValidationError):
            logger.warning("transcript.line_skipped", line=lineno)
    return items


class TranscriptFetcher:
    """Downloads provider transcripts over HTTP.

    Args:
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests inject MockTransport).
    """

    def __init__(self, timeout: float = 15.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _get(self, url: str) -> str:
        async with self._client() as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.text

    async def fetch(self, url: str) -> list[TranscriptItem]:
        """Fetch and parse a transcript.

        Raises:
            TranscriptFetchError: On any transport or HTTP status failure.
        """
        try:
            body = await self._get(url)
        except httpx.HTTPError as exc:
            status_code = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
            logger.warning("transcript.fetch_failed", url=url, status_code=status_code, error=str(exc))
            raise TranscriptFetchError(str(exc), status_code=status_code) from exc

        items = parse_transcript(body)
        logger.info("transcript.fetched", url=url, items=len(items))
        return items

    async def fetch_or_empty(self, url: str) -> list[TranscriptItem]:
        """Read-path variant: any fetch failure yields an empty transcript."""
        try:
            return await self.fetch(url)
        except TranscriptFetchError:
            return []


class SpeakerResolver:
    """Maps transcript speaker ids to display identities.

    Users win over agents on an id collision. Users without a stored image
    and unmatched ids get an initials avatar; agents get a bot avatar.
    """

    def __init__(self, repository) -> None:
        self._repository = repository

    async def resolve(self, items: list[TranscriptItem]) -> list[ResolvedTranscriptEntry]:
        if not items:
            return []

        speaker_ids = {item.speaker_id for item in items}
        users = await self._repository.get_users_by_ids(speaker_ids)
        agents = await self._repository.get_agents_by_ids(speaker_ids)
        speakers = self.build_speaker_index(users, agents)
        unknown = Speaker(
            name=UNKNOWN_SPEAKER_NAME,
            image=generate_avatar_uri(UNKNOWN_SPEAKER_NAME, AvatarVariant.INITIALS),
        )

        return [
            ResolvedTranscriptEntry(
                start_ts=item.start_ts,
                stop_ts=item.stop_ts,
                text=item.text,
                speaker_id=item.speaker_id,
                user=speakers.get(item.speaker_id, unknown),
            )
            for item in items
        ]

    @staticmethod
    def build_speaker_index(users: Iterable[User], agents: Iterable[Agent]) -> dict[str, Speaker]:
        index: dict[str, Speaker] = {}
        for agent in agents:
            index[agent.id] = Speaker(
                name=agent.name,
                image=generate_avatar_uri(agent.name, AvatarVariant.BOTTTS_NEUTRAL),
            )
        # users last so they take precedence
        for user in users:
            index[user.id] = Speaker(
                name=user.name,
                image=user.image or generate_avatar_uri(user.name, AvatarVariant.INITIALS),
            )
        return index


class TranscriptService:
    """Read path used by the API: fetch (never raising) then resolve speakers."""

    def __init__(self, fetcher: TranscriptFetcher, resolver: SpeakerResolver) -> None:
        self._fetcher = fetcher
        self._resolver = resolver

    async def get_resolved_transcript(self, transcript_url: str | None) -> list[ResolvedTranscriptEntry]:
        if not transcript_url:
            return []
        items = await self._fetcher.fetch_or_empty(transcript_url)
        return await self._resolver.resolve(items)
