"""Context-assembled reply generation for live calls and post-call chat.

ReplyPipeline builds a prompt from the meeting summary, the agent's
instructions, recent conversation, and the question, then asks the LLM.
An empty completion is "no reply": callers must not send anything.
Provider failures surface as ReplyGenerationError so every caller decides
its own containment (the chat webhook logs and drops, the HTTP endpoint
answers 500).
"""

from __future__ import annotations

import structlog

from src.meetai.ai.prompts import HistoryTurn, build_reply_messages, build_reply_prompt
from src.meetai.meetings.avatars import AvatarVariant, generate_avatar_uri
from src.meetai.meetings.schemas import Agent, Meeting

logger = structlog.get_logger(__name__)

DEFAULT_INSTRUCTIONS = "You are a helpful meeting assistant."


class ReplyGenerationError(Exception):
    """The LLM provider failed to produce a completion."""


class ReplyPipeline:
    """Generates agent replies and delivers them into chat channels.

    Args:
        llm_service: LLMService (anything with an async ``completion``).
        chat_client: StreamChatClient used by ``reply_in_channel``.
        repository: MeetingRepository used by ``answer`` to look up context.
        history_limit: Number of prior chat messages included in a prompt.
    """

    def __init__(
        self,
        llm_service,
        chat_client=None,
        repository=None,
        history_limit: int = 5,
    ) -> None:
        self._llm = llm_service
        self._chat = chat_client
        self._repository = repository
        self._history_limit = history_limit

    async def generate_reply(
        self,
        *,
        question: str,
        instructions: str,
        summary: str | None = None,
        history: list[HistoryTurn] | tuple[HistoryTurn, ...] = (),
        meeting_name: str | None = None,
    ) -> str | None:
        """Ask the LLM for a reply.

        Returns:
            The stripped reply text, or None when the model returned nothing.

        Raises:
            ReplyGenerationError: If the provider call fails.
        """
        prompt = build_reply_prompt(
            question=question,
            instructions=instructions,
            summary=summary,
            history=history,
            meeting_name=meeting_name,
            history_limit=self._history_limit,
        )
        try:
            result = await self._llm.completion(build_reply_messages(prompt))
        except Exception as exc:
            logger.error("reply.generation_failed", error=str(exc), exc_info=True)
            raise ReplyGenerationError(str(exc)) from exc

        text = (result.get("content") or "").strip()
        if not text:
            logger.info("reply.empty")
            return None
        return text

    async def answer(self, meeting_id: str, meeting_name: str | None, question: str) -> str | None:
        """Answer a free-standing question about a meeting.

        Uses the stored summary and the agent's instructions when the
        meeting and agent exist; otherwise falls back to generic
        instructions and whatever name the caller supplied.
        """
        summary = None
        instructions = DEFAULT_INSTRUCTIONS
        name = meeting_name

        if self._repository is not None:
            meeting = await self._repository.get_meeting(meeting_id)
            if meeting is not None:
                summary = meeting.summary
                name = name or meeting.name
                agent = await self._repository.get_agent(meeting.agent_id)
                if agent is not None:
                    instructions = agent.instructions

        return await self.generate_reply(
            question=question,
            instructions=instructions,
            summary=summary,
            meeting_name=name,
        )

    async def reply_in_channel(
        self,
        meeting: Meeting,
        agent: Agent,
        channel_id: str,
        question: str,
        exclude_message_id: str | None = None,
    ) -> str | None:
        """Generate a reply to ``question`` and post it as the agent.

        The agent's chat identity is upserted before posting so the message
        shows the agent's name and avatar, never the service account.

        Returns:
            The text that was posted, or None when nothing was sent.

        Raises:
            ReplyGenerationError: If the provider call fails.
            ProviderError: If the chat provider rejects a request.
        """
        if self._chat is None:
            msg = "ReplyPipeline has no chat client configured"
            raise RuntimeError(msg)

        recent = await self._chat.get_recent_messages(channel_id, self._history_limit + 1)
        history = [
            HistoryTurn(speaker=m.user_name, text=m.text)
            for m in recent
            if not (exclude_message_id and m.id == exclude_message_id)
        ]
        if not exclude_message_id and history and history[-1].text.strip() == question.strip():
            # Triggering message delivered without an id; it is the newest entry.
            history.pop()
        history = history[-self._history_limit:] if self._history_limit > 0 else []

        reply = await self.generate_reply(
            question=question,
            instructions=agent.instructions,
            summary=meeting.summary,
            history=history,
            meeting_name=meeting.name,
        )
        if reply is None:
            logger.info("reply.nothing_to_send", meeting_id=meeting.id, channel_id=channel_id)
            return None

        await self._chat.upsert_user(
            agent.id,
            agent.name,
            generate_avatar_uri(agent.name, AvatarVariant.BOTTTS_NEUTRAL),
        )
        await self._chat.send_message(channel_id, reply, agent.id)
        logger.info(
            "reply.sent",
            meeting_id=meeting.id,
            channel_id=channel_id,
            agent_id=agent.id,
            history_turns=len(history),
        )
        return reply
