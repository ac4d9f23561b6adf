"""Prompt builders for agent replies and meeting summaries.

Builders are pure functions: identical inputs always produce identical
text, which keeps replies reproducible and the builders easy to test.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

REPLY_SYSTEM_PROMPT = (
    "You are an AI agent who took part in a meeting and is now answering "
    "questions about it. Follow the agent instructions you are given, stay "
    "grounded in the meeting summary and conversation, and answer clearly "
    "and concisely. If the summary does not cover the question, say so."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert meeting note-taker. Write a faithful summary of the "
    "transcript you are given. Do not invent facts that are not in it."
)


@dataclass(frozen=True)
class HistoryTurn:
    """One prior chat message: author display name and text."""

    speaker: str
    text: str


def format_history(history: Sequence[HistoryTurn], limit: int) -> str:
    """Render the last ``limit`` turns, oldest first, as ``name: text`` lines."""
    if limit <= 0:
        return ""
    window = list(history)[-limit:]
    return "\n".join(f"{turn.speaker}: {turn.text}" for turn in window)


def build_reply_prompt(
    *,
    question: str,
    instructions: str,
    summary: str | None = None,
    history: Sequence[HistoryTurn] = (),
    meeting_name: str | None = None,
    history_limit: int = 5,
) -> str:
    """Assemble the reply prompt.

    Section order is fixed: meeting name, summary, agent instructions,
    conversation history, user question. The meeting name and summary
    sections are omitted when empty; history renders as an empty section
    when there are no prior turns.
    """
    sections: list[str] = []
    if meeting_name:
        sections.append(f"Meeting name:\n{meeting_name.strip()}")
    if summary and summary.strip():
        sections.append(f"Meeting summary:\n{summary.strip()}")
    sections.append(f"Agent instructions:\n{instructions.strip()}")
    sections.append(f"Conversation history:\n{format_history(history, history_limit)}")
    sections.append(f"User question:\n{question.strip()}")
    return "\n\n".join(sections)


def build_reply_messages(prompt: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": REPLY_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def format_timestamp(ms: int) -> str:
    """``start_ts`` milliseconds as ``MM:SS``."""
    total_seconds = max(ms, 0) // 1000
    return f"{total_seconds // 60:02d}:{total_seconds % 60:02d}"


def build_summary_messages(meeting_name: str, lines: Sequence[tuple[int, str, str]]) -> list[dict[str, str]]:
    """Messages asking for a summary of ``(start_ts, speaker, text)`` lines.

    The requested shape is an overview paragraph followed by timestamped
    notes grouped by topic.
    """
    transcript = "\n".join(
        f"[{format_timestamp(start_ts)}] {speaker}: {text}" for start_ts, speaker, text in lines
    )
    user = (
        f"Meeting: {meeting_name}\n\n"
        "Write the summary in markdown with two sections:\n"
        "### Overview\n"
        "A short narrative of what was discussed and decided.\n"
        "### Notes\n"
        "Topics as sub-headings, each with timestamped bullet points.\n\n"
        f"Transcript:\n{transcript}"
    )
    return [
        {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]
