"""AI reply endpoint used by the live call surface and post-call chat UI."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from src.meetai.ai.pipeline import ReplyGenerationError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])

GENERIC_FAILURE = "Failed to generate reply"


class ChatRequest(BaseModel):
    """Question about a meeting."""

    meeting_id: str = Field(alias="meetingId", min_length=1)
    meeting_name: str | None = Field(default=None, alias="meetingName")
    text: str

    model_config = {"populate_by_name": True}

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "text must not be blank"
            raise ValueError(msg)
        return value.strip()


class ChatResponse(BaseModel):
    """``textdata`` is null when the model had nothing to say."""

    textdata: str | None


def _get_reply_pipeline(request: Request) -> Any:
    """Retrieve ReplyPipeline from app.state, 503 if not available."""
    pipeline = getattr(request.app.state, "reply_pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reply pipeline not initialized",
        )
    return pipeline


@router.post("/chat", response_model=ChatResponse)
async def chat(body: ChatRequest, request: Request):
    """Answer ``text`` in the context of the meeting."""
    pipeline = _get_reply_pipeline(request)
    try:
        reply = await pipeline.answer(body.meeting_id, body.meeting_name, body.text)
    except ReplyGenerationError:
        logger.warning("ai.chat_failed", meeting_id=body.meeting_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": GENERIC_FAILURE},
        )
    return ChatResponse(textdata=reply)
