"""Completion access for live replies and meeting summaries.

Both configured providers are registered as deployments of one LiteLLM
model group, Gemini first. The router retries and fails over between them;
callers only ever name ``MODEL_GROUP``.
"""

from __future__ import annotations

import structlog
from litellm import Router

from src.meetai.config import Settings, get_settings
from src.meetai.core.monitoring import track_llm_call

logger = structlog.get_logger(__name__)

MODEL_GROUP = "assistant"


class LLMUnavailableError(RuntimeError):
    """Raised when a completion is requested but no provider key is set."""


def _deployments(settings: Settings) -> list[dict]:
    candidates = [
        (settings.LLM_MODEL, settings.GEMINI_API_KEY),
        (settings.LLM_FALLBACK_MODEL, settings.OPENAI_API_KEY),
    ]
    return [
        {"model_name": MODEL_GROUP, "litellm_params": {"model": model, "api_key": key}}
        for model, key in candidates
        if key
    ]


class LLMService:
    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        deployments = _deployments(settings)
        if not deployments:
            logger.warning("llm.no_api_keys")
            self.router: Router | None = None
            return

        self.router = Router(
            model_list=deployments,
            num_retries=settings.LLM_MAX_RETRIES,
            timeout=settings.LLM_TIMEOUT,
            allowed_fails=3,
            cooldown_time=30,
        )
        logger.info("llm.router_ready", models=[d["litellm_params"]["model"] for d in deployments])

    @property
    def available(self) -> bool:
        return self.router is not None

    async def completion(
        self,
        messages: list[dict],
        max_tokens: int = 1024,
        temperature: float = 0.7,
        metadata: dict | None = None,
    ) -> dict:
        """Run one chat completion against the model group.

        Returns ``{"content", "model", "usage"}``. ``content`` is ``""`` when
        the provider returned no text; ``usage`` is ``{}`` when it reported
        none.

        Raises:
            LLMUnavailableError: No provider key is configured.
        """
        if self.router is None:
            raise LLMUnavailableError("No LLM API keys configured")

        async with track_llm_call(MODEL_GROUP) as tracker:
            response = await self.router.acompletion(
                model=MODEL_GROUP,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                metadata=metadata or {},
            )
            usage: dict = {}
            reported = getattr(response, "usage", None)
            if reported:
                usage = {
                    "prompt_tokens": reported.prompt_tokens,
                    "completion_tokens": reported.completion_tokens,
                    "total_tokens": reported.total_tokens,
                }
                tracker.update(prompt_tokens=usage["prompt_tokens"], completion_tokens=usage["completion_tokens"])

        return {
            "content": response.choices[0].message.content or "",
            "model": response.model,
            "usage": usage,
        }
