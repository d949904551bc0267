"""Advisor — asks a text-generation service for policy adjustments.

The advisor's answer is free text. Nothing here trusts it: parsing,
allow-listing and clamping happen in the reflection loop and the policy
store.
"""

from __future__ import annotations

import logging
from typing import Any

import orjson
from pydantic import BaseModel, Field

from botbrain.config import BrainSettings
from botbrain.llm.base import BaseLLMProvider, LLMMessage

_logger = logging.getLogger(__name__)

REFLECTION_SYSTEM_INSTRUCTION = (
    "You are a precise policy optimizer for game-playing bots. "
    "Respond with valid JSON only."
)

PATCH_EXAMPLE = """\
{
  "skill_weights": {"gather": 1.1, "build": 0.9},
  "movement": {"preferred_arm": "balanced"},
  "chat": {"smalltalk_rate": 0.03},
  "risk": {"prefer_safe_paths": true}
}"""


class AdvisoryRequest(BaseModel):
    system_instruction: str = REFLECTION_SYSTEM_INSTRUCTION
    agent_id: str
    recent_summary: str = ""
    current_policy: dict[str, Any] = Field(default_factory=dict)
    perf_snapshot: dict[str, Any] = Field(default_factory=dict)
    arm_names: list[str] = Field(default_factory=list)


def _pretty(data: Any) -> str:
    return orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS).decode()


def build_reflection_prompt(request: AdvisoryRequest) -> str:
    arms = "|".join(request.arm_names) or "conservative|balanced|aggressive|scout"
    return "\n".join([
        f"Agent: {request.agent_id}",
        "Recent summary:",
        request.recent_summary or "(empty)",
        "",
        "Current policy (JSON):",
        _pretty(request.current_policy),
        "",
        "Performance snapshot (JSON):",
        _pretty(request.perf_snapshot),
        "",
        "Task:",
        "- Analyze strengths and weaknesses.",
        "- Propose small, safe adjustments to the policy as a partial JSON document.",
        "- Raise or lower skill_weights gradually (at most +/-0.25).",
        f"- Only set movement.preferred_arm to an existing arm ({arms}).",
        "- Change chat.smalltalk_rate minimally (+/-0.01).",
        "- Keep changes limited; no large jumps.",
        "",
        "Format:",
        PATCH_EXAMPLE,
        "",
        "Notes:",
        "- No comments, JSON only.",
    ])


class Advisor:
    """Wraps a provider with the reflection prompt. `provider=None` means disabled."""

    def __init__(
        self,
        provider: BaseLLMProvider | None,
        temperature: float = 0.2,
        max_tokens: int = 800,
    ) -> None:
        self._provider = provider
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def enabled(self) -> bool:
        return self._provider is not None

    async def advise(self, request: AdvisoryRequest) -> str:
        """Send the request; return the raw text of the answer ("" if empty)."""
        if self._provider is None:
            raise RuntimeError("Advisor is disabled")
        response = await self._provider.complete(
            messages=[LLMMessage(role="user", content=build_reflection_prompt(request))],
            system=request.system_instruction,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        return response.content or ""


def build_advisor(settings: BrainSettings) -> Advisor:
    """Advisor for the configured provider; disabled when none is set."""
    provider: BaseLLMProvider | None = None
    kind = settings.advisor_provider.strip().lower()
    if kind == "ollama":
        from botbrain.llm.ollama import OllamaProvider
        provider = OllamaProvider(
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            timeout=settings.advisor_timeout_seconds,
        )
    elif kind == "anthropic":
        if settings.anthropic_api_key:
            from botbrain.llm.anthropic import AnthropicProvider
            provider = AnthropicProvider(
                api_key=settings.anthropic_api_key,
                model=settings.default_model,
            )
        else:
            _logger.warning(
                "Advisor provider is anthropic but BOTBRAIN_ANTHROPIC_API_KEY is empty; "
                "reflection is disabled"
            )
    elif kind:
        raise ValueError(f"Unknown advisor provider: {settings.advisor_provider}")
    return Advisor(
        provider,
        temperature=settings.advisor_temperature,
        max_tokens=settings.advisor_max_tokens,
    )
