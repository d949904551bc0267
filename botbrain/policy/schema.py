"""Policy schema — the tunable behavior of one agent.

A policy is stored as a JSON document. The models below define its
shape and defaults; unknown nested keys are kept so advisor patches
can extend a section without being rejected.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SKILLS = ("gather", "craft", "build", "explore")

SKILL_WEIGHT_RANGE = (0.0, 2.0)
SMALLTALK_RATE_RANGE = (0.0, 0.2)
DEFAULT_SMALLTALK_RATE = 0.02


class MovementPolicy(BaseModel):
    model_config = ConfigDict(extra="allow")

    preferred_arm: str = "balanced"


class RiskPolicy(BaseModel):
    model_config = ConfigDict(extra="allow")

    avoid_water: bool = True
    avoid_lava: bool = True
    prefer_safe_paths: bool = True


class ChatPolicy(BaseModel):
    model_config = ConfigDict(extra="allow")

    style: str = "brief"
    smalltalk_rate: float = DEFAULT_SMALLTALK_RATE


class BehaviorPolicy(BaseModel):
    """Versioned behavioral policy for one agent."""

    model_config = ConfigDict(extra="allow")

    version: int = 1
    movement: MovementPolicy = Field(default_factory=MovementPolicy)
    skill_weights: dict[str, float] = Field(
        default_factory=lambda: {skill: 1.0 for skill in SKILLS},
    )
    risk: RiskPolicy = Field(default_factory=RiskPolicy)
    chat: ChatPolicy = Field(default_factory=ChatPolicy)


def default_policy() -> dict[str, Any]:
    """The document a new agent starts with (version 1)."""
    return BehaviorPolicy().model_dump()
