"""Reward Computer — scores one movement session."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from botbrain.types import utcnow


class MovementSession(BaseModel):
    """One bounded attempt at reaching a movement goal."""

    start: datetime = Field(default_factory=utcnow)
    success: bool = False
    timeout: bool = False
    duration_ms: float = 0.0
    damage_taken: float = 0.0
    closed: bool = False


def compute_reward(session: MovementSession) -> float:
    """+1 on success, -1 on timeout, minus capped time and damage penalties.

    Success and timeout are not mutually checked; both apply if both are set.
    """
    reward = 0.0
    if session.success:
        reward += 1.0
    if session.timeout:
        reward -= 1.0
    reward -= min(0.5, session.duration_ms / 30000)
    reward -= min(0.5, session.damage_taken / 5)
    return reward
