"""Core types shared across all botbrain subsystems."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TypeAlias

# ── ID Types ──────────────────────────────────────────────────────────────────

AgentId: TypeAlias = str
ArmName: TypeAlias = str


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def utcnow() -> datetime:
    """Timezone-aware UTC now. Stored timestamps compare as ISO strings."""
    return datetime.now(timezone.utc)
