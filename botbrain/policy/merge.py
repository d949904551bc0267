"""Patch sanitation — allow-list, structural merge and range clamping.

Patches come from an untrusted text source. Only the four tunable
sections survive, and numeric knobs are forced back into range after
the merge, whatever the patch contained.
"""

from __future__ import annotations

import copy
import math
from typing import Any

from botbrain.policy.schema import (
    DEFAULT_SMALLTALK_RATE,
    SKILL_WEIGHT_RANGE,
    SMALLTALK_RATE_RANGE,
)

ALLOWED_PATCH_KEYS = frozenset({"movement", "skill_weights", "chat", "risk"})


def sanitize_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Keep only allow-listed sections whose value is an object.

    A section sent as null, a list or a scalar is dropped, so the merge
    keeps the stored section instead of replacing it.
    """
    return {
        k: v for k, v in patch.items()
        if k in ALLOWED_PATCH_KEYS and isinstance(v, dict)
    }


def deep_merge(base: Any, patch: Any) -> Any:
    """Merge `patch` into `base` without mutating either.

    Dicts merge key by key, recursively. Lists and scalars in the patch
    replace the base value. Keys missing from the patch keep their base
    value.
    """
    if not isinstance(base, dict) or not isinstance(patch, dict):
        return copy.deepcopy(patch)
    out = copy.deepcopy(base)
    for key, value in patch.items():
        out[key] = deep_merge(base.get(key), value)
    return out


def _to_number(value: Any) -> float:
    """Numeric coercion; anything that is not a finite number becomes 0."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float, str)):
        try:
            number = float(value)
        except ValueError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    return 0.0


def _clamp(value: Any, bounds: tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(high, _to_number(value)))


def clamp_policy(doc: dict[str, Any]) -> dict[str, Any]:
    """Force skill weights into [0, 2] and the smalltalk rate into [0, 0.2]. In place.

    A missing smalltalk rate is filled with the default; a non-numeric one
    becomes 0.
    """
    weights = doc.get("skill_weights")
    if not isinstance(weights, dict):
        weights = {}
    doc["skill_weights"] = {k: _clamp(v, SKILL_WEIGHT_RANGE) for k, v in weights.items()}

    chat = doc.get("chat")
    if not isinstance(chat, dict):
        chat = {}
    chat["smalltalk_rate"] = _clamp(
        chat.get("smalltalk_rate", DEFAULT_SMALLTALK_RATE), SMALLTALK_RATE_RANGE,
    )
    doc["chat"] = chat
    return doc
