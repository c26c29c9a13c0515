"""Starting level for a player with no session history."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

__all__ = ["OnboardingSignals", "assess_initial_difficulty"]

MAX_LEVEL = 3


@dataclass(frozen=True)
class OnboardingSignals:
    has_played_before: bool = False
    previous_best_level: Optional[int] = None

    @classmethod
    def coerce(cls, raw: Any) -> "OnboardingSignals":
        if isinstance(raw, OnboardingSignals):
            return raw
        if not isinstance(raw, Mapping):
            return cls()
        played = raw.get("hasPlayedBefore", raw.get("has_played_before", False))
        best = raw.get("previousBestLevel", raw.get("previous_best_level"))
        try:
            best = int(best) if best is not None else None
        except (TypeError, ValueError):
            best = None
        return cls(has_played_before=bool(played), previous_best_level=best)


def assess_initial_difficulty(signals: Any = None) -> int:
    """Returning players with a known best level start one above it (max 3); others at 1."""
    s = OnboardingSignals.coerce(signals)
    if s.has_played_before and s.previous_best_level and s.previous_best_level > 0:
        return min(MAX_LEVEL, s.previous_best_level + 1)
    return 1
