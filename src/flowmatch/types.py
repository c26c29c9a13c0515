"""Records exchanged between the engine and the game UI / telemetry layers."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

__all__ = [
    "CategoryStats",
    "PerformanceMetrics",
    "GameConfiguration",
    "GridSize",
    "SMALL_GRID",
    "LARGE_GRID",
    "grid_size_of",
]


def _as_float(value: Any, default: float, *, minimum: Optional[float] = None) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return float(default)
    if not math.isfinite(out):
        return float(default)
    if minimum is not None and out < minimum:
        return float(default)
    return out


def _as_int(value: Any, default: int, *, minimum: int = 0) -> int:
    out = _as_float(value, float(default), minimum=float(minimum))
    return int(out)


LEVELS = (1, 2, 3)


def _as_level(value: Any) -> int:
    """Game level; anything outside ``LEVELS`` reads as level 1."""
    out = _as_int(value, 1, minimum=1)
    return out if out in LEVELS else 1


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in data and data[k] is not None:
            return data[k]
    return default


@dataclass(frozen=True)
class CategoryStats:
    attempts: int = 0
    successes: int = 0

    @classmethod
    def coerce(cls, raw: Any) -> "CategoryStats":
        if isinstance(raw, CategoryStats):
            return raw
        if not isinstance(raw, Mapping):
            return cls()
        attempts = _as_int(raw.get("attempts"), 0)
        successes = min(attempts, _as_int(raw.get("successes"), 0))
        return cls(attempts=attempts, successes=successes)


@dataclass(frozen=True)
class PerformanceMetrics:
    """One completed round, as reported by telemetry.

    ``flip_intervals`` are milliseconds between consecutive card reveals;
    ``color_stats``/``shape_stats`` map a category label to attempts/successes.
    """

    completion_time: float = 0.0
    level: int = 1
    total_pairs: int = 10
    failed_matches: int = 0
    total_matches: int = 0
    flip_intervals: List[float] = field(default_factory=list)
    total_clicks: int = 0
    color_stats: Dict[str, CategoryStats] = field(default_factory=dict)
    shape_stats: Dict[str, CategoryStats] = field(default_factory=dict)
    cheat_count: int = 0
    max_consecutive_errors: int = 0

    @property
    def successful_matches(self) -> int:
        return max(0, self.total_matches - self.failed_matches)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PerformanceMetrics":
        """Build a record from camelCase or snake_case telemetry, coercing bad numbers."""
        total_matches = _as_int(_pick(data, "totalMatches", "total_matches"), 0)
        failed = min(total_matches, _as_int(_pick(data, "failedMatches", "failed_matches"), 0))
        raw_intervals = _pick(data, "flipIntervals", "flip_intervals", default=[]) or []
        intervals = []
        for v in raw_intervals:
            x = _as_float(v, float("nan"))
            if math.isfinite(x) and x >= 0:
                intervals.append(x)
        raw_color = _pick(data, "colorStats", "color_stats", default={}) or {}
        raw_shape = _pick(data, "shapeStats", "shape_stats", default={}) or {}
        return cls(
            completion_time=_as_float(_pick(data, "completionTime", "completion_time"), 0.0, minimum=0.0),
            level=_as_level(_pick(data, "level")),
            total_pairs=_as_int(_pick(data, "totalPairs", "total_pairs"), 10),
            failed_matches=failed,
            total_matches=total_matches,
            flip_intervals=intervals,
            total_clicks=_as_int(_pick(data, "totalClicks", "total_clicks"), 0),
            color_stats={str(k): CategoryStats.coerce(v) for k, v in dict(raw_color).items()},
            shape_stats={str(k): CategoryStats.coerce(v) for k, v in dict(raw_shape).items()},
            cheat_count=_as_int(_pick(data, "cheatCount", "cheat_count"), 0),
            max_consecutive_errors=_as_int(_pick(data, "maxConsecutiveErrors", "max_consecutive_errors"), 0),
        )

    @classmethod
    def coerce(cls, raw: Any) -> "PerformanceMetrics":
        if isinstance(raw, PerformanceMetrics):
            # direct construction skips validation
            return cls.from_dict(raw.to_dict())
        if isinstance(raw, Mapping):
            return cls.from_dict(raw)
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completion_time": self.completion_time,
            "level": self.level,
            "total_pairs": self.total_pairs,
            "failed_matches": self.failed_matches,
            "total_matches": self.total_matches,
            "flip_intervals": list(self.flip_intervals),
            "total_clicks": self.total_clicks,
            "color_stats": {k: {"attempts": v.attempts, "successes": v.successes} for k, v in self.color_stats.items()},
            "shape_stats": {k: {"attempts": v.attempts, "successes": v.successes} for k, v in self.shape_stats.items()},
            "cheat_count": self.cheat_count,
            "max_consecutive_errors": self.max_consecutive_errors,
        }


GridSize = str  # "small" | "large"
SMALL_GRID = (5, 4)
LARGE_GRID = (6, 4)


def grid_size_of(cols: int, rows: int) -> GridSize:
    return "large" if int(cols) * int(rows) > SMALL_GRID[0] * SMALL_GRID[1] else "small"


@dataclass(frozen=True)
class GameConfiguration:
    """Parameters for the next board. Level-specific fields are ``None`` elsewhere."""

    initial_time: int
    match_reward: int
    hide_delay: int
    show_scale: float
    hint_policy: str
    grid_cols: int
    grid_rows: int
    total_pairs: int
    hidden_level: int = 2
    neighbor_mode: Optional[str] = None
    adjacent_rate: Optional[float] = None
    adjacent_target: Optional[int] = None
    pairs_type: Optional[str] = None

    @property
    def grid_size(self) -> GridSize:
        return grid_size_of(self.grid_cols, self.grid_rows)

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "initial_time": self.initial_time,
            "match_reward": self.match_reward,
            "hide_delay": self.hide_delay,
            "show_scale": self.show_scale,
            "hint_policy": self.hint_policy,
            "grid_cols": self.grid_cols,
            "grid_rows": self.grid_rows,
            "total_pairs": self.total_pairs,
            "hidden_level": self.hidden_level,
        }
        for key in ("neighbor_mode", "adjacent_rate", "adjacent_target", "pairs_type"):
            val = getattr(self, key)
            if val is not None:
                out[key] = val
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GameConfiguration":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})
