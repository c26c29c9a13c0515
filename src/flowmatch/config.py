"""Tunables for the adaptive engine, with named presets and YAML loading."""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml

__all__ = [
    "DEFAULT_MEMBERSHIP",
    "EngineConfig",
    "ENGINE_PRESETS",
    "get_engine_config",
    "load_engine_config",
]

# label -> (min, max, peak)
DEFAULT_MEMBERSHIP: Dict[str, Tuple[float, float, float]] = {
    "time_fast": (-0.4, 0.4, 0.0),
    "time_medium": (0.3, 0.7, 0.5),
    "time_slow": (0.6, 1.4, 1.0),
    "error_low": (-0.2, 0.2, 0.0),
    "error_medium": (0.1, 0.4, 0.25),
    "error_high": (0.3, 1.7, 1.0),
    "click_high": (0.8, 1.2, 1.0),
    "click_low": (-0.7, 0.7, 0.0),
    "color_high": (0.8, 1.2, 1.0),
    "color_low": (-0.7, 0.7, 0.0),
    "shape_high": (0.8, 1.2, 1.0),
    "shape_low": (-0.7, 0.7, 0.0),
}


@dataclass
class EngineConfig:
    # fuzzy scorer
    per_pair_seconds: Dict[int, float] = field(default_factory=lambda: {1: 20.0, 2: 15.0, 3: 12.0})
    membership: Dict[str, Tuple[float, float, float]] = field(default_factory=lambda: dict(DEFAULT_MEMBERSHIP))
    cadence_threshold: float = 0.5
    display_floor: float = 0.3

    # bandit
    bandit_alpha: float = 1.0
    tie_tolerance: float = 1e-12
    singular_tolerance: float = 1e-10

    # profile smoothing
    smoothing_alpha: float = 0.35
    hidden_alpha: float = 0.3
    prior_avg_flow: float = 0.5
    prior_error_rate: float = 0.2
    prior_cadence: float = 0.5
    prior_hidden_difficulty: float = 0.5
    fatigue_rounds: int = 10

    # hidden difficulty tables (indexed by hidden level, last entry repeats)
    hide_delay_table: Tuple[int, ...] = (600, 400, 300, 240)
    show_scale_table: Tuple[float, ...] = (1.5, 1.3, 1.2, 1.1)

    # grid policy
    large_grid_flow: float = 0.7
    downgrade_flow: float = 0.4
    downgrade_window: int = 2

    # level-2 pacing
    adjacent_step: float = 0.05
    adjacent_min: float = 0.2
    adjacent_max: float = 0.6

    def with_overrides(self, overrides: Dict[str, Any]) -> "EngineConfig":
        known = {f.name for f in dataclasses.fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown engine config keys: {unknown}")
        clean = dict(overrides)
        if "membership" in clean:
            merged = dict(self.membership)
            merged.update({k: tuple(float(x) for x in v) for k, v in dict(clean["membership"]).items()})
            clean["membership"] = merged
        if "per_pair_seconds" in clean:
            clean["per_pair_seconds"] = {int(k): float(v) for k, v in dict(clean["per_pair_seconds"]).items()}
        for key in ("hide_delay_table", "show_scale_table"):
            if key in clean:
                clean[key] = tuple(clean[key])
        return dataclasses.replace(self, **clean)


ENGINE_PRESETS: Dict[str, dict] = {
    "default": {},
    "exploratory": {"bandit_alpha": 1.5},
    "conservative": {"bandit_alpha": 0.5, "smoothing_alpha": 0.25, "hidden_alpha": 0.2},
}


def get_engine_config(preset: str | dict | EngineConfig = "default") -> EngineConfig:
    """Return an EngineConfig from a preset name, an override dict, or an instance."""
    if isinstance(preset, EngineConfig):
        return preset
    if isinstance(preset, dict):
        return EngineConfig().with_overrides(preset)
    key = str(preset).lower()
    if key not in ENGINE_PRESETS:
        raise KeyError(f"Unknown engine preset '{preset}'. Available: {list(ENGINE_PRESETS)}")
    return EngineConfig().with_overrides(ENGINE_PRESETS[key])


def load_engine_config(path: str | Path) -> EngineConfig:
    """Read a YAML file with an optional ``preset`` key plus field overrides."""
    with Path(path).open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Engine config {path} must be a mapping, got {type(raw).__name__}")
    base = get_engine_config(raw.pop("preset", "default"))
    return base.with_overrides(raw)
