"""Fuzzy-inference Flow Index scorer.

Raw round telemetry is normalised to [0,1] quantities, mapped through triangular
membership functions, combined by a fixed 16-rule base and defuzzified by a
weighted average. The input record is never modified; diagnostics come back in
a separate ``FlowScore``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Mapping, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from flowmatch.config import EngineConfig
from flowmatch.types import CategoryStats, PerformanceMetrics

__all__ = [
    "CardAttributes",
    "CARD_ATTRIBUTES",
    "triangular_membership",
    "FlowScore",
    "FuzzyFlowScorer",
]


class CardAttributes(NamedTuple):
    color: str
    base_color: str
    name: str


CARD_ATTRIBUTES: Mapping[str, CardAttributes] = {
    "image1.png": CardAttributes("blue-dark", "blue", "Matariki"),
    "image2.png": CardAttributes("orange-brown-dark", "orange-brown", "Pīwakawaka"),
    "image3.png": CardAttributes("gray-dark", "gray", "Tūī"),
    "image4.png": CardAttributes("green-olive-dark", "green", "Kea"),
    "image5.png": CardAttributes("green-dark", "green", "Kawakawa"),
    "image6.png": CardAttributes("red", "red", "Pōhutukawa"),
    "image7.png": CardAttributes("yellow-bright", "yellow", "Kōwhai"),
    "image8.png": CardAttributes("green-light", "green", "Koru"),
    "image9.png": CardAttributes("blue-dark", "blue", "Hei Matau"),
    "image10.png": CardAttributes("blue-light", "blue", "Pikorua"),
}


def triangular_membership(value: float, params: Tuple[float, float, float]) -> float:
    """Degree of truth for a triangle ``(min, max, peak)``; 0 outside (min, max)."""
    lo, hi, peak = params
    if value == peak:
        return 1.0
    if value <= lo or value >= hi:
        return 0.0
    if value < peak:
        return (value - lo) / (peak - lo)
    return (hi - value) / (hi - peak)


def _clamp01(x: float) -> float:
    return float(min(1.0, max(0.0, x)))


def _pooled_accuracy(stats: Mapping[str, CategoryStats]) -> float:
    attempts = sum(s.attempts for s in stats.values())
    if attempts <= 0:
        return 0.5
    return sum(s.successes for s in stats.values()) / attempts


@dataclass(frozen=True)
class FlowScore:
    """Flow Index plus the diagnostics derived while computing it."""

    flow_index_raw: float
    flow_index_display: float
    base_flow_index: float
    cheat_penalty: float
    color_sensitivity: Dict[str, float] = field(default_factory=dict)
    inputs: Dict[str, float] = field(default_factory=dict)
    activations: Tuple[float, ...] = ()

    @property
    def flow_index(self) -> float:
        return self.flow_index_raw


class FuzzyFlowScorer:
    # rule index (1-based) -> weight; rule 2 is data dependent
    RULE_WEIGHTS: Tuple[float, ...] = (
        0.90, 1.0, 0.60, 0.60, 0.30, 0.10, 0.20, 0.98,
        0.35, 0.95, 0.20, 0.85, 0.97, 1.0, 0.95, 0.80,
    )

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        card_attributes: Optional[Mapping[str, CardAttributes]] = None,
    ):
        self.config = config or EngineConfig()
        self.card_attributes = dict(card_attributes or CARD_ATTRIBUTES)

    # ------------------------------------------------------------------
    # normalisation
    # ------------------------------------------------------------------
    def normalize_time(self, completion_time: float, level: int, total_pairs: int) -> float:
        """0 = fast, 1 = at or beyond the expected total for this level."""
        per_pair = self.config.per_pair_seconds.get(int(level), self.config.per_pair_seconds.get(1, 20.0))
        expected_total = float(per_pair) * float(total_pairs)
        if expected_total <= 0:
            return 0.5
        if not math.isfinite(completion_time) or completion_time <= 0:
            completion_time = expected_total * 0.5
        return _clamp01(completion_time / expected_total)

    @staticmethod
    def error_rate(failed_matches: int, total_matches: int) -> float:
        if total_matches <= 0:
            return 0.5
        return _clamp01(failed_matches / total_matches)

    @staticmethod
    def cadence_variance(flip_intervals: Sequence[float]) -> float:
        """Coefficient of variation of reveal intervals, capped at 1."""
        if len(flip_intervals) < 2:
            return 0.5
        arr = np.asarray(flip_intervals, dtype=np.float64)
        mean = float(arr.mean())
        if mean <= 0:
            return 1.0
        return float(min(1.0, float(arr.std()) / mean))

    @staticmethod
    def click_accuracy(successful_matches: int, total_clicks: int) -> float:
        if total_clicks <= 0:
            return 0.5
        return float(min(1.0, 2.0 * successful_matches / total_clicks))

    @staticmethod
    def cheat_penalty(cheat_count: int, total_pairs: int) -> float:
        """1.0 without reveal-all use, down to 0.5 when used once per pair or more."""
        if cheat_count <= 0:
            return 1.0
        if total_pairs <= 0:
            return 0.5
        return 1.0 - min(0.5, 0.5 * cheat_count / total_pairs)

    def color_sensitivity(self, color_stats: Mapping[str, CategoryStats]) -> Dict[str, float]:
        """Accuracy per base-color family, for display only."""
        pooled: Dict[str, list] = {}
        seen_colors = set()
        for attr in self.card_attributes.values():
            # several cards share a detailed color; count each color once
            if attr.color in seen_colors or attr.color not in color_stats:
                continue
            seen_colors.add(attr.color)
            stats = color_stats[attr.color]
            bucket = pooled.setdefault(attr.base_color, [0, 0])
            bucket[0] += stats.attempts
            bucket[1] += stats.successes
        return {
            base: (succ / att if att > 0 else 0.5)
            for base, (att, succ) in pooled.items()
        }

    # ------------------------------------------------------------------
    # inference
    # ------------------------------------------------------------------
    def _memberships(self, t: float, e: float, cad: float, click: float, color: float, shape: float) -> Dict[str, float]:
        m = self.config.membership
        mu = {
            "time_fast": triangular_membership(t, m["time_fast"]),
            "time_medium": triangular_membership(t, m["time_medium"]),
            "time_slow": triangular_membership(t, m["time_slow"]),
            "error_low": triangular_membership(e, m["error_low"]),
            "error_medium": triangular_membership(e, m["error_medium"]),
            "error_high": triangular_membership(e, m["error_high"]),
            "click_high": triangular_membership(click, m["click_high"]),
            "click_low": triangular_membership(click, m["click_low"]),
            "color_high": triangular_membership(color, m["color_high"]),
            "color_low": triangular_membership(color, m["color_low"]),
            "shape_high": triangular_membership(shape, m["shape_high"]),
            "shape_low": triangular_membership(shape, m["shape_low"]),
        }
        stable = 1.0 if cad < self.config.cadence_threshold else 0.0
        mu["cadence_stable"] = stable
        mu["cadence_variable"] = 1.0 - stable
        return mu

    @staticmethod
    def _rules(mu: Mapping[str, float]) -> Tuple[float, ...]:
        tf, tm, ts = mu["time_fast"], mu["time_medium"], mu["time_slow"]
        el, em, eh = mu["error_low"], mu["error_medium"], mu["error_high"]
        cs, cv = mu["cadence_stable"], mu["cadence_variable"]
        return (
            min(tm, el, cs),
            min(tf, el, cs),
            min(tm, em, cs),
            min(ts, el),
            min(tf, eh),
            min(ts, eh),
            min(eh, cv),
            min(tm, el, mu["color_high"], mu["shape_high"]),
            min(tm, max(mu["color_low"], mu["shape_low"])),
            min(mu["click_high"], cs),
            min(mu["click_low"], mu["color_low"]),
            min(tf, em),
            min(tf, el),
            min(tf, el, mu["click_high"]),
            min(tf, el, cv),
            min(tm, el),
        )

    def score(self, metrics: PerformanceMetrics | Mapping) -> FlowScore:
        m = PerformanceMetrics.coerce(metrics)

        t = self.normalize_time(m.completion_time, m.level, m.total_pairs)
        e = self.error_rate(m.failed_matches, m.total_matches)
        cad = self.cadence_variance(m.flip_intervals)
        click = self.click_accuracy(m.successful_matches, m.total_clicks)
        color = _pooled_accuracy(m.color_stats)
        shape = _pooled_accuracy(m.shape_stats)
        penalty = self.cheat_penalty(m.cheat_count, m.total_pairs)

        activations = self._rules(self._memberships(t, e, cad, click, color, shape))
        weights = list(self.RULE_WEIGHTS)
        weights[1] = 1.0 if m.failed_matches == 0 else 0.95

        num = 0.0
        den = 0.0
        for a, w in zip(activations, weights):
            if a > 0:
                num += a * w
                den += a
        if den > 0:
            base = num / den
        else:
            base = 0.45 * (1.0 - t) + 0.35 * (1.0 - e) + 0.2 * click
        base = _clamp01(base)
        raw = _clamp01(base * penalty)

        return FlowScore(
            flow_index_raw=raw,
            flow_index_display=max(self.config.display_floor, raw),
            base_flow_index=base,
            cheat_penalty=penalty,
            color_sensitivity=self.color_sensitivity(m.color_stats),
            inputs={
                "normalized_time": t,
                "error_rate": e,
                "cadence_variance": cad,
                "click_accuracy": click,
                "color_accuracy": color,
                "shape_accuracy": shape,
            },
            activations=tuple(float(a) for a in activations),
        )

    def flow_index(self, metrics: PerformanceMetrics | Mapping) -> float:
        return self.score(metrics).flow_index_raw
