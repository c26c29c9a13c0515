from __future__ import annotations

import pytest

from flowmatch.agents.coordinator import AdaptiveCoordinator
from flowmatch.types import PerformanceMetrics


def build_metrics(
    *,
    level: int = 1,
    total_pairs: int = 10,
    completion_time: float = 1.0,
    failed_matches: int = 0,
    total_matches: int | None = None,
    total_clicks: int | None = None,
    flip_intervals: list[float] | None = None,
    cheat_count: int = 0,
    max_consecutive_errors: int = 0,
) -> PerformanceMetrics:
    """A round record; defaults describe a fast clean round."""

    matches = total_pairs + failed_matches if total_matches is None else total_matches
    return PerformanceMetrics(
        completion_time=completion_time,
        level=level,
        total_pairs=total_pairs,
        failed_matches=failed_matches,
        total_matches=matches,
        flip_intervals=list(flip_intervals or []),
        total_clicks=2 * matches if total_clicks is None else total_clicks,
        cheat_count=cheat_count,
        max_consecutive_errors=max_consecutive_errors,
    )


def strong_round(level: int = 1, total_pairs: int = 10) -> PerformanceMetrics:
    return build_metrics(level=level, total_pairs=total_pairs, completion_time=1.0)


def weak_round(level: int = 1, total_pairs: int = 10) -> PerformanceMetrics:
    # at the expected total time, half the attempts failed, three reveal-alls
    per_pair = {1: 20, 2: 15, 3: 12}[level]
    return build_metrics(
        level=level,
        total_pairs=total_pairs,
        completion_time=per_pair * total_pairs,
        failed_matches=total_pairs,
        total_matches=2 * total_pairs,
        total_clicks=2 * total_pairs,
        cheat_count=3,
    )


def force_arm(coordinator: AdaptiveCoordinator, arm: int) -> None:
    coordinator.bandit.select_arm = lambda profile, level=1: arm


@pytest.fixture
def coordinator() -> AdaptiveCoordinator:
    return AdaptiveCoordinator(seed=7, clock=lambda: 1000.0)
