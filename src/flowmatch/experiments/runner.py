"""Closed-loop simulations: simulated players driving the adaptive coordinator."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pandas as pd

from flowmatch.agents.coordinator import AdaptiveCoordinator
from flowmatch.agents.player_agent import SimulatedPlayer, SimulatedPlayerFactory
from flowmatch.config import EngineConfig
from flowmatch.reporting.summary import flow_label
from flowmatch.telemetry import JSONLLogger

__all__ = ["run_session", "run_batch", "summarize_batch"]


def run_session(
    player: SimulatedPlayer,
    coordinator: AdaptiveCoordinator,
    rounds: int = 10,
    level: int = 1,
) -> pd.DataFrame:
    """Play ``rounds`` rounds at ``level``; one row per round."""
    config = coordinator.decide_next_config(level)
    records: List[Dict] = []
    for r in range(int(rounds)):
        played = config
        arm = coordinator.session.current_round.arm
        metrics = player.play(played, level)
        flow, config = coordinator.complete_round(metrics, level)
        records.append({
            "round": r + 1,
            "level": level,
            "arm": arm,
            "grid": f"{played.grid_cols}x{played.grid_rows}",
            "total_pairs": played.total_pairs,
            "hidden_level": played.hidden_level,
            "hide_delay": played.hide_delay,
            "hint_policy": played.hint_policy,
            "adjacent_rate": played.adjacent_rate,
            "flow_index": flow,
            "flow_label": flow_label(flow),
            "avg_flow": coordinator.profile.avg_flow,
            "hidden_difficulty": coordinator.profile.hidden_difficulty,
            "failed_matches": metrics.failed_matches,
            "total_matches": metrics.total_matches,
            "completion_time": metrics.completion_time,
            "cheat_count": metrics.cheat_count,
        })
    return pd.DataFrame(records)


def run_batch(
    styles: Iterable[str] = ("perfect", "average", "bad"),
    rounds: int = 10,
    seeds: Iterable[int] = (0,),
    level: int = 1,
    config: EngineConfig | str | dict | None = None,
    log_dir: Optional[str | Path] = None,
) -> pd.DataFrame:
    frames = []
    for style in styles:
        for seed in seeds:
            logger = JSONLLogger(Path(log_dir) / f"{style}_seed{seed}.jsonl") if log_dir else None
            coordinator = AdaptiveCoordinator(config, seed=int(seed), logger=logger)
            player = SimulatedPlayerFactory.create(style, seed=int(seed))
            df = run_session(player, coordinator, rounds=rounds, level=level)
            frames.append(df.assign(style=style, seed=int(seed)))
    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True)


def summarize_batch(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty:
        return df
    return (
        df.groupby("style")
        .agg(
            rounds=("round", "count"),
            mean_flow=("flow_index", "mean"),
            last_flow=("flow_index", "last"),
            mean_arm=("arm", "mean"),
            mean_hidden_level=("hidden_level", "mean"),
        )
        .reset_index()
    )
