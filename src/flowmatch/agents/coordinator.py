from __future__ import annotations

import dataclasses
import math
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from flowmatch.agents.bandit import LinUCBBandit, round_half_up
from flowmatch.assessment import assess_initial_difficulty
from flowmatch.config import EngineConfig, get_engine_config
from flowmatch.fuzzy import FlowScore, FuzzyFlowScorer
from flowmatch.types import LARGE_GRID, SMALL_GRID, GameConfiguration, PerformanceMetrics

# ------------------------ opt-in debug printing ------------------------

_DEBUG_ENGINE = os.getenv("FLOWMATCH_DEBUG_ENGINE", "").lower() in {"1", "true", "yes", "on"}

def enable_debug_engine_logs(flag: bool = True) -> None:
    """Enable/disable coordinator debug logs globally (env var also supported)."""
    global _DEBUG_ENGINE
    _DEBUG_ENGINE = bool(flag)

def _d(*args) -> None:
    if _DEBUG_ENGINE:
        print("[Coordinator]", *args)

# ----------------------------------------------------------------------


def _clamp(x: float, lo: float, hi: float) -> float:
    return float(min(hi, max(lo, x)))


def _finite_or(x: Any, default: float) -> float:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return float(default)
    return v if math.isfinite(v) else float(default)


def limit_step(value: int, previous: Optional[int], step: int = 1) -> int:
    """Hysteresis: keep ``value`` within ``step`` of ``previous`` (if any)."""
    if previous is None:
        return int(value)
    return int(min(previous + step, max(previous - step, value)))


@dataclass
class PlayerProfile:
    avg_flow: float = 0.5
    error_rate: float = 0.2
    cadence: float = 0.5
    fatigue: float = 0.0
    hidden_difficulty: float = 0.5
    cheat_ratio: float = 0.0
    max_consecutive_errors: int = 0

    def snapshot(self) -> "PlayerProfile":
        return dataclasses.replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class Round:
    flow_index: float
    metrics: PerformanceMetrics
    timestamp: float
    arm: Optional[int] = None
    config: Optional[GameConfiguration] = None
    score: Optional[FlowScore] = None


@dataclass
class PendingRound:
    """The configuration handed out and the context it was chosen under."""

    arm: int
    config: GameConfiguration
    timestamp: float
    level: int
    context_level: int
    profile: PlayerProfile


@dataclass
class SessionState:
    level: int = 1
    rounds: List[Round] = field(default_factory=list)
    current_round: Optional[PendingRound] = None
    last_hidden_level: Optional[int] = None
    last_arm: Optional[int] = None
    last_adjacent_rate: Optional[float] = None
    last_adjacent_target: Optional[int] = None
    last_grid_size: str = "small"

    def rounds_at_level(self, level: int) -> List[Round]:
        return [r for r in self.rounds if r.metrics.level == level]


def should_use_large_grid(
    profile: PlayerProfile,
    recent: Sequence[Round],
    currently_large: bool,
    config: Optional[EngineConfig] = None,
) -> bool:
    """Grid policy for levels 2/3 once the forced-small cases are ruled out.

    Upgrade needs the last round at or above ``large_grid_flow``; a large grid
    only drops back when the smoothed flow and every round in the downgrade
    window are below ``downgrade_flow``.
    """
    cfg = config or EngineConfig()
    flows = [r.flow_index for r in recent]
    if not currently_large:
        return bool(flows) and flows[-1] >= cfg.large_grid_flow
    window = flows[-cfg.downgrade_window:]
    low = sum(1 for f in window if f < cfg.downgrade_flow)
    if profile.avg_flow < cfg.downgrade_flow and len(window) >= cfg.downgrade_window and low >= cfg.downgrade_window:
        return False
    return True


def adjacent_bucket(flow: float) -> float:
    if flow < 0.45:
        return 0.6
    if flow < 0.75:
        return 0.4
    return 0.2


# ------------------------------------------------------------------------------------
# Coordinator
# ------------------------------------------------------------------------------------
class AdaptiveCoordinator:
    """Owns one player's profile and session and decides every next round.

    One instance per player; nothing here is shared across sessions. Typical loop::

        flow = coord.process_game_end(metrics)
        coord.update_bandit(flow)
        cfg = coord.decide_next_config(level)
    """

    def __init__(
        self,
        config: EngineConfig | str | dict | None = None,
        *,
        scorer: Optional[FuzzyFlowScorer] = None,
        bandit: Optional[LinUCBBandit] = None,
        seed: Optional[int] = None,
        rng: Optional[np.random.RandomState] = None,
        logger: Any = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = get_engine_config(config if config is not None else "default")
        self.rng = rng if rng is not None else np.random.RandomState(seed)
        self.scorer = scorer or FuzzyFlowScorer(self.config)
        self.bandit = bandit or LinUCBBandit(self.config, rng=self.rng)
        self.logger = logger
        self.clock = clock
        self.profile = self._fresh_profile()
        self.session = SessionState()
        _d(f"init alpha={self.bandit.alpha} smoothing={self.config.smoothing_alpha} hidden={self.config.hidden_alpha}")

    def _fresh_profile(self) -> PlayerProfile:
        c = self.config
        return PlayerProfile(
            avg_flow=c.prior_avg_flow,
            error_rate=c.prior_error_rate,
            cadence=c.prior_cadence,
            hidden_difficulty=c.prior_hidden_difficulty,
        )

    @property
    def rounds_played(self) -> int:
        return len(self.session.rounds)

    def reset_session(self) -> None:
        self.profile = self._fresh_profile()
        self.session = SessionState()
        self.bandit.reset()
        _d("session reset")

    # ------------------------------------------------------------------
    # scoring
    # ------------------------------------------------------------------
    def score_round(self, metrics: PerformanceMetrics | Mapping) -> FlowScore:
        return self.scorer.score(metrics)

    def process_game_end(self, metrics: PerformanceMetrics | Mapping) -> float:
        """Score a finished round and fold it into the profile; returns the raw Flow Index."""
        m = PerformanceMetrics.coerce(metrics)
        score = self.scorer.score(m)
        flow = score.flow_index_raw
        pending = self.session.current_round

        self.session.rounds.append(Round(
            flow_index=flow,
            metrics=m,
            timestamp=self.clock(),
            arm=pending.arm if pending else None,
            config=pending.config if pending else None,
            score=score,
        ))
        self.session.level = m.level

        a = self.config.smoothing_alpha
        p = self.profile
        p.avg_flow = a * flow + (1 - a) * _finite_or(p.avg_flow, 0.5)
        p.error_rate = a * score.inputs["error_rate"] + (1 - a) * _finite_or(p.error_rate, 0.2)
        p.cadence = a * score.inputs["cadence_variance"] + (1 - a) * _finite_or(p.cadence, 0.5)
        p.max_consecutive_errors = m.max_consecutive_errors
        if m.total_pairs > 0:
            p.cheat_ratio = min(1.0, m.cheat_count / m.total_pairs)
        else:
            p.cheat_ratio = 1.0 if m.cheat_count > 0 else 0.0

        if pending is not None:
            self.session.last_grid_size = pending.config.grid_size
        else:
            self.session.last_grid_size = "large" if m.total_pairs > (SMALL_GRID[0] * SMALL_GRID[1]) // 2 else "small"

        self._update_hidden_difficulty(flow, score)

        _d(
            f"round={self.rounds_played} level={m.level} flow={flow:.3f} "
            f"avgFlow={p.avg_flow:.3f} err={p.error_rate:.3f} cad={p.cadence:.3f} "
            f"hidden={p.hidden_difficulty:.3f}/L{self.session.last_hidden_level}"
        )
        if self.logger is not None:
            self.logger.log({
                "type": "flow_index",
                "round": self.rounds_played,
                "flow_index": flow,
                "flow_index_display": score.flow_index_display,
                "level": m.level,
                "completion_time": m.completion_time,
                "failed_matches": m.failed_matches,
                "total_matches": m.total_matches,
                "cheat_count": m.cheat_count,
                "color_sensitivity": score.color_sensitivity,
                "cheat_penalty": score.cheat_penalty,
            })
        return flow

    def _update_hidden_difficulty(self, flow: float, score: FlowScore) -> None:
        p = self.profile
        target = _clamp(
            0.5 * flow
            + 0.3 * (1.0 - p.cheat_ratio)
            + 0.2 * score.inputs["click_accuracy"]
            - 0.2 * score.inputs["error_rate"]
            - 0.1 * min(1.0, p.max_consecutive_errors / 5.0),
            0.0,
            1.0,
        )
        h = self.config.hidden_alpha
        p.hidden_difficulty = h * target + (1 - h) * _finite_or(p.hidden_difficulty, self.config.prior_hidden_difficulty)
        self.session.last_hidden_level = limit_step(self._raw_hidden_level(), self.session.last_hidden_level)

    def _raw_hidden_level(self) -> int:
        return int(_clamp(round_half_up(self.profile.hidden_difficulty * 4), 0, 4))

    # ------------------------------------------------------------------
    # bandit feedback
    # ------------------------------------------------------------------
    def update_bandit(self, flow_index: float) -> None:
        """Reward the arm of the in-progress round under the profile it was chosen with."""
        pending = self.session.current_round
        if pending is None:
            return
        self.bandit.update(pending.arm, pending.profile, flow_index, level=pending.context_level)
        # a round is rewarded at most once
        self.session.current_round = None

    # ------------------------------------------------------------------
    # next configuration
    # ------------------------------------------------------------------
    def _grid_for(self, level: int, arm: int, base: GameConfiguration) -> Tuple[int, int]:
        if level not in (2, 3):
            return base.grid_cols, base.grid_rows
        if not self.session.rounds_at_level(level):
            return SMALL_GRID
        if arm == 0:
            return SMALL_GRID
        large = should_use_large_grid(
            self.profile,
            self.session.rounds[-3:],
            self.session.last_grid_size == "large",
            self.config,
        )
        return LARGE_GRID if large else SMALL_GRID

    def _adjacent_pacing(self, base: GameConfiguration, total_pairs: int) -> Tuple[float, int]:
        c = self.config
        rounds = self.session.rounds
        rate = adjacent_bucket(rounds[-1].flow_index) if rounds else float(base.adjacent_rate)
        prev = self.session.last_adjacent_rate
        if prev is not None:
            rate = _clamp(rate, prev - c.adjacent_step, prev + c.adjacent_step)
        rate = round(_clamp(rate, c.adjacent_min, c.adjacent_max), 6)
        target = int(_clamp(round_half_up(rate * total_pairs), 0, total_pairs))
        return rate, target

    def decide_next_config(self, level: int) -> GameConfiguration:
        try:
            lvl = int(level)
        except (TypeError, ValueError):
            lvl = 1
        if lvl not in (1, 2, 3):
            lvl = 1
        s = self.session
        if not s.rounds:
            s.level = lvl

        self.profile.fatigue = min(1.0, self.rounds_played / float(self.config.fatigue_rounds))
        raw_arm = self.bandit.select_arm(self.profile, s.level)
        arm = int(_clamp(limit_step(raw_arm, s.last_arm), 0, 2))
        base = self.bandit.config_for(arm, lvl)

        cols, rows = self._grid_for(lvl, arm, base)
        total_pairs = (cols * rows) // 2

        if s.last_hidden_level is None:
            s.last_hidden_level = self._raw_hidden_level()
        hidden = s.last_hidden_level
        c = self.config
        hide_delay = int(c.hide_delay_table[min(hidden, len(c.hide_delay_table) - 1)])
        show_scale = float(c.show_scale_table[min(hidden, len(c.show_scale_table) - 1)])

        changes: Dict[str, Any] = dict(
            grid_cols=cols,
            grid_rows=rows,
            total_pairs=total_pairs,
            hidden_level=hidden,
            hide_delay=hide_delay,
            show_scale=show_scale,
        )
        if lvl == 2:
            rate, target = self._adjacent_pacing(base, total_pairs)
            changes.update(adjacent_rate=rate, adjacent_target=target)
            s.last_adjacent_rate, s.last_adjacent_target = rate, target
        cfg = dataclasses.replace(base, **changes)

        s.last_arm = arm
        s.current_round = PendingRound(
            arm=arm,
            config=cfg,
            timestamp=self.clock(),
            level=lvl,
            context_level=s.level,
            profile=self.profile.snapshot(),
        )
        _d(
            f"next level={lvl} arm={arm} (raw={raw_arm}) grid={cols}x{rows} "
            f"hidden=L{hidden} hint={cfg.hint_policy} fatigue={self.profile.fatigue:.2f}"
        )
        if self.logger is not None:
            self.logger.log({"type": "ai_suggestion", "round": self.rounds_played, "level": lvl, "arm": arm, "next_config": cfg})
        return cfg

    def complete_round(self, metrics: PerformanceMetrics | Mapping, next_level: Optional[int] = None) -> Tuple[float, GameConfiguration]:
        """Score, reward and decide in one call."""
        m = PerformanceMetrics.coerce(metrics)
        flow = self.process_game_end(m)
        self.update_bandit(flow)
        return flow, self.decide_next_config(m.level if next_level is None else next_level)

    @staticmethod
    def get_initial_difficulty(signals: Any = None) -> int:
        return assess_initial_difficulty(signals)

    # ------------------------------------------------------------------
    # persistence of the state shape
    # ------------------------------------------------------------------
    def state_dict(self) -> Dict[str, Any]:
        s = self.session
        pending = s.current_round
        return {
            "profile": self.profile.to_dict(),
            "session": {
                "level": s.level,
                "rounds": [
                    {
                        "flow_index": r.flow_index,
                        "metrics": r.metrics.to_dict(),
                        "timestamp": r.timestamp,
                        "arm": r.arm,
                        "config": r.config.to_dict() if r.config else None,
                    }
                    for r in s.rounds
                ],
                "current_round": None if pending is None else {
                    "arm": pending.arm,
                    "config": pending.config.to_dict(),
                    "timestamp": pending.timestamp,
                    "level": pending.level,
                    "context_level": pending.context_level,
                    "profile": pending.profile.to_dict(),
                },
                "last_hidden_level": s.last_hidden_level,
                "last_arm": s.last_arm,
                "last_adjacent_rate": s.last_adjacent_rate,
                "last_adjacent_target": s.last_adjacent_target,
                "last_grid_size": s.last_grid_size,
            },
            "bandit": self.bandit.state_dict(),
        }

    def load_state_dict(self, state: Mapping[str, Any]) -> None:
        self.profile = PlayerProfile(**dict(state.get("profile", {})))
        raw = dict(state.get("session", {}))
        rounds = []
        for r in raw.get("rounds", []):
            m = PerformanceMetrics.from_dict(r.get("metrics", {}))
            rounds.append(Round(
                flow_index=float(r["flow_index"]),
                metrics=m,
                timestamp=float(r.get("timestamp", 0.0)),
                arm=r.get("arm"),
                config=GameConfiguration.from_dict(r["config"]) if r.get("config") else None,
                score=self.scorer.score(m),
            ))
        pending = None
        cr = raw.get("current_round")
        if cr:
            pending = PendingRound(
                arm=int(cr["arm"]),
                config=GameConfiguration.from_dict(cr["config"]),
                timestamp=float(cr.get("timestamp", 0.0)),
                level=int(cr.get("level", 1)),
                context_level=int(cr.get("context_level", 1)),
                profile=PlayerProfile(**dict(cr.get("profile", {}))),
            )
        self.session = SessionState(
            level=int(raw.get("level", 1)),
            rounds=rounds,
            current_round=pending,
            last_hidden_level=raw.get("last_hidden_level"),
            last_arm=raw.get("last_arm"),
            last_adjacent_rate=raw.get("last_adjacent_rate"),
            last_adjacent_target=raw.get("last_adjacent_target"),
            last_grid_size=str(raw.get("last_grid_size", "small")),
        )
        if "bandit" in state:
            self.bandit.load_state_dict(state["bandit"])
        _d(f"state loaded rounds={len(rounds)} pending={'yes' if pending else 'no'}")


__all__ = [
    "PlayerProfile",
    "Round",
    "PendingRound",
    "SessionState",
    "AdaptiveCoordinator",
    "should_use_large_grid",
    "adjacent_bucket",
    "limit_step",
    "enable_debug_engine_logs",
]
