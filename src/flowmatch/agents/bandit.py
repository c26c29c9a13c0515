from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

from flowmatch.config import EngineConfig
from flowmatch.types import LARGE_GRID, SMALL_GRID, GameConfiguration

# ---------------------------------------------------------------------
# Verbose toggle (opt-in)
# ---------------------------------------------------------------------
_DEBUG_BANDIT = os.getenv("FLOWMATCH_DEBUG_BANDIT", "").lower() in {"1", "true", "yes", "on"}

def enable_debug_bandit_logs(flag: bool = True) -> None:
    """Enable/disable bandit debug logs globally."""
    global _DEBUG_BANDIT
    _DEBUG_BANDIT = bool(flag)

def _d(*args) -> None:
    if _DEBUG_BANDIT:
        print("[Bandit]", *args)


NUM_ARMS = 3
CONTEXT_DIM = 7
HINT_POLICIES = ("generous", "standard", "limited")
ADJACENT_SEEDS = (0.6, 0.4, 0.2)

# level -> (initial_time, match_reward, hide_delay, show_scale)
BASE_CONFIG = {
    1: (180, 3, 400, 1.4),
    2: (180, 3, 400, 1.4),
    3: (300, 3, 400, 1.4),
}


def round_half_up(x: float) -> int:
    return int(math.floor(float(x) + 0.5))


def gauss_jordan_inverse(A: np.ndarray, tol: float = 1e-10) -> np.ndarray:
    """Invert ``A`` by Gauss-Jordan elimination with partial pivoting on [A|I].

    A pivot smaller than ``tol`` marks the matrix singular; the identity is
    returned in that case instead of raising.
    """
    A = np.asarray(A, dtype=np.float64)
    n = A.shape[0]
    aug = np.hstack([A.copy(), np.eye(n, dtype=np.float64)])
    for i in range(n):
        pivot_row = i + int(np.argmax(np.abs(aug[i:, i])))
        if pivot_row != i:
            aug[[i, pivot_row]] = aug[[pivot_row, i]]
        pivot = aug[i, i]
        if abs(pivot) < tol:
            _d(f"singular matrix (pivot={pivot:.3e} at col {i}) -> identity fallback")
            return np.eye(n, dtype=np.float64)
        aug[i, i:] /= pivot
        for k in range(n):
            if k != i:
                factor = aug[k, i]
                if factor != 0.0:
                    aug[k, i:] -= factor * aug[i, i:]
    return aug[:, n:]


def context_vector(profile: Any, level: int) -> np.ndarray:
    """``[level/3, avgFlow, errorRate, cadence, fatigue, hiddenDifficulty, cheatRatio]``.

    ``profile`` may be a PlayerProfile or a mapping with the same field names;
    missing or non-finite fields fall back to the profile priors.
    """
    defaults = (
        ("avg_flow", 0.5),
        ("error_rate", 0.2),
        ("cadence", 0.5),
        ("fatigue", 0.0),
        ("hidden_difficulty", 0.5),
        ("cheat_ratio", 0.0),
    )
    vals = []
    for key, default in defaults:
        raw = profile.get(key, default) if isinstance(profile, Mapping) else getattr(profile, key, default)
        try:
            v = float(raw)
        except (TypeError, ValueError):
            v = default
        vals.append(v if math.isfinite(v) else default)
    try:
        lvl = float(level)
    except (TypeError, ValueError):
        lvl = 1.0
    if not math.isfinite(lvl):
        lvl = 1.0
    return np.array([lvl / 3.0] + vals, dtype=np.float64)


@dataclass
class ArmState:
    A: np.ndarray = field(default_factory=lambda: np.eye(CONTEXT_DIM, dtype=np.float64))
    b: np.ndarray = field(default_factory=lambda: np.zeros(CONTEXT_DIM, dtype=np.float64))
    theta: np.ndarray = field(default_factory=lambda: np.zeros(CONTEXT_DIM, dtype=np.float64))
    plays: int = 0


# ---------------------------------------------------------------------
# LinUCB with disjoint per-arm ridge models
# ---------------------------------------------------------------------
class LinUCBBandit:
    """Three-arm LinUCB over difficulty presets (0 easiest, 2 hardest).

    ``A`` starts at the identity (ridge lambda=1) and ``b`` at zero; both only
    ever accumulate. ``theta`` is recomputed from them whenever an arm is scored.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        alpha: Optional[float] = None,
        rng: Optional[np.random.RandomState] = None,
        seed: Optional[int] = None,
    ):
        self.config = config or EngineConfig()
        self.alpha = float(self.config.bandit_alpha if alpha is None else alpha)
        self.d = CONTEXT_DIM
        self.num_arms = NUM_ARMS
        self.rng = rng if rng is not None else np.random.RandomState(seed)
        self.arms: List[ArmState] = [ArmState() for _ in range(self.num_arms)]
        _d(f"LinUCB init arms={self.num_arms} d={self.d} alpha={self.alpha}")

    # ------------------------------------------------------------------
    def scores(self, x: np.ndarray) -> List[Dict[str, float]]:
        """Expected reward, confidence and UCB for every arm under context ``x``."""
        x = np.asarray(x, dtype=np.float64).reshape(-1)
        out = []
        for idx, arm in enumerate(self.arms):
            A_inv = gauss_jordan_inverse(arm.A, self.config.singular_tolerance)
            arm.theta = A_inv @ arm.b
            expected = float(arm.theta @ x)
            conf = self.alpha * math.sqrt(max(0.0, float(x @ (A_inv @ x))))
            out.append({"expected": expected, "confidence": conf, "ucb": expected + conf})
            if _DEBUG_BANDIT:
                _d(f"LinUCB score arm={idx} mean={expected:.4f} conf={conf:.4f} -> {expected + conf:.4f}")
        return out

    def select_arm(self, profile: Any, level: int = 1) -> int:
        unplayed = [i for i, arm in enumerate(self.arms) if arm.plays == 0]
        if unplayed:
            choice = int(unplayed[self.rng.randint(len(unplayed))])
            _d(f"forced exploration among {unplayed} -> arm={choice}")
            return choice

        x = context_vector(profile, level)
        ucbs = np.array([s["ucb"] for s in self.scores(x)], dtype=np.float64)
        best = float(ucbs.max())
        tied = [i for i, u in enumerate(ucbs) if best - u <= self.config.tie_tolerance]
        choice = int(tied[self.rng.randint(len(tied))]) if len(tied) > 1 else int(tied[0])
        _d(f"select arm={choice} ucb={best:.4f} tied={tied}")
        return choice

    def update(self, arm: int, profile: Any, reward: float, level: int = 1) -> None:
        try:
            r = float(reward)
        except (TypeError, ValueError):
            r = float("nan")
        if not math.isfinite(r):
            _d(f"LinUCB update ignored: non-finite reward {reward!r}")
            return
        if isinstance(arm, bool) or not isinstance(arm, (int, np.integer)) or not 0 <= int(arm) < self.num_arms:
            _d(f"LinUCB update ignored: invalid arm {arm!r}")
            return
        x = context_vector(profile, level)
        state = self.arms[int(arm)]
        state.A += np.outer(x, x)
        state.b += r * x
        state.plays += 1
        if _DEBUG_BANDIT:
            _d(f"LinUCB update arm={int(arm)} r={r:.3f} plays={state.plays}")

    def theta(self, arm: int) -> np.ndarray:
        state = self.arms[int(arm)]
        state.theta = gauss_jordan_inverse(state.A, self.config.singular_tolerance) @ state.b
        return state.theta.copy()

    # ------------------------------------------------------------------
    def config_for(self, arm: int, level: int) -> GameConfiguration:
        """Base configuration for an arm at a level; a pure function of its inputs."""
        arm = int(min(self.num_arms - 1, max(0, int(arm))))
        lvl = int(level) if int(level) in BASE_CONFIG else 1
        initial_time, match_reward, hide_delay, show_scale = BASE_CONFIG[lvl]
        mult = arm / 2.0

        cols, rows = SMALL_GRID
        if lvl in (2, 3) and arm == 2:
            cols, rows = LARGE_GRID
        total_pairs = (cols * rows) // 2

        extra: Dict[str, Any] = {}
        if lvl == 2:
            rate = min(self.config.adjacent_max, max(self.config.adjacent_min, ADJACENT_SEEDS[arm]))
            extra.update(
                neighbor_mode="8",
                adjacent_rate=rate,
                adjacent_target=min(total_pairs, max(0, round_half_up(rate * total_pairs))),
            )
        elif lvl == 3:
            extra["pairs_type"] = "image-text"

        return GameConfiguration(
            initial_time=initial_time,
            match_reward=max(1, round_half_up(match_reward * (1 - 0.3 * mult))),
            hide_delay=max(200, round_half_up(hide_delay * (1 - 0.4 * mult))),
            show_scale=max(1.1, show_scale * (1 - 0.25 * mult)),
            hint_policy=HINT_POLICIES[arm],
            grid_cols=cols,
            grid_rows=rows,
            total_pairs=total_pairs,
            **extra,
        )

    # ------------------------------------------------------------------
    def state_dict(self) -> Dict[str, Any]:
        return {
            "alpha": self.alpha,
            "arms": [
                {"A": arm.A.tolist(), "b": arm.b.tolist(), "plays": int(arm.plays)}
                for arm in self.arms
            ],
        }

    def load_state_dict(self, state: Mapping[str, Any]) -> None:
        arms = list(state.get("arms", []))
        if len(arms) != self.num_arms:
            raise ValueError(f"Expected {self.num_arms} arms in bandit state, got {len(arms)}")
        loaded = []
        for raw in arms:
            A = np.asarray(raw["A"], dtype=np.float64).reshape(self.d, self.d)
            b = np.asarray(raw["b"], dtype=np.float64).reshape(self.d)
            loaded.append(ArmState(A=A, b=b, theta=np.zeros(self.d), plays=int(raw.get("plays", 0))))
        self.arms = loaded
        self.alpha = float(state.get("alpha", self.alpha))
        _d(f"LinUCB state loaded plays={[a.plays for a in self.arms]}")

    def reset(self) -> None:
        self.arms = [ArmState() for _ in range(self.num_arms)]


__all__ = [
    "NUM_ARMS",
    "CONTEXT_DIM",
    "ArmState",
    "LinUCBBandit",
    "context_vector",
    "gauss_jordan_inverse",
    "round_half_up",
    "enable_debug_bandit_logs",
]
