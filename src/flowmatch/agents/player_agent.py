from __future__ import annotations

import math
import os
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np

from flowmatch.fuzzy import CARD_ATTRIBUTES
from flowmatch.types import CategoryStats, GameConfiguration, PerformanceMetrics

# ------------------------ opt-in debug printing ------------------------

_DEBUG_PLAYER = os.getenv("FLOWMATCH_DEBUG_PLAYER", "").lower() in {"1", "true", "yes", "on"}

def enable_debug_player_logs(flag: bool = True) -> None:
    """Enable/disable SimulatedPlayer debug logs globally (env var also supported)."""
    global _DEBUG_PLAYER
    _DEBUG_PLAYER = bool(flag)

def _p(*args) -> None:
    if _DEBUG_PLAYER:
        print("[SimulatedPlayer]", *args)

# ----------------------------------------------------------------------

_CARD_NAMES = sorted(CARD_ATTRIBUTES, key=lambda n: int("".join(ch for ch in n if ch.isdigit())))


@dataclass(frozen=True)
class PlayStyle:
    name: str
    memory_size: float = 4          # pairs remembered; math.inf = perfect recall
    mistake_rate: float = 0.1       # chance to fumble a known match
    click_delay: float = 300.0      # ms between the two reveals of a turn
    think_time: float = 800.0       # ms before the first reveal of a turn
    cheat_rate: float = 0.0         # chance per turn of using reveal-all
    fatigue_growth: float = 0.05
    fatigue_recovery: float = 0.02


PLAY_STYLES: Dict[str, PlayStyle] = {
    "perfect": PlayStyle("perfect", memory_size=math.inf, mistake_rate=0.0, click_delay=50.0, think_time=100.0),
    "average": PlayStyle("average", memory_size=4, mistake_rate=0.1, click_delay=300.0, think_time=800.0, cheat_rate=0.005),
    "bad": PlayStyle("bad", memory_size=1, mistake_rate=0.4, click_delay=500.0, think_time=1500.0, cheat_rate=0.02),
}


class SimulatedPlayer:
    """
    Synthetic player for a memory-matching board. Keeps a bounded memory of
    revealed card positions and a fatigue latent, and emits only the telemetry
    a real board would (a PerformanceMetrics record per round).

    Public methods:
      - profile()
      - play(config, level)
    """

    MAX_CHEATS_PER_ROUND = 5

    def __init__(self, style: PlayStyle, seed: int = 42, verbose: bool = False):
        self.style = style
        self.rng = np.random.RandomState(seed)
        self.verbose = bool(verbose) or _DEBUG_PLAYER
        self.fatigue = 0.0
        self.rounds_played = 0
        if self.verbose:
            _p(f"init style={style.name} memory={style.memory_size} mistake={style.mistake_rate:.2f} seed={seed}")

    def profile(self) -> Dict[str, Any]:
        return {
            "style": self.style.name,
            "fatigue": float(self.fatigue),
            "rounds_played": int(self.rounds_played),
        }

    # ------------------- helpers -------------------

    def _effective_mistake_rate(self, hide_delay: float) -> float:
        # longer exposure of a mismatch makes it easier to remember
        exposure = math.sqrt(400.0 / max(100.0, float(hide_delay)))
        return float(np.clip(self.style.mistake_rate * exposure * (1.0 + 0.5 * self.fatigue), 0.0, 0.95))

    def _jitter(self, base_ms: float) -> float:
        return float(base_ms * (1.0 + self.fatigue) * np.exp(self.rng.normal(0.0, 0.25)))

    def _known_pair(self, memory, board, matched) -> Optional[tuple]:
        seen: Dict[int, int] = {}
        for pos in memory:
            if matched[pos]:
                continue
            pid = board[pos]
            if pid in seen and seen[pid] != pos:
                return seen[pid], pos
            seen[pid] = pos
        return None

    # ------------------- interaction loop -------------------

    def play(self, config: GameConfiguration, level: Optional[int] = None) -> PerformanceMetrics:
        lvl = int(level if level is not None else (3 if config.pairs_type else 2 if config.adjacent_rate is not None else 1))
        n = max(1, int(config.total_pairs))
        board = self.rng.permutation(np.repeat(np.arange(n), 2))
        matched = np.zeros(2 * n, dtype=bool)
        maxlen = None if math.isinf(self.style.memory_size) else max(2, int(self.style.memory_size) * 2)
        memory: deque = deque(maxlen=maxlen)
        mistake = self._effective_mistake_rate(config.hide_delay)

        intervals: List[float] = []
        clicks = failed = total = cheats = run = max_run = 0
        colors: Dict[str, List[int]] = {}
        shapes: Dict[str, List[int]] = {}
        elapsed_ms = self._jitter(self.style.think_time)
        time_budget_ms = float(config.initial_time) * 1000.0
        pending_delay = 0.0

        while not matched.all():
            if elapsed_ms >= time_budget_ms:
                break
            if cheats < self.MAX_CHEATS_PER_ROUND and self.rng.rand() < self.style.cheat_rate:
                cheats += 1
                memory.extend(int(i) for i in np.flatnonzero(~matched))

            open_pos = np.flatnonzero(~matched)
            known = self._known_pair(memory, board, matched)
            if known is not None and self.rng.rand() >= mistake:
                c1, c2 = known
            else:
                unknown = [int(i) for i in open_pos if int(i) not in memory]
                pool = unknown or [int(i) for i in open_pos]
                c1 = int(pool[self.rng.randint(len(pool))])
                partner = [p for p in memory if p != c1 and not matched[p] and board[p] == board[c1]]
                if partner and self.rng.rand() >= mistake:
                    c2 = int(partner[0])
                else:
                    rest = [int(i) for i in open_pos if int(i) != c1]
                    c2 = int(rest[self.rng.randint(len(rest))]) if rest else c1

            first_gap = self._jitter(self.style.think_time) + pending_delay
            second_gap = self._jitter(self.style.click_delay)
            if clicks > 0:
                intervals.append(first_gap)
            intervals.append(second_gap)
            elapsed_ms += first_gap + second_gap
            clicks += 2

            ok = c1 != c2 and board[c1] == board[c2]
            total += 1
            name = _CARD_NAMES[int(board[c1]) % len(_CARD_NAMES)]
            attr = CARD_ATTRIBUTES[name]
            for counts, key in ((colors, attr.color), (shapes, attr.name)):
                bucket = counts.setdefault(key, [0, 0])
                bucket[0] += 1
                bucket[1] += int(ok)
            if ok:
                matched[c1] = matched[c2] = True
                time_budget_ms += float(config.match_reward) * 1000.0
                run = 0
                pending_delay = 0.0
            else:
                failed += 1
                run += 1
                max_run = max(max_run, run)
                pending_delay = float(config.hide_delay)
            memory.append(c1)
            if c2 != c1:
                memory.append(c2)

        self.rounds_played += 1
        self.fatigue = float(np.clip(
            self.fatigue - self.style.fatigue_recovery + self.style.fatigue_growth * n / 10.0, 0.0, 1.0
        ))
        if self.verbose:
            _p(
                f"style={self.style.name} round={self.rounds_played} pairs={n} "
                f"matched={int(matched.sum()) // 2} failed={failed}/{total} cheats={cheats} "
                f"t={elapsed_ms / 1000.0:.1f}s F={self.fatigue:.3f}"
            )

        return PerformanceMetrics(
            completion_time=min(elapsed_ms, time_budget_ms) / 1000.0,
            level=lvl,
            total_pairs=n,
            failed_matches=failed,
            total_matches=total,
            flip_intervals=intervals,
            total_clicks=clicks,
            color_stats={k: CategoryStats(a, s) for k, (a, s) in colors.items()},
            shape_stats={k: CategoryStats(a, s) for k, (a, s) in shapes.items()},
            cheat_count=cheats,
            max_consecutive_errors=max_run,
        )


class SimulatedPlayerFactory:
    _registry = PLAY_STYLES

    @classmethod
    def create(cls, name: str, **kwargs) -> SimulatedPlayer:
        key = name.lower()
        if key not in cls._registry:
            raise ValueError(
                f"Unknown play style '{name}'. Available: {list(cls._registry.keys())}"
            )
        return SimulatedPlayer(cls._registry[key], **kwargs)

    @classmethod
    def available(cls) -> List[str]:
        return list(cls._registry.keys())


__all__ = ["PlayStyle", "PLAY_STYLES", "SimulatedPlayer", "SimulatedPlayerFactory", "enable_debug_player_logs"]
