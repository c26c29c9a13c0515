from __future__ import annotations

import json

import numpy as np
import pytest

from flowmatch.agents.bandit import context_vector
from flowmatch.agents.coordinator import (
    AdaptiveCoordinator,
    PlayerProfile,
    Round,
    adjacent_bucket,
    limit_step,
    should_use_large_grid,
)
from flowmatch.agents.player_agent import SimulatedPlayerFactory
from flowmatch.telemetry import JSONLLogger

from conftest import force_arm, strong_round, weak_round


def test_limit_step():
    assert limit_step(4, None) == 4
    assert limit_step(4, 0) == 1
    assert limit_step(0, 3) == 2
    assert limit_step(2, 2) == 2


def test_adjacent_bucket_thresholds():
    assert adjacent_bucket(0.2) == 0.6
    assert adjacent_bucket(0.45) == 0.4
    assert adjacent_bucket(0.74) == 0.4
    assert adjacent_bucket(0.75) == 0.2


def test_process_game_end_smooths_profile(coordinator):
    flow = coordinator.process_game_end(strong_round())
    p = coordinator.profile
    assert p.avg_flow == pytest.approx(0.35 * flow + 0.65 * 0.5)
    assert p.error_rate == pytest.approx(0.65 * 0.2)
    assert p.cadence == pytest.approx(0.5)
    assert coordinator.rounds_played == 1
    assert coordinator.session.rounds[0].score.flow_index_raw == flow


def test_non_finite_profile_values_are_replaced_by_priors(coordinator):
    coordinator.profile.avg_flow = float("nan")
    coordinator.profile.error_rate = float("inf")
    flow = coordinator.process_game_end(strong_round())
    assert coordinator.profile.avg_flow == pytest.approx(0.35 * flow + 0.65 * 0.5)
    assert coordinator.profile.error_rate == pytest.approx(0.65 * 0.2)


def test_malformed_telemetry_never_raises(coordinator):
    flow = coordinator.process_game_end({
        "completionTime": "abc",
        "totalMatches": float("nan"),
        "failedMatches": -3,
        "flipIntervals": [120, None, -5, "x", float("inf")],
        "totalPairs": None,
        "cheatCount": "many",
    })
    assert 0.0 <= flow <= 1.0
    coordinator.update_bandit(flow)
    cfg = coordinator.decide_next_config("not a level")
    assert (cfg.grid_cols, cfg.grid_rows) == (5, 4)
    assert coordinator.process_game_end(None) >= 0.0
    assert coordinator.decide_next_config(9).pairs_type is None


def test_first_round_at_level_two_is_always_small(coordinator):
    force_arm(coordinator, 2)
    coordinator.profile = PlayerProfile(avg_flow=1.0, hidden_difficulty=1.0)
    cfg = coordinator.decide_next_config(2)
    assert (cfg.grid_cols, cfg.grid_rows, cfg.total_pairs) == (5, 4, 10)
    assert cfg.hint_policy == "limited"


def test_grid_upgrades_after_a_strong_round_and_holds_until_downgrade(coordinator):
    force_arm(coordinator, 2)
    cfg = coordinator.decide_next_config(2)
    assert cfg.grid_size == "small"

    grids = []
    for _ in range(3):
        _, cfg = coordinator.complete_round(strong_round(2, cfg.total_pairs))
        grids.append(cfg.grid_size)
    assert grids == ["large", "large", "large"]
    assert cfg.total_pairs == 12

    # smoothed flow has to sink below 0.4 as well as the last two rounds
    grids = []
    for _ in range(3):
        _, cfg = coordinator.complete_round(weak_round(2, cfg.total_pairs))
        grids.append(cfg.grid_size)
    assert grids == ["large", "large", "small"]


def test_arm_zero_forces_small_grid(coordinator):
    force_arm(coordinator, 1)
    cfg = coordinator.decide_next_config(2)
    _, cfg = coordinator.complete_round(strong_round(2, cfg.total_pairs))
    assert cfg.grid_size == "large"
    force_arm(coordinator, 0)
    _, cfg = coordinator.complete_round(strong_round(2, cfg.total_pairs))
    assert cfg.grid_size == "small"


def test_should_use_large_grid_policy():
    profile = PlayerProfile(avg_flow=0.3)
    low = [Round(0.2, strong_round(), 0.0), Round(0.3, strong_round(), 0.0)]
    high = [Round(0.2, strong_round(), 0.0), Round(0.8, strong_round(), 0.0)]
    assert should_use_large_grid(profile, high, currently_large=False)
    assert not should_use_large_grid(profile, low, currently_large=False)
    assert not should_use_large_grid(profile, low, currently_large=True)
    assert should_use_large_grid(PlayerProfile(avg_flow=0.5), low, currently_large=True)
    assert should_use_large_grid(profile, low[-1:], currently_large=True), "needs two low rounds"


def test_arm_changes_at_most_one_step(coordinator):
    force_arm(coordinator, 0)
    coordinator.decide_next_config(1)
    force_arm(coordinator, 2)
    _, cfg = coordinator.complete_round(strong_round())
    assert cfg.hint_policy == "standard"
    _, cfg = coordinator.complete_round(strong_round())
    assert cfg.hint_policy == "limited"


def test_hidden_level_changes_at_most_one_step(coordinator):
    coordinator.decide_next_config(1)
    coordinator.session.last_hidden_level = 0
    coordinator.profile.hidden_difficulty = 1.0
    coordinator.process_game_end(strong_round())
    assert coordinator.session.last_hidden_level == 1
    cfg = coordinator.decide_next_config(1)
    assert cfg.hidden_level == 1
    assert (cfg.hide_delay, cfg.show_scale) == (400, 1.3)


def test_hidden_level_four_reuses_last_table_entry(coordinator):
    coordinator.session.last_hidden_level = 4
    cfg = coordinator.decide_next_config(1)
    assert (cfg.hidden_level, cfg.hide_delay, cfg.show_scale) == (4, 240, 1.1)


def test_simulated_sessions_respect_hysteresis():
    for style in ("perfect", "average", "bad"):
        coord = AdaptiveCoordinator(seed=3)
        player = SimulatedPlayerFactory.create(style, seed=3)
        cfg = coord.decide_next_config(2)
        arms = [coord.session.current_round.arm]
        hidden = [cfg.hidden_level]
        rates = [cfg.adjacent_rate]
        for _ in range(12):
            _, cfg = coord.complete_round(player.play(cfg, 2))
            arms.append(coord.session.current_round.arm)
            hidden.append(cfg.hidden_level)
            rates.append(cfg.adjacent_rate)
        assert all(abs(a - b) <= 1 for a, b in zip(arms, arms[1:]))
        assert all(abs(a - b) <= 1 for a, b in zip(hidden, hidden[1:]))
        assert all(abs(a - b) <= 0.05 + 1e-9 for a, b in zip(rates, rates[1:]))
        assert all(0.2 <= r <= 0.6 for r in rates)


def test_adjacent_rate_moves_toward_bucket_in_small_steps(coordinator):
    force_arm(coordinator, 2)
    cfg = coordinator.decide_next_config(2)
    assert cfg.adjacent_rate == 0.2
    _, cfg = coordinator.complete_round(weak_round(2, cfg.total_pairs))
    assert cfg.adjacent_rate == 0.25
    assert cfg.total_pairs == 10
    assert cfg.adjacent_target == 3
    assert coordinator.session.last_adjacent_target == 3


def test_fatigue_grows_with_rounds_played(coordinator):
    cfg = coordinator.decide_next_config(1)
    for _ in range(4):
        _, cfg = coordinator.complete_round(strong_round())
    assert coordinator.profile.fatigue == pytest.approx(0.4)


def test_update_bandit_uses_profile_captured_at_selection(coordinator):
    calls = []
    coordinator.bandit.update = lambda arm, profile, reward, level=1: calls.append((arm, profile, reward, level))

    coordinator.decide_next_config(2)
    pending = coordinator.session.current_round
    captured = pending.profile.to_dict()
    flow = coordinator.process_game_end(weak_round(2))
    assert coordinator.profile.to_dict() != captured

    coordinator.update_bandit(flow)
    assert len(calls) == 1
    arm, profile, reward, level = calls[0]
    assert arm == pending.arm
    assert profile.to_dict() == captured
    assert reward == flow
    assert level == 2

    coordinator.update_bandit(flow)
    assert len(calls) == 1, "a round is rewarded once"


def test_update_bandit_without_pending_round_is_a_no_op(coordinator):
    coordinator.update_bandit(0.9)
    assert all(a.plays == 0 for a in coordinator.bandit.arms)


def test_context_level_is_the_previously_scored_level(coordinator):
    coordinator.decide_next_config(1)
    coordinator.process_game_end(strong_round(1))
    coordinator.update_bandit(0.9)
    coordinator.decide_next_config(3)
    assert coordinator.session.current_round.context_level == 1
    assert coordinator.session.current_round.level == 3


def test_out_of_range_round_level_keeps_context_in_unit_range(coordinator):
    coordinator.decide_next_config(1)
    coordinator.process_game_end({"level": 7, "completionTime": 30, "totalMatches": 12, "failedMatches": 2, "totalClicks": 24})
    assert coordinator.session.level == 1
    coordinator.update_bandit(0.5)
    coordinator.decide_next_config(1)
    pending = coordinator.session.current_round
    assert pending.context_level == 1
    x = context_vector(pending.profile, pending.context_level)
    assert 0.0 <= x[0] <= 1.0


def test_level_three_grid_starts_small_then_upgrades(coordinator):
    force_arm(coordinator, 2)
    coordinator.decide_next_config(1)
    _, cfg = coordinator.complete_round(strong_round(1), next_level=3)
    assert (cfg.grid_cols, cfg.grid_rows, cfg.total_pairs) == (5, 4, 10), "first round at level 3"
    assert cfg.pairs_type == "image-text"

    _, cfg = coordinator.complete_round(strong_round(3, cfg.total_pairs))
    assert (cfg.grid_cols, cfg.grid_rows, cfg.total_pairs) == (6, 4, 12)


def test_initial_difficulty_is_stateless():
    assert AdaptiveCoordinator.get_initial_difficulty({"hasPlayedBefore": True, "previousBestLevel": 1}) == 2
    assert AdaptiveCoordinator.get_initial_difficulty(None) == 1


def test_state_round_trip(coordinator):
    cfg = coordinator.decide_next_config(2)
    for metrics in (strong_round(2), weak_round(2), strong_round(2)):
        _, cfg = coordinator.complete_round(metrics)

    state = json.loads(json.dumps(coordinator.state_dict()))
    restored = AdaptiveCoordinator(seed=7)
    restored.load_state_dict(state)

    assert restored.state_dict() == state
    assert restored.session.current_round.config == cfg
    assert [r.flow_index for r in restored.session.rounds] == [r.flow_index for r in coordinator.session.rounds]
    assert restored.session.rounds[-1].score is not None
    np.testing.assert_allclose(restored.bandit.theta(0), coordinator.bandit.theta(0))


def test_reset_session_clears_everything(coordinator):
    coordinator.decide_next_config(1)
    coordinator.complete_round(strong_round())
    coordinator.reset_session()
    assert coordinator.rounds_played == 0
    assert coordinator.session.current_round is None
    assert coordinator.profile == PlayerProfile()
    assert all(a.plays == 0 for a in coordinator.bandit.arms)


def test_logger_receives_flow_and_suggestion_records(tmp_path):
    logger = JSONLLogger(tmp_path / "logs" / "session.jsonl")
    coord = AdaptiveCoordinator(seed=1, logger=logger)
    coord.decide_next_config(1)
    coord.complete_round(strong_round())

    records = logger.read()
    assert [r["type"] for r in records] == ["ai_suggestion", "flow_index", "ai_suggestion"]
    flow_rec = records[1]
    assert flow_rec["round"] == 1
    assert 0.85 < flow_rec["flow_index"] <= 1.0
    assert flow_rec["cheat_penalty"] == 1.0
    assert records[2]["next_config"]["grid_cols"] == 5
