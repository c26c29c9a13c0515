from __future__ import annotations

import numpy as np
import pytest

from flowmatch.telemetry import JSONLLogger, metrics_from_events, normalize_card_name
from flowmatch.types import CategoryStats, GameConfiguration, PerformanceMetrics


def _ev(kind, ts, **data):
    return {"type": kind, "ts": ts, "data": data}


def _round_events():
    return [
        # an earlier, unrelated round
        _ev("start", 0, level=1),
        _ev("flip", 100),
        _ev("end", 500),
        _ev("start", 1000, level=1, variant={"totalPairs": 8}),
        _ev("flip", 1500),
        _ev("flip", 2000),
        _ev("match", 2000, result="success", image="image 1"),
        _ev("flip", 2600),
        _ev("flip", 3300),
        _ev("match", 3300, result="fail", images=["image6.png", "image3.png"]),
        _ev("show_cards", 3500, state="show"),
        _ev("show_cards", 3600, state="hide"),
        _ev("match", 4000, result="fail", pair="Image6"),
        _ev("end", 11000),
    ]


def test_normalize_card_name():
    assert normalize_card_name("image 3") == "image3.png"
    assert normalize_card_name("Image10") == "image10.png"
    assert normalize_card_name("image7.png") == "image7.png"
    assert normalize_card_name("") is None
    assert normalize_card_name(None) is None


def test_metrics_from_latest_round_at_level():
    m = metrics_from_events(_round_events(), level=1)
    assert m.completion_time == pytest.approx(10.0)
    assert m.total_pairs == 8
    assert (m.total_matches, m.failed_matches, m.max_consecutive_errors) == (3, 2, 2)
    assert m.total_clicks == 4
    assert m.flip_intervals == [500.0, 600.0, 700.0]
    assert m.cheat_count == 1
    assert m.color_stats == {"blue-dark": CategoryStats(1, 1), "red": CategoryStats(2, 0)}
    assert m.shape_stats["Matariki"] == CategoryStats(1, 1)


def test_metrics_from_events_without_end_uses_last_event():
    events = _round_events()[:-1]
    m = metrics_from_events(list(reversed(events)), level=1)
    assert m.completion_time == pytest.approx(3.0)


def test_metrics_from_events_defaults():
    assert metrics_from_events([_ev("start", 0, level=2)], level=1) is None
    m = metrics_from_events([_ev("start", 0, level=2), "junk", _ev("end", 5000)], level=2)
    assert m.total_pairs == 10
    assert m.total_matches == 0
    assert m.flip_intervals == []


def test_performance_metrics_from_camel_case_is_coerced():
    m = PerformanceMetrics.from_dict({
        "completionTime": -4,
        "level": 0,
        "totalPairs": "12",
        "failedMatches": 9,
        "totalMatches": 5,
        "colorStats": {"red": {"attempts": 2, "successes": 7}},
    })
    assert m.completion_time == 0.0
    assert m.level == 1
    assert m.total_pairs == 12
    assert m.failed_matches == 5
    assert m.color_stats["red"] == CategoryStats(2, 2)
    assert PerformanceMetrics.from_dict({"level": 7}).level == 1
    assert PerformanceMetrics.from_dict({"level": "3"}).level == 3


def test_game_configuration_dict_omits_unused_level_fields():
    cfg = GameConfiguration(180, 3, 400, 1.4, "generous", 5, 4, 10)
    assert "adjacent_rate" not in cfg.to_dict()
    assert GameConfiguration.from_dict(cfg.to_dict()) == cfg
    assert cfg.grid_size == "small"


def test_jsonl_logger_appends_plain_json(tmp_path):
    logger = JSONLLogger(tmp_path / "nested" / "log.jsonl")
    assert logger.read() == []
    logger.log({"type": "flow_index", "value": np.float32(0.5), "arr": np.arange(3), "n": np.int64(4)})
    logger.log({"type": "ai_suggestion", "next_config": GameConfiguration(180, 3, 400, 1.4, "standard", 5, 4, 10)})
    records = logger.read()
    assert records[0] == {"type": "flow_index", "value": 0.5, "arr": [0, 1, 2], "n": 4}
    assert records[1]["next_config"]["hint_policy"] == "standard"
