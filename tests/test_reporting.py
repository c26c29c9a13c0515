from __future__ import annotations

import pandas as pd

from flowmatch.agents.coordinator import AdaptiveCoordinator
from flowmatch.reporting import create_report, flow_label, rounds_frame, session_summary
from flowmatch.telemetry import JSONLLogger

from conftest import strong_round, weak_round


def test_flow_label_thresholds():
    assert flow_label(0.95) == "Excellent"
    assert flow_label(0.8) == "Excellent"
    assert flow_label(0.6) == "Good"
    assert flow_label(0.41) == "Moderate"
    assert flow_label(0.39) == "High difficulty"
    assert flow_label(0.0) == "High difficulty"


def test_rounds_frame_and_summary(coordinator):
    assert session_summary(coordinator) == {"rounds": 0}
    coordinator.decide_next_config(1)
    coordinator.complete_round(strong_round())
    coordinator.complete_round(weak_round())

    df = rounds_frame(coordinator)
    assert list(df["round"]) == [1, 2]
    assert list(df["flow_label"]) == ["Excellent", "High difficulty"]
    assert df["grid"].iloc[0] == "5x4"
    assert df["accuracy"].iloc[1] == 0.5

    summary = session_summary(coordinator.session)
    assert summary["rounds"] == 2
    assert summary["last_label"] == "High difficulty"
    assert summary["levels"] == [1]
    assert summary["best_flow"] > 0.85


def test_create_report_from_jsonl_logs(tmp_path):
    paths = []
    for seed in (1, 2):
        path = tmp_path / f"player{seed}.jsonl"
        coord = AdaptiveCoordinator(seed=seed, logger=JSONLLogger(path))
        coord.decide_next_config(1)
        for metrics in (strong_round(), strong_round(), weak_round()):
            coord.complete_round(metrics)
        paths.append(path)
    paths.append(tmp_path / "missing.jsonl")

    summary_path = create_report(paths, tmp_path / "report")
    summary = pd.read_csv(summary_path)
    assert len(summary) == 2
    assert list(summary["rounds"]) == [3, 3]
    assert list(summary["last_label"]) == ["High difficulty", "High difficulty"]

    rounds = pd.read_csv(tmp_path / "report" / "round_flow.csv")
    assert len(rounds) == 6
    assert "type" not in rounds.columns

    only_l2 = pd.read_csv(create_report(paths, tmp_path / "l2", levels=[2]))
    assert only_l2.empty
