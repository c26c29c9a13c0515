from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import numpy as np
import pandas as pd

__all__ = ["FLOW_LABELS", "flow_label", "rounds_frame", "session_summary", "create_report"]

# (lower bound, label), checked top-down
FLOW_LABELS = (
    (0.8, "Excellent"),
    (0.6, "Good"),
    (0.4, "Moderate"),
    (float("-inf"), "High difficulty"),
)


def flow_label(flow_index: float) -> str:
    for bound, label in FLOW_LABELS:
        if flow_index >= bound:
            return label
    return FLOW_LABELS[-1][1]


def _session_of(obj: Any):
    # accept a coordinator or a bare SessionState
    return getattr(obj, "session", obj)


def rounds_frame(session: Any) -> pd.DataFrame:
    """One row per completed round: flow, diagnostics, and the configuration it was played with."""
    s = _session_of(session)
    rows = []
    for idx, r in enumerate(s.rounds, start=1):
        m = r.metrics
        row: Dict[str, Any] = {
            "round": idx,
            "timestamp": r.timestamp,
            "level": m.level,
            "flow_index": r.flow_index,
            "flow_label": flow_label(r.flow_index),
            "arm": r.arm,
            "completion_time": m.completion_time,
            "total_pairs": m.total_pairs,
            "failed_matches": m.failed_matches,
            "total_matches": m.total_matches,
            "accuracy": (m.successful_matches / m.total_matches) if m.total_matches > 0 else np.nan,
            "total_clicks": m.total_clicks,
            "cheat_count": m.cheat_count,
        }
        if r.score is not None:
            row["flow_index_display"] = r.score.flow_index_display
            row["cheat_penalty"] = r.score.cheat_penalty
        if r.config is not None:
            row.update({
                "grid": f"{r.config.grid_cols}x{r.config.grid_rows}",
                "hidden_level": r.config.hidden_level,
                "hint_policy": r.config.hint_policy,
            })
        rows.append(row)
    return pd.DataFrame(rows)


def session_summary(session: Any) -> Dict[str, Any]:
    df = rounds_frame(session)
    if df.empty:
        return {"rounds": 0}
    last = float(df["flow_index"].iloc[-1])
    return {
        "rounds": int(len(df)),
        "mean_flow": float(df["flow_index"].mean()),
        "best_flow": float(df["flow_index"].max()),
        "last_flow": last,
        "last_label": flow_label(last),
        "mean_accuracy": float(df["accuracy"].mean(skipna=True)) if df["accuracy"].notna().any() else float("nan"),
        "levels": sorted(int(x) for x in df["level"].unique()),
    }


def _load_jsonl(path: Path) -> list[dict]:
    records = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return records


def create_report(log_paths: Iterable[str | Path], output_dir: str | Path, levels: Optional[Iterable[int]] = None) -> Path:
    """Aggregate ``flow_index`` records from JSONL logs into per-round and summary CSVs."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    wanted = set(int(lv) for lv in levels) if levels else None

    frames = []
    rows = []
    for path in log_paths:
        path = Path(path)
        if not path.exists():
            continue
        df = pd.DataFrame([r for r in _load_jsonl(path) if r.get("type") == "flow_index"])
        if df.empty:
            continue
        if wanted:
            df = df[df["level"].astype(int).isin(wanted)]
            if df.empty:
                continue
        df = df.drop(columns=["type"]).assign(log=str(path))
        frames.append(df)
        last = float(df.sort_values("round")["flow_index"].iloc[-1])
        rows.append({
            "log": str(path),
            "rounds": int(len(df)),
            "mean_flow": float(df["flow_index"].mean()),
            "last_flow": last,
            "last_label": flow_label(last),
        })

    round_df = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
    summary_df = pd.DataFrame(rows, columns=["log", "rounds", "mean_flow", "last_flow", "last_label"])
    round_path = output_dir / "round_flow.csv"
    summary_path = output_dir / "summary_flow.csv"
    round_df.to_csv(round_path, index=False)
    summary_df.to_csv(summary_path, index=False)
    return summary_path
