"""Bridges to the telemetry layer: event-log extraction and a JSONL sink."""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np

from flowmatch.fuzzy import CARD_ATTRIBUTES
from flowmatch.types import CategoryStats, PerformanceMetrics

__all__ = ["normalize_card_name", "metrics_from_events", "JSONLLogger"]

_IMAGE_RE = re.compile(r"^image\s*(\d+)$", re.IGNORECASE)


def normalize_card_name(name: Any) -> Optional[str]:
    """``"image 3"`` / ``"Image3"`` -> ``"image3.png"``; other strings pass through."""
    if not isinstance(name, str) or not name:
        return None
    m = _IMAGE_RE.match(name.strip())
    if m:
        return f"image{m.group(1)}.png"
    return name


def _match_card(data: Mapping[str, Any]) -> Optional[str]:
    if data.get("image"):
        return normalize_card_name(data["image"])
    images = data.get("images")
    if images:
        return normalize_card_name(images[0])
    if data.get("pair"):
        return normalize_card_name(data["pair"])
    return None


def metrics_from_events(events: Iterable[Mapping[str, Any]], level: int) -> Optional[PerformanceMetrics]:
    """Summarise the latest round at ``level`` from a raw event log.

    Events are ``{"type", "ts" (ms), "data"}`` dicts. Returns ``None`` when no
    ``start`` event exists for the level.
    """
    ordered = sorted((e for e in events if isinstance(e, Mapping)), key=lambda e: float(e.get("ts", 0) or 0))

    start = None
    for ev in reversed(ordered):
        if ev.get("type") == "start" and (ev.get("data") or {}).get("level") == level:
            start = ev
            break
    if start is None:
        return None
    t0 = float(start.get("ts", 0) or 0)

    end = None
    for ev in reversed(ordered):
        if ev.get("type") == "end" and float(ev.get("ts", 0) or 0) >= t0:
            end = ev
            break
    if end is None:
        end = ordered[-1]
    t1 = float(end.get("ts", 0) or 0)

    window = [e for e in ordered if t0 <= float(e.get("ts", 0) or 0) <= t1]
    matches = [e for e in window if e.get("type") == "match"]
    flips = [e for e in window if e.get("type") == "flip"]

    failed = 0
    run = 0
    max_run = 0
    color_counts: Dict[str, List[int]] = {}
    shape_counts: Dict[str, List[int]] = {}
    for ev in matches:
        data = ev.get("data") or {}
        ok = data.get("result") == "success"
        if ok:
            run = 0
        else:
            failed += 1
            run += 1
            max_run = max(max_run, run)
        card = _match_card(data)
        if card is None:
            continue
        attr = CARD_ATTRIBUTES.get(card)
        color = attr.color if attr else "unknown"
        shape = attr.name if attr else "unknown"
        for counts, key in ((color_counts, color), (shape_counts, shape)):
            bucket = counts.setdefault(key, [0, 0])
            bucket[0] += 1
            bucket[1] += int(ok)

    flip_ts = np.array([float(e.get("ts", 0) or 0) for e in flips], dtype=np.float64)
    intervals = np.diff(flip_ts).tolist() if flip_ts.size > 1 else []

    variant = (start.get("data") or {}).get("variant") or {}
    cheats = sum(
        1 for e in window
        if e.get("type") == "show_cards" and (e.get("data") or {}).get("state") == "show"
    )

    return PerformanceMetrics.from_dict({
        "completion_time": (t1 - t0) / 1000.0,
        "level": level,
        "total_pairs": variant.get("totalPairs", 10),
        "failed_matches": failed,
        "total_matches": len(matches),
        "flip_intervals": intervals,
        "total_clicks": len(flips),
        "color_stats": {k: CategoryStats(a, s) for k, (a, s) in color_counts.items()},
        "shape_stats": {k: CategoryStats(a, s) for k, (a, s) in shape_counts.items()},
        "cheat_count": cheats,
        "max_consecutive_errors": max_run,
    })


# ---------------------------------------------------------------------
# Minimal JSONL sink for flow_index / ai_suggestion records
# ---------------------------------------------------------------------
class JSONLLogger:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _to_jsonable(self, obj):
        if isinstance(obj, (float, int, str, bool)) or obj is None:
            return obj
        if isinstance(obj, (np.floating, np.integer, np.bool_)):
            return obj.item()
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if hasattr(obj, "to_dict"):
            return self._to_jsonable(obj.to_dict())
        if isinstance(obj, dict):
            return {str(k): self._to_jsonable(v) for k, v in obj.items()}
        if isinstance(obj, (list, tuple)):
            return [self._to_jsonable(v) for v in obj]
        return str(obj)

    def log(self, record: dict) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(self._to_jsonable(record), ensure_ascii=False) + "\n")

    def read(self) -> List[dict]:
        if not self.path.exists():
            return []
        records = []
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    records.append(json.loads(line))
        return records
