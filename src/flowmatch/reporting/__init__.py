"""Display-side helpers for session history and JSONL flow logs."""

from .summary import FLOW_LABELS, create_report, flow_label, rounds_frame, session_summary

__all__ = [
    "FLOW_LABELS",
    "flow_label",
    "rounds_frame",
    "session_summary",
    "create_report",
]
