from .runner import run_batch, run_session, summarize_batch

__all__ = ["run_session", "run_batch", "summarize_batch"]
