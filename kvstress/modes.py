"""Execution mode resolution from run bounds."""

from __future__ import annotations

from .models import ExecutionMode


def resolve_mode(threads: int, requests_per_thread: int, duration_seconds: int) -> ExecutionMode:
    """Map (threads, requests_per_thread, duration_seconds) to an execution mode.

    Inputs are assumed non-negative. UNDEFINED means the run must be rejected.
    """
    if threads <= 0:
        return ExecutionMode.UNDEFINED
    if requests_per_thread > 0 and duration_seconds > 0:
        return ExecutionMode.TIMED_AND_BOUNDED
    if requests_per_thread > 0 and duration_seconds == 0:
        return ExecutionMode.REQUESTS_BOUNDED
    if requests_per_thread == 0 and duration_seconds > 0:
        return ExecutionMode.TIMED_ONLY
    return ExecutionMode.UNDEFINED


def expected_total_requests(mode: ExecutionMode, threads: int, requests_per_thread: int) -> int | None:
    """Upper bound on operations for bounded modes; None when the run is open-ended."""
    if mode in (ExecutionMode.TIMED_AND_BOUNDED, ExecutionMode.REQUESTS_BOUNDED):
        return threads * requests_per_thread
    return None
