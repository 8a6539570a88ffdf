"""Run accumulator, percentile calculation and result aggregation.

The accumulator is the only state shared across workers. Counters and the
latency list sit behind one lock that is never held across an await, so it
stays correct whether workers are tasks on one loop or a client offloads
to threads.

Two percentile paths:
- percentile(): exact NIST linear interpolation, used for the final RunResult
- live view: streaming T-Digest estimate for the progress panel only
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from tdigest import TDigest

from .logging_config import get_logger
from .models import ExecutionMode, OperationOutcome, RunResult

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = get_logger("metrics")

# Floor for wall-clock seconds when computing throughput
MIN_ELAPSED_SEC = 0.001
# Decimal places kept in RunResult latency/throughput fields
RESULT_PRECISION = 2


def percentile(values: Sequence[float], p: float) -> float:
    """Linear-interpolated percentile (NIST method). Returns 0.0 for an empty sample.

    rank n = (N - 1) * p / 100 + 1; n == 1 -> min, n == N -> max,
    otherwise interpolate between the k-th and (k+1)-th smallest values
    (1-based) with k = floor(n).
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    count = len(ordered)
    n = (count - 1) * p / 100.0 + 1
    if n == 1:
        return ordered[0]
    if n == count:
        return ordered[-1]
    k = math.floor(n)
    d = n - k
    return ordered[k - 1] + d * (ordered[k] - ordered[k - 1])


def _percentile_from_digest(digest: TDigest, p: float) -> float:
    """Get percentile from T-Digest. Returns 0.0 if empty."""
    try:
        return digest.percentile(p) or 0.0
    except (ValueError, IndexError):
        return 0.0


@dataclass(slots=True)
class LiveStats:
    """Cheap point-in-time view for the progress panel."""

    total: int
    success: int
    timeouts: int
    errors: int
    p95_estimate_ms: float
    ops_per_sec: float


class RunAccumulator:
    """
    Shared counters and latency sample for one run.

    Workers call record(); the engine reads counts and latencies only after
    every worker has stopped. live_stats() may be called at any time.
    """

    __slots__ = (
        "_lock", "_total", "_success", "_timeouts", "_errors",
        "_latencies", "_digest", "_started_at",
    )

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._success = 0
        self._timeouts = 0
        self._errors = 0
        self._latencies: list[float] = []
        self._digest = TDigest()
        self._started_at = time.perf_counter()

    def record(self, outcome: OperationOutcome, latency_ms: float = 0.0) -> None:
        """Count one attempted operation. Latency is kept for successes only."""
        with self._lock:
            self._total += 1
            if outcome is OperationOutcome.SUCCESS:
                self._success += 1
                self._latencies.append(latency_ms)
                self._digest.update(latency_ms)
            elif outcome is OperationOutcome.TIMEOUT:
                self._timeouts += 1
            else:
                self._errors += 1

    def mark_started(self) -> None:
        self._started_at = time.perf_counter()

    @property
    def total(self) -> int:
        return self._total

    @property
    def success_count(self) -> int:
        return self._success

    @property
    def timeout_count(self) -> int:
        return self._timeouts

    @property
    def error_count(self) -> int:
        return self._errors

    @property
    def latencies(self) -> list[float]:
        """Copy of the latency sample (milliseconds, successful operations only)."""
        with self._lock:
            return list(self._latencies)

    def live_stats(self) -> LiveStats:
        with self._lock:
            total = self._total
            success = self._success
            timeouts = self._timeouts
            errors = self._errors
            p95 = _percentile_from_digest(self._digest, 95) if success else 0.0
        elapsed = max(MIN_ELAPSED_SEC, time.perf_counter() - self._started_at)
        return LiveStats(
            total=total,
            success=success,
            timeouts=timeouts,
            errors=errors,
            p95_estimate_ms=p95,
            ops_per_sec=total / elapsed,
        )

    def build_result(
        self,
        mode: ExecutionMode,
        elapsed_seconds: float,
        start_time_utc: datetime,
        end_time_utc: datetime,
    ) -> RunResult:
        """Freeze the accumulator into a RunResult. Call once all workers have stopped."""
        with self._lock:
            latencies = list(self._latencies)
            total = self._total
            success = self._success
            timeouts = self._timeouts
            errors = self._errors

        if success + timeouts + errors != total or len(latencies) != success:
            logger.error(
                "Accumulator invariant broken: total=%d success=%d timeouts=%d errors=%d latencies=%d",
                total, success, timeouts, errors, len(latencies),
            )

        avg = sum(latencies) / len(latencies) if latencies else 0.0
        p95 = percentile(latencies, 95) if latencies else 0.0
        rps = total / max(MIN_ELAPSED_SEC, elapsed_seconds)
        return RunResult(
            mode=mode,
            total_requests=total,
            success_count=success,
            timeout_count=timeouts,
            error_count=errors,
            avg_latency_ms=round(avg, RESULT_PRECISION),
            p95_latency_ms=round(p95, RESULT_PRECISION),
            requests_per_second=round(rps, RESULT_PRECISION),
            elapsed_seconds=elapsed_seconds,
            start_time_utc=start_time_utc,
            end_time_utc=end_time_utc,
        )
