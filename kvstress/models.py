"""Data models for kvstress.

Run parameters and results are frozen slotted dataclasses: created once,
read by the engine, reporters and publishers, never mutated mid-run.
The only mutable run state lives in metrics.RunAccumulator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ExecutionMode(str, Enum):
    """Bound type governing when workers stop."""

    UNDEFINED = "undefined"  # Rejection signal, never executed
    TIMED_AND_BOUNDED = "timed_and_bounded"  # requests_per_thread and duration_seconds
    REQUESTS_BOUNDED = "requests_bounded"  # requests_per_thread only, no time limit
    TIMED_ONLY = "timed_only"  # duration_seconds only, no request limit


class OperationKind(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


class OperationOutcome(str, Enum):
    """Classification of one attempted operation."""

    SUCCESS = "success"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class RunConfiguration:
    """Validated run parameters. Immutable for the duration of a run."""

    threads: int = 5
    requests_per_thread: int = 200
    duration_seconds: int = 20
    payload_size_bytes: int = 256
    read_ratio: float = 0.7  # 0.7 = 70% reads, remainder writes (and deletes in aggressive mode)
    aggressive: bool = False
    tag: str = ""
    key_prefix: str = "stress"
    # Target / ambient
    environment: str = "AWS"
    connection_string: str = "localhost:6379"
    secret_arn: str = ""
    operation_timeout_ms: int | None = None
    show_progress: bool = True
    publish_metrics: bool = False
    report_dir: str = "Reports"

    @property
    def tag_suffix(self) -> str:
        return f"_{self.tag}" if self.tag else ""


@dataclass(frozen=True, slots=True)
class RunResult:
    """Immutable summary of one run, derived from the accumulator after all workers stopped."""

    mode: ExecutionMode
    total_requests: int
    success_count: int
    timeout_count: int
    error_count: int
    avg_latency_ms: float
    p95_latency_ms: float
    requests_per_second: float
    elapsed_seconds: float
    start_time_utc: datetime
    end_time_utc: datetime


@dataclass(frozen=True, slots=True)
class ServerMetricsSnapshot:
    """Point-in-time server statistics parsed from INFO. All zeros when unavailable."""

    used_memory_mb: float = 0.0
    connected_clients: int = 0
    evicted_keys: int = 0
    instantaneous_ops_per_sec: int = 0
    keyspace_hits: int = 0
    keyspace_misses: int = 0
    hit_ratio: float = 0.0

    def __str__(self) -> str:
        return (
            f"UsedMemoryMB: {self.used_memory_mb}, Clients: {self.connected_clients}, "
            f"EvictedKeys: {self.evicted_keys}, Ops/s: {self.instantaneous_ops_per_sec}, "
            f"HitRatio: {self.hit_ratio}"
        )


@dataclass(frozen=True, slots=True)
class MetricsDelta:
    """Before/after deltas plus pass-through values from the after-snapshot."""

    memory_delta_mb: float = 0.0
    evicted_keys_delta: int = 0
    connected_clients: int = 0
    instantaneous_ops_per_sec: int = 0
    hit_ratio: float = 0.0


@dataclass(slots=True)
class CacheReport:
    """Everything a result consumer needs: parameters, run result and server deltas."""

    config: RunConfiguration
    result: RunResult
    before: ServerMetricsSnapshot = field(default_factory=ServerMetricsSnapshot)
    after: ServerMetricsSnapshot = field(default_factory=ServerMetricsSnapshot)
    delta: MetricsDelta = field(default_factory=MetricsDelta)
