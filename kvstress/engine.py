"""Workload execution engine. One async worker per configured thread.

This module provides the core cache workload logic:
- run_workload: resolve mode, start workers, enforce the duration bound, build the RunResult
- run_worker: sequential operation loop for one worker until its bound or the stop event
- execute_operation: single read/write/delete with timing and outcome classification
- prepare_payloads / build_key: write payloads and collision-free per-worker keys

Cancellation is a single asyncio.Event per run, set by a loop timer after
duration_seconds (never set for request-bounded runs). Workers check it before
each operation; an in-flight operation always completes.

Workers are asyncio tasks on one event loop rather than OS threads, a deliberate
choice for the async Redis client (see DESIGN.md, open question decision 3).
The per-operation yield keeps the duration timer and sibling workers running.
"""

from __future__ import annotations

import asyncio
import random
import time
from datetime import datetime, timezone
from typing import Callable, Protocol

from .client import CacheClient
from .exceptions import ConfigurationError, OperationTimeout
from .logging_config import get_logger, run_context
from .metrics import RunAccumulator
from .models import ExecutionMode, OperationKind, OperationOutcome, RunConfiguration, RunResult
from .modes import resolve_mode
from .selector import select_operation

logger = get_logger("engine")

# Nanoseconds to milliseconds conversion
NS_TO_MS = 1_000_000
# Aggressive mode: pool of random payloads with sizes in [MIN, payload_size_bytes * MULTIPLIER)
AGGRESSIVE_PAYLOAD_POOL = 10
AGGRESSIVE_MIN_PAYLOAD_BYTES = 512
AGGRESSIVE_PAYLOAD_MULTIPLIER = 8
# Aggressive mode: chance of a short random pause after an operation, and its upper bound
JITTER_PROBABILITY = 0.1
JITTER_MAX_MS = 2.0

_TIMEOUT_ERRORS = (OperationTimeout, TimeoutError, asyncio.TimeoutError)


class RandomSource(Protocol):
    """Subset of random.Random the engine draws from."""

    def random(self) -> float: ...

    def randrange(self, start: int, stop: int | None = None) -> int: ...

    def randbytes(self, n: int) -> bytes: ...


# worker_id -> generator; ids 0..threads-1 are workers, id == threads prepares payloads
RandomFactory = Callable[[int], RandomSource]


def _independent_random_source(worker_id: int) -> RandomSource:
    return random.Random()


def seeded_random_source(seed: int) -> RandomFactory:
    """Deterministic per-worker generators, for reproducible runs and tests."""

    def factory(worker_id: int) -> RandomSource:
        return random.Random(f"{seed}:{worker_id}")

    return factory


def build_key(prefix: str, tag_suffix: str, worker_id: int, op_index: int) -> str:
    """Key for one operation. Unique across workers within a run."""
    return f"{prefix}{tag_suffix}:{worker_id}:{op_index}"


def prepare_payloads(config: RunConfiguration, rng: RandomSource) -> list[bytes]:
    """Write payloads: one zeroed buffer normally, a pool of random sizes/bytes in aggressive mode."""
    if not config.aggressive:
        return [bytes(config.payload_size_bytes)]
    upper = max(AGGRESSIVE_MIN_PAYLOAD_BYTES + 1, config.payload_size_bytes * AGGRESSIVE_PAYLOAD_MULTIPLIER)
    return [
        rng.randbytes(rng.randrange(AGGRESSIVE_MIN_PAYLOAD_BYTES, upper))
        for _ in range(AGGRESSIVE_PAYLOAD_POOL)
    ]


async def execute_operation(
    client: CacheClient,
    kind: OperationKind,
    key: str,
    payload: bytes,
) -> tuple[OperationOutcome, float]:
    """Run one operation and classify it.

    Returns:
        (outcome, elapsed_ms). elapsed_ms is measured for every outcome but
        only successes feed latency statistics.

    Note:
        Never raises for client failures: timeouts map to TIMEOUT, anything
        else to ERROR. Task cancellation still propagates.
    """
    start_ns = time.perf_counter_ns()
    try:
        if kind is OperationKind.READ:
            await client.read(key)
        elif kind is OperationKind.WRITE:
            await client.write(key, payload)
        else:
            await client.delete(key)
    except _TIMEOUT_ERRORS as e:
        logger.debug("%s %s timed out: %s", kind.value, key, e)
        return OperationOutcome.TIMEOUT, (time.perf_counter_ns() - start_ns) / NS_TO_MS
    except Exception as e:  # noqa: BLE001
        logger.debug("%s %s failed: %s: %s", kind.value, key, type(e).__name__, e)
        return OperationOutcome.ERROR, (time.perf_counter_ns() - start_ns) / NS_TO_MS
    return OperationOutcome.SUCCESS, (time.perf_counter_ns() - start_ns) / NS_TO_MS


async def _jitter(stop_event: asyncio.Event, delay_sec: float) -> bool:
    """Pause for delay_sec unless the run is cancelled first. True if cancelled."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=delay_sec)
    except asyncio.TimeoutError:
        return False
    return True


async def run_worker(
    worker_id: int,
    config: RunConfiguration,
    mode: ExecutionMode,
    client: CacheClient,
    accumulator: RunAccumulator,
    stop_event: asyncio.Event,
    rng: RandomSource,
    payloads: list[bytes],
) -> int:
    """
    Single worker: sequential operations until its bound is reached or stop_event is set.

    Args:
        worker_id: Stable id in 0..threads-1, part of every key
        mode: Resolved execution mode (never UNDEFINED)
        stop_event: Run-scoped cancellation signal, checked before each operation
        rng: This worker's own generator
        payloads: Shared read-only payload pool for writes

    Returns:
        Number of operations this worker attempted.
    """
    bounded = mode is not ExecutionMode.TIMED_ONLY
    limit = config.requests_per_thread
    prefix = config.key_prefix
    tag_suffix = config.tag_suffix
    read_ratio = config.read_ratio
    aggressive = config.aggressive
    num_payloads = len(payloads)

    # Local references for faster access in hot loop
    is_set = stop_event.is_set
    draw = rng.random
    record = accumulator.record

    op_index = 0
    while not is_set():
        if bounded and op_index >= limit:
            break
        kind = select_operation(draw(), read_ratio, aggressive)
        key = build_key(prefix, tag_suffix, worker_id, op_index)
        payload = payloads[rng.randrange(num_payloads)] if kind is OperationKind.WRITE else b""
        outcome, elapsed_ms = await execute_operation(client, kind, key, payload)
        record(outcome, elapsed_ms)
        op_index += 1

        if aggressive and draw() < JITTER_PROBABILITY:
            if await _jitter(stop_event, draw() * JITTER_MAX_MS / 1000.0):
                break
        else:
            # Yield so sibling workers and the duration timer run even when the client never suspends
            await asyncio.sleep(0)
    return op_index


def ensure_mode(config: RunConfiguration) -> ExecutionMode:
    """Resolve the execution mode or raise ConfigurationError for an undefined one."""
    mode = resolve_mode(config.threads, config.requests_per_thread, config.duration_seconds)
    if mode is ExecutionMode.UNDEFINED:
        raise ConfigurationError(
            "Invalid parameter combination: threads must be > 0 and at least one of "
            "requests_per_thread or duration_seconds must be > 0",
            context={
                "threads": config.threads,
                "requests_per_thread": config.requests_per_thread,
                "duration_seconds": config.duration_seconds,
            },
        )
    return mode


async def run_workload(
    config: RunConfiguration,
    client: CacheClient,
    random_source: RandomFactory | None = None,
    accumulator: RunAccumulator | None = None,
    stop_event: asyncio.Event | None = None,
) -> RunResult:
    """Run the configured workload against client and return the RunResult.

    Args:
        config: Validated run parameters
        client: Cache capability shared by all workers
        random_source: worker_id -> generator factory (independent generators by default)
        accumulator: Pass one in to observe live progress; a fresh one otherwise
        stop_event: Pass one in to allow external graceful stop (e.g. SIGINT)

    Raises:
        ConfigurationError: If the bounds resolve to an undefined mode. No worker is started.
    """
    mode = ensure_mode(config)
    factory = random_source or _independent_random_source
    payloads = prepare_payloads(config, factory(config.threads))
    accumulator = accumulator if accumulator is not None else RunAccumulator()
    stop_event = stop_event if stop_event is not None else asyncio.Event()

    # Worker tasks copy the current context, so their records carry tag and mode too
    with run_context(tag=config.tag, mode=mode.value):
        logger.info(
            "Starting workload: threads=%d, requests_per_thread=%d, duration_seconds=%d, aggressive=%s",
            config.threads, config.requests_per_thread, config.duration_seconds, config.aggressive,
        )

        loop = asyncio.get_running_loop()
        timer = loop.call_later(config.duration_seconds, stop_event.set) if config.duration_seconds > 0 else None

        start_dt = datetime.now(timezone.utc)
        start = time.perf_counter()
        accumulator.mark_started()
        workers = [
            asyncio.create_task(
                run_worker(wid, config, mode, client, accumulator, stop_event, factory(wid), payloads)
            )
            for wid in range(config.threads)
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            if timer is not None:
                timer.cancel()
            for task in workers:
                if not task.done():
                    task.cancel()
        elapsed = time.perf_counter() - start
        end_dt = datetime.now(timezone.utc)

        result = accumulator.build_result(mode, elapsed, start_dt, end_dt)
        if stop_event.is_set():
            logger.info("Stop signal reached after %.2fs, workers stopped", elapsed)
        logger.info(
            "Workload finished: total=%d, success=%d, timeouts=%d, errors=%d, rps=%.2f",
            result.total_requests, result.success_count, result.timeout_count,
            result.error_count, result.requests_per_second,
        )
    return result
