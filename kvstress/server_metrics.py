"""Server metrics snapshots (INFO) and before/after deltas.

capture_snapshot never fails a run: any error is logged and a zeroed
snapshot is returned, so a missing snapshot simply yields zero deltas.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol

from .exceptions import MetricsCollectionError
from .logging_config import get_logger
from .models import MetricsDelta, ServerMetricsSnapshot

logger = get_logger("server_metrics")

BYTES_PER_MB = 1024 * 1024
MEMORY_PRECISION = 2
HIT_RATIO_PRECISION = 4


class InfoProvider(Protocol):
    async def info(self) -> Mapping[str, Any]: ...


def _parse_info_text(text: str) -> dict[str, str]:
    """Flatten raw INFO text ('# Section' headers, 'key:value' lines) into a dict."""
    out: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition(":")
        if sep:
            out[key] = value
    return out


def _as_int(info: Mapping[str, Any], key: str) -> int:
    value = info.get(key)
    if value is None:
        return 0
    return int(float(value))


def parse_info(info: Mapping[str, Any] | str) -> ServerMetricsSnapshot:
    """Build a snapshot from INFO output (redis-py dict or raw text).

    Raises:
        MetricsCollectionError: If a present field cannot be converted
    """
    flat: Mapping[str, Any] = _parse_info_text(info) if isinstance(info, str) else info
    try:
        used_memory = float(flat.get("used_memory", 0) or 0)
        hits = _as_int(flat, "keyspace_hits")
        misses = _as_int(flat, "keyspace_misses")
        lookups = hits + misses
        return ServerMetricsSnapshot(
            used_memory_mb=round(used_memory / BYTES_PER_MB, MEMORY_PRECISION),
            connected_clients=_as_int(flat, "connected_clients"),
            evicted_keys=_as_int(flat, "evicted_keys"),
            instantaneous_ops_per_sec=_as_int(flat, "instantaneous_ops_per_sec"),
            keyspace_hits=hits,
            keyspace_misses=misses,
            hit_ratio=round(hits / lookups, HIT_RATIO_PRECISION) if lookups else 0.0,
        )
    except (TypeError, ValueError) as e:
        raise MetricsCollectionError("Unparseable INFO field", original_error=e) from e


async def capture_snapshot(provider: InfoProvider | None) -> ServerMetricsSnapshot:
    """Capture server metrics now. Returns a zeroed snapshot on any failure."""
    if provider is None or not hasattr(provider, "info"):
        return ServerMetricsSnapshot()
    try:
        return parse_info(await provider.info())
    except Exception as e:  # noqa: BLE001
        logger.warning("Unable to capture server metrics: %s", e)
        return ServerMetricsSnapshot()


def diff_snapshots(
    before: ServerMetricsSnapshot | None,
    after: ServerMetricsSnapshot | None,
) -> MetricsDelta:
    """Memory and eviction deltas; clients, ops/sec and hit ratio carried from the after-snapshot."""
    before = before or ServerMetricsSnapshot()
    after = after or ServerMetricsSnapshot()
    return MetricsDelta(
        memory_delta_mb=round(after.used_memory_mb - before.used_memory_mb, MEMORY_PRECISION),
        evicted_keys_delta=after.evicted_keys - before.evicted_keys,
        connected_clients=after.connected_clients,
        instantaneous_ops_per_sec=after.instantaneous_ops_per_sec,
        hit_ratio=after.hit_ratio,
    )
