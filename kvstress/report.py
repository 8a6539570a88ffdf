"""Result consumers: console summary, JSON report, single-file HTML report."""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson
from jinja2 import Environment, PackageLoader, select_autoescape
from rich.console import Console
from rich.table import Table

from . import __version__ as kvstress_version
from .models import CacheReport, ServerMetricsSnapshot

REPORT_TIMESTAMP_FMT = "%Y%m%d_%H%M%S"
DATETIME_FMT = "%Y-%m-%dT%H:%M:%SZ"


def report_file_name(tag: str = "", now: datetime | None = None, suffix: str = ".json") -> str:
    """result_YYYYmmdd_HHMMSS[_tag].json, so back-to-back runs never overwrite each other."""
    ts = (now or datetime.now(timezone.utc)).strftime(REPORT_TIMESTAMP_FMT)
    tag_part = f"_{tag}" if tag else ""
    return f"result_{ts}{tag_part}{suffix}"


def _snapshot_dict(s: ServerMetricsSnapshot) -> dict[str, Any]:
    return {
        "used_memory_mb": s.used_memory_mb,
        "connected_clients": s.connected_clients,
        "evicted_keys": s.evicted_keys,
        "instantaneous_ops_per_sec": s.instantaneous_ops_per_sec,
        "keyspace_hits": s.keyspace_hits,
        "keyspace_misses": s.keyspace_misses,
        "hit_ratio": s.hit_ratio,
    }


def report_to_dict(report: CacheReport) -> dict[str, Any]:
    """Flat, JSON-ready view of a report. Connection secrets are never included."""
    c = report.config
    r = report.result
    d = report.delta
    return {
        "environment": c.environment,
        "tag": c.tag,
        "mode": r.mode.value,
        "thread_count": c.threads,
        "requests_per_thread": c.requests_per_thread,
        "duration_seconds": c.duration_seconds,
        "payload_size_bytes": c.payload_size_bytes,
        "read_ratio": c.read_ratio,
        "aggressive": c.aggressive,
        "total_requests": r.total_requests,
        "success_count": r.success_count,
        "timeout_count": r.timeout_count,
        "error_count": r.error_count,
        "avg_latency_ms": r.avg_latency_ms,
        "p95_latency_ms": r.p95_latency_ms,
        "requests_per_second": r.requests_per_second,
        "elapsed_seconds": round(r.elapsed_seconds, 3),
        "start_time_utc": r.start_time_utc.strftime(DATETIME_FMT),
        "end_time_utc": r.end_time_utc.strftime(DATETIME_FMT),
        "used_memory_mb_before": report.before.used_memory_mb,
        "used_memory_mb_after": report.after.used_memory_mb,
        "memory_delta_mb": d.memory_delta_mb,
        "evicted_keys_before": report.before.evicted_keys,
        "evicted_keys_after": report.after.evicted_keys,
        "evicted_keys_delta": d.evicted_keys_delta,
        "connected_clients": d.connected_clients,
        "hit_ratio": d.hit_ratio,
        "instantaneous_ops_per_sec": d.instantaneous_ops_per_sec,
        "info_metrics_before": _snapshot_dict(report.before),
        "info_metrics_after": _snapshot_dict(report.after),
    }


def generate_json_report(output_path: str | Path, report: CacheReport) -> Path:
    """Write the machine-readable JSON report. Returns the written path."""
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(orjson.dumps(report_to_dict(report), option=orjson.OPT_INDENT_2))
    return out


def generate_html_report(output_path: str | Path, report: CacheReport) -> Path:
    """Single-file HTML summary rendered from templates/report.html."""
    env = Environment(
        loader=PackageLoader("kvstress", "templates"),
        autoescape=select_autoescape(["html", "xml"]),
    )
    template = env.get_template("report.html")
    html = template.render(
        report=report_to_dict(report),
        meta={
            "kvstress_version": kvstress_version,
            "report_generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
            "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        },
    )
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(html, encoding="utf-8")
    return out


def build_summary_table(report: CacheReport) -> Table:
    r = report.result
    d = report.delta
    table = Table(title="Stress Test Summary", show_header=False, title_style="bold magenta")
    table.add_column(style="cyan")
    table.add_column(style="green", justify="right")
    table.add_row("Run Tag", report.config.tag or "-")
    table.add_row("Mode", r.mode.value)
    table.add_row("Total Requests", f"{r.total_requests:,}")
    table.add_row("Success Count", f"{r.success_count:,}")
    table.add_row("Timeout Count", f"{r.timeout_count:,}")
    table.add_row("Error Count", f"{r.error_count:,}")
    table.add_row("Avg Latency", f"{r.avg_latency_ms:.2f} ms")
    table.add_row("P95 Latency", f"{r.p95_latency_ms:.2f} ms")
    table.add_row("Requests/sec", f"{r.requests_per_second:.2f}")
    table.add_row("Memory Delta", f"{d.memory_delta_mb:.2f} MB")
    table.add_row("Evicted Keys Delta", f"{d.evicted_keys_delta:,}")
    table.add_row("Hit Ratio", f"{d.hit_ratio:.4f}")
    return table


def print_summary(report: CacheReport, console: Console | None = None) -> None:
    (console or Console()).print(build_summary_table(report))
