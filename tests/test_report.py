"""Unit tests for report generation (file naming, JSON, HTML, console summary)."""

from __future__ import annotations

from datetime import datetime, timezone
from io import StringIO
from pathlib import Path

import orjson
from rich.console import Console

from kvstress.models import (
    CacheReport,
    ExecutionMode,
    MetricsDelta,
    RunConfiguration,
    RunResult,
    ServerMetricsSnapshot,
)
from kvstress.report import (
    generate_html_report,
    generate_json_report,
    print_summary,
    report_file_name,
    report_to_dict,
)

_START = datetime(2026, 5, 4, 10, 30, 0, tzinfo=timezone.utc)
_END = datetime(2026, 5, 4, 10, 30, 20, tzinfo=timezone.utc)


def _report() -> CacheReport:
    return CacheReport(
        config=RunConfiguration(tag="ci", threads=4, connection_string="h:6379,password=hunter2"),
        result=RunResult(
            mode=ExecutionMode.TIMED_AND_BOUNDED,
            total_requests=800,
            success_count=790,
            timeout_count=6,
            error_count=4,
            avg_latency_ms=0.85,
            p95_latency_ms=2.1,
            requests_per_second=40.0,
            elapsed_seconds=20.0,
            start_time_utc=_START,
            end_time_utc=_END,
        ),
        before=ServerMetricsSnapshot(used_memory_mb=100.0, evicted_keys=5, connected_clients=2),
        after=ServerMetricsSnapshot(used_memory_mb=142.37, evicted_keys=9, connected_clients=6, hit_ratio=0.5),
        delta=MetricsDelta(memory_delta_mb=42.37, evicted_keys_delta=4, connected_clients=6, hit_ratio=0.5),
    )


def test_report_file_name() -> None:
    assert report_file_name("", now=_START) == "result_20260504_103000.json"
    assert report_file_name("smoke", now=_START) == "result_20260504_103000_smoke.json"
    assert report_file_name("x", now=_START, suffix=".html").endswith("_x.html")


def test_report_to_dict() -> None:
    d = report_to_dict(_report())
    assert d["mode"] == "timed_and_bounded"
    assert d["thread_count"] == 4
    assert d["total_requests"] == 800
    assert d["memory_delta_mb"] == 42.37
    assert d["evicted_keys_delta"] == 4
    assert d["start_time_utc"] == "2026-05-04T10:30:00Z"
    assert d["info_metrics_before"]["used_memory_mb"] == 100.0
    assert d["info_metrics_after"]["connected_clients"] == 6


def test_report_never_contains_connection_secrets() -> None:
    assert "hunter2" not in orjson.dumps(report_to_dict(_report())).decode()


def test_generate_json_report(tmp_path: Path) -> None:
    out = generate_json_report(tmp_path / "nested" / "r.json", _report())
    assert out.exists()
    data = orjson.loads(out.read_bytes())
    assert data["success_count"] == 790
    assert data["tag"] == "ci"


def test_generate_html_report(tmp_path: Path) -> None:
    out = generate_html_report(tmp_path / "r.html", _report())
    content = out.read_text(encoding="utf-8")
    assert "<html" in content
    assert "Cache stress test" in content
    assert "42.37" in content
    assert "timed_and_bounded" in content


def test_print_summary() -> None:
    buf = StringIO()
    print_summary(_report(), Console(file=buf, width=120))
    text = buf.getvalue()
    assert "Stress Test Summary" in text
    assert "800" in text
    assert "42.37 MB" in text
