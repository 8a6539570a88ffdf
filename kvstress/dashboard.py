"""Rich live progress panel with low overhead. Reads only the accumulator's live view."""

from __future__ import annotations

import time

from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from .metrics import LiveStats, RunAccumulator
from .models import ExecutionMode, RunConfiguration
from .modes import expected_total_requests

PROGRESS_BAR_WIDTH = 40


def _format_remaining(seconds: float) -> str:
    """Format remaining time as Xs or Xm Ys."""
    s = max(0, int(round(seconds)))
    if s >= 60:
        m, s = divmod(s, 60)
        return f"{m}m {s}s"
    return f"{s}s"


def build_metrics_table(
    stats: LiveStats,
    config: RunConfiguration,
    mode: ExecutionMode,
    elapsed_seconds: float,
) -> Table:
    """Single Rich grid with current counters."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan")
    table.add_column(style="green")

    expected = expected_total_requests(mode, config.threads, config.requests_per_thread)
    if expected:
        pct = min(1.0, stats.total / expected)
        table.add_row(
            "Progress",
            ProgressBar(total=expected, completed=min(stats.total, expected), width=PROGRESS_BAR_WIDTH),
        )
        table.add_row("Completed", f"{stats.total:,} / {expected:,} ({pct * 100:.0f}%)")
    else:
        table.add_row("Total ops", f"{stats.total:,}")

    table.add_row("Ops/sec", f"{stats.ops_per_sec:.1f}")
    table.add_row("Success", f"{stats.success:,}")
    table.add_row("Timeouts", f"{stats.timeouts:,}")
    table.add_row("Errors", f"{stats.errors:,}")
    table.add_row("P95 (ms, est.)", f"{stats.p95_estimate_ms:.2f}")
    if config.duration_seconds > 0:
        remaining = max(0.0, config.duration_seconds - elapsed_seconds)
        table.add_row("Elapsed", f"{elapsed_seconds:.1f}s / {config.duration_seconds}s")
        table.add_row("Remaining", _format_remaining(remaining))
    else:
        table.add_row("Elapsed", f"{elapsed_seconds:.1f}s")
    return table


def create_live_panel(
    accumulator: RunAccumulator,
    config: RunConfiguration,
    mode: ExecutionMode,
    start_time: float,
) -> Panel:
    """Create Rich Panel for live display."""
    elapsed = time.perf_counter() - start_time if start_time else 0.0
    stats = accumulator.live_stats()
    table = build_metrics_table(stats, config, mode, elapsed)
    title = Text()
    title.append("kvstress ", style="bold magenta")
    title.append(f"| {mode.value} | threads={config.threads}", style="dim")
    if config.aggressive:
        title.append(" | AGGRESSIVE", style="bold red")
    return Panel(table, title=title, border_style="blue")


def format_progress_line(
    accumulator: RunAccumulator,
    config: RunConfiguration,
    start_time: float,
) -> str:
    """One-line progress for non-TTY output (CI, docker logs)."""
    elapsed = time.perf_counter() - start_time if start_time else 0.0
    stats = accumulator.live_stats()
    line = f"[Progress] Elapsed: {elapsed:.1f}s | TotalOps: {stats.total:,} | RPS: {stats.ops_per_sec:.1f}"
    if config.duration_seconds > 0:
        line += f" | Remaining: {max(0.0, config.duration_seconds - elapsed):.1f}s"
    return line
