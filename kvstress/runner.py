"""Execution runner: connect, snapshot, workload, snapshot, report, publish."""

from __future__ import annotations

import asyncio
import signal
import sys
import time
from pathlib import Path

from rich.console import Console
from rich.live import Live

from .aws_secrets import get_connection_string
from .client import CacheClient, create_cache_client
from .dashboard import create_live_panel, format_progress_line
from .engine import ensure_mode, run_workload
from .exceptions import ClientConnectionError, KvStressError
from .logging_config import get_logger
from .metrics import RunAccumulator
from .models import CacheReport, ExecutionMode, RunConfiguration
from .publisher import publish_metrics
from .report import generate_html_report, generate_json_report, print_summary, report_file_name
from .server_metrics import capture_snapshot, diff_snapshots

logger = get_logger("runner")

LIVE_POLL_SEC = 0.25
LIVE_REFRESH_PER_SEC = 4
# When stdout is not a TTY (e.g. Docker without -it), interval for plain progress lines
STREAMING_FALLBACK_INTERVAL_SEC = 5.0


def _stdout_is_tty() -> bool:
    """True if stdout is a TTY (interactive terminal). False in Docker without -it, CI, pipes."""
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _install_signal_handlers(stop_event: asyncio.Event) -> list[int]:
    """SIGINT/SIGTERM set stop_event so workers finish their in-flight operation and stop."""
    loop = asyncio.get_running_loop()
    installed: list[int] = []

    def _request_stop(signum: int) -> None:
        logger.info("Shutdown signal received (signal %d), finishing in-flight operations...", signum)
        stop_event.set()

    for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)):
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, _request_stop, int(sig))
            installed.append(int(sig))
        except (NotImplementedError, RuntimeError, ValueError):
            logger.debug("Signal handler for %s not supported here", sig)
    return installed


def _remove_signal_handlers(signals: list[int]) -> None:
    loop = asyncio.get_running_loop()
    for sig in signals:
        loop.remove_signal_handler(sig)


async def resolve_connection_string(config: RunConfiguration) -> str:
    """Explicit connection string wins; otherwise read it from the configured secret ARN."""
    if config.connection_string.strip():
        return config.connection_string
    if config.secret_arn.strip():
        logger.info("Resolving connection string from secret")
        return await asyncio.to_thread(get_connection_string, config.secret_arn)
    raise ClientConnectionError("Connection string not provided and no secret ARN configured")


async def _show_progress(
    accumulator: RunAccumulator,
    config: RunConfiguration,
    mode: ExecutionMode,
    start_time: float,
    workload_task: asyncio.Task,
    console: Console,
) -> None:
    """Live panel on a TTY, a plain line every few seconds otherwise. Returns when the workload is done."""
    if _stdout_is_tty():
        with Live(
            create_live_panel(accumulator, config, mode, start_time),
            console=console,
            refresh_per_second=LIVE_REFRESH_PER_SEC,
        ) as live_ctx:
            while not workload_task.done():
                live_ctx.update(create_live_panel(accumulator, config, mode, start_time))
                await asyncio.wait({workload_task}, timeout=LIVE_POLL_SEC)
            live_ctx.update(create_live_panel(accumulator, config, mode, start_time))
        return

    while not workload_task.done():
        await asyncio.wait({workload_task}, timeout=STREAMING_FALLBACK_INTERVAL_SEC)
        if not workload_task.done():
            sys.stdout.write(format_progress_line(accumulator, config, start_time) + "\n")
            sys.stdout.flush()


def write_reports(report: CacheReport, report_dir: str | Path) -> tuple[Path, Path]:
    """Write JSON and HTML reports side by side. Returns (json_path, html_path)."""
    base = Path(report_dir)
    json_path = generate_json_report(base / report_file_name(report.config.tag), report)
    html_path = generate_html_report(json_path.with_suffix(".html"), report)
    return json_path, html_path


async def execute_run(
    config: RunConfiguration,
    client: CacheClient,
    live: bool = True,
    console: Console | None = None,
    stop_event: asyncio.Event | None = None,
) -> CacheReport:
    """Snapshot, run the workload, snapshot again and build the CacheReport.

    Raises:
        ConfigurationError: If the bounds resolve to an undefined mode (before any snapshot)
    """
    mode = ensure_mode(config)
    console = console or Console()
    logger.info("Running in %s", "AGGRESSIVE MODE (high pressure load enabled)" if config.aggressive else "normal mode")

    before = await capture_snapshot(client)
    logger.debug("Server metrics before: %s", before)

    accumulator = RunAccumulator()
    stop_event = stop_event if stop_event is not None else asyncio.Event()
    signals = _install_signal_handlers(stop_event)
    try:
        start_time = time.perf_counter()
        workload_task = asyncio.create_task(
            run_workload(config, client, accumulator=accumulator, stop_event=stop_event)
        )
        if live and config.show_progress:
            await _show_progress(accumulator, config, mode, start_time, workload_task, console)
        result = await workload_task
    finally:
        _remove_signal_handlers(signals)

    after = await capture_snapshot(client)
    logger.debug("Server metrics after: %s", after)
    return CacheReport(
        config=config,
        result=result,
        before=before,
        after=after,
        delta=diff_snapshots(before, after),
    )


async def run_stress_test(
    config: RunConfiguration,
    client: CacheClient | None = None,
    live: bool = True,
) -> CacheReport:
    """Full lifecycle. Creates (and closes) a Redis client unless one is given.

    Raises:
        ClientConnectionError: If no target is configured or the target does not answer PING
        SecretResolutionError: If the secret ARN cannot be resolved
        ConfigurationError: If the bounds resolve to an undefined mode
    """
    console = Console()
    owns_client = client is None
    if client is None:
        ensure_mode(config)
        try:
            connection_string = await resolve_connection_string(config)
        except KvStressError as e:
            e.with_context(environment=config.environment)
            raise
        redis_client = create_cache_client(config, connection_string)
        if not await redis_client.ping():
            await redis_client.aclose()
            raise ClientConnectionError(
                "Connection could not be established",
                context={"environment": config.environment},
            )
        client = redis_client

    try:
        report = await execute_run(config, client, live=live, console=console)
    finally:
        if owns_client:
            await client.aclose()

    if live:
        print_summary(report, console)
    if config.report_dir:
        json_path, html_path = await asyncio.to_thread(write_reports, report, config.report_dir)
        logger.info("Report saved: %s (HTML: %s)", json_path, html_path)
        if live:
            console.print(f"[green]Report written to[/green] {json_path}")
    if config.publish_metrics:
        await publish_metrics(report)
    return report
