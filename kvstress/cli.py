"""CLI entry point for kvstress.

Speed-first design:
- Uses uvloop for a faster event loop when installed
- GC disabled during the run for consistent latency
"""

from __future__ import annotations

import argparse
import asyncio
import gc
import sys
from typing import Any, Coroutine

# Use uvloop when available for faster async performance
_HAS_UVLOOP = False
try:
    import uvloop
    _HAS_UVLOOP = True
except ImportError:
    pass

from . import __version__
from .config import load_config
from .exceptions import ConfigurationError, KvStressError
from .logging_config import get_logger
from .runner import run_stress_test

logger = get_logger("cli")


def _run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run coroutine on uvloop when available. GC is disabled while it runs."""
    gc_was_enabled = gc.isenabled()
    gc.disable()
    try:
        if _HAS_UVLOOP:
            return uvloop.run(coro)
        return asyncio.run(coro)
    finally:
        if gc_was_enabled:
            gc.enable()
        gc.collect()


# CLI flag dest -> RunConfiguration field
OVERRIDE_FIELDS = (
    "threads",
    "requests_per_thread",
    "duration_seconds",
    "payload_size_bytes",
    "read_ratio",
    "aggressive",
    "tag",
    "key_prefix",
    "environment",
    "connection_string",
    "secret_arn",
    "operation_timeout_ms",
    "publish_metrics",
    "report_dir",
)


def _collect_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Only flags the user actually passed; None means 'not given'."""
    return {name: getattr(args, name) for name in OVERRIDE_FIELDS if getattr(args, name, None) is not None}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kvstress",
        description="Concurrent load generator for Redis-protocol caches. "
        "Reports latency percentiles, throughput and server metric deltas.",
    )
    parser.add_argument(
        "-f",
        "--config",
        default=None,
        help="Path to YAML config (optional; STRESS_* environment variables and flags override it)",
    )
    parser.add_argument("--threads", type=int, default=None, help="Number of concurrent workers")
    parser.add_argument(
        "--requests-per-thread", type=int, default=None, dest="requests_per_thread",
        help="Operations per worker (0 = run for --duration)",
    )
    parser.add_argument(
        "--duration", type=int, default=None, metavar="SEC", dest="duration_seconds",
        help="Duration bound in seconds (0 = bounded by request count only)",
    )
    parser.add_argument("--payload-size", type=int, default=None, metavar="BYTES", dest="payload_size_bytes", help="Write payload size")
    parser.add_argument("--read-ratio", type=float, default=None, dest="read_ratio", help="Fraction of reads in [0, 1]")
    parser.add_argument(
        "--aggressive", action="store_true", default=None,
        help="Aggressive mode: random payload sizes, ~5%% deletes, scheduling jitter",
    )
    parser.add_argument("--tag", default=None, help="Run label, part of keys and report file names")
    parser.add_argument("--key-prefix", default=None, dest="key_prefix", help="Key prefix (default: stress)")
    parser.add_argument("--environment", default=None, help="Target environment: AWS, ELASTICACHE, AZURE, ...")
    parser.add_argument(
        "-c", "--connection-string", default=None, dest="connection_string",
        help="redis://host:port or host:port[,password=...][,ssl=True]",
    )
    parser.add_argument("--secret-arn", default=None, dest="secret_arn", help="AWS Secrets Manager ARN holding the connection string")
    parser.add_argument(
        "--timeout-ms", type=int, default=None, dest="operation_timeout_ms",
        help="Per-operation socket timeout (ms)",
    )
    parser.add_argument(
        "--publish-metrics", action="store_true", default=None, dest="publish_metrics",
        help="Publish results to CloudWatch (AWS) or Application Insights (AZURE)",
    )
    parser.add_argument("-o", "--report-dir", default=None, dest="report_dir", help="Directory for JSON/HTML reports (default: Reports)")
    parser.add_argument("--no-live", action="store_true", help="Disable live progress (headless mode)")
    parser.add_argument("-v", "--version", action="version", version=f"kvstress {__version__}")
    return parser


def main() -> int:
    args = build_parser().parse_args()

    def handle_error(e: BaseException) -> int:
        if isinstance(e, KvStressError):
            print(f"Error: {e.message}", file=sys.stderr)
            return 1
        if isinstance(e, (FileNotFoundError, ValueError)):
            print(f"Error: {e}", file=sys.stderr)
            return 1
        logger.exception("Unexpected error")
        print("Error: An unexpected error occurred. Check logs for details.", file=sys.stderr)
        return 1

    try:
        config = load_config(args.config, overrides=_collect_overrides(args))
    except ConfigurationError as e:
        return handle_error(e)

    try:
        _run_async(run_stress_test(config, live=not args.no_live))
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    except Exception as e:
        return handle_error(e)
    return 0


if __name__ == "__main__":
    sys.exit(main())
