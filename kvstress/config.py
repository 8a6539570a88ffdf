"""Layered configuration: defaults, YAML file, STRESS_* environment variables, CLI overrides."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigurationError
from .logging_config import get_logger
from .models import RunConfiguration

logger = get_logger("config")

ENV_PREFIX = "STRESS_"
# YAML files may nest everything under this key
CONFIG_SECTION = "test_config"
MAX_RECOMMENDED_THREADS = 10_000
MAX_RECOMMENDED_PAYLOAD_BYTES = 5_000_000

_FIELD_TYPES: dict[str, type] = {
    "threads": int,
    "requests_per_thread": int,
    "duration_seconds": int,
    "payload_size_bytes": int,
    "read_ratio": float,
    "aggressive": bool,
    "tag": str,
    "key_prefix": str,
    "environment": str,
    "connection_string": str,
    "secret_arn": str,
    "operation_timeout_ms": int,
    "show_progress": bool,
    "publish_metrics": bool,
    "report_dir": str,
}
_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off", ""})


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    target = _FIELD_TYPES[name]
    if target is bool:
        if isinstance(value, bool):
            return value
        s = str(value).strip().lower()
        if s in _TRUE_STRINGS:
            return True
        if s in _FALSE_STRINGS:
            return False
        raise ValueError(f"{name}: expected a boolean, got {value!r}")
    if target is int:
        if isinstance(value, bool):
            raise ValueError(f"{name}: expected an integer, got {value!r}")
        f = float(value)
        if not f.is_integer():
            raise ValueError(f"{name}: expected an integer, got {value!r}")
        return int(f)
    if target is float:
        return float(value)
    return str(value)


def _normalize_key(key: str) -> str:
    """'RequestsPerThread' / 'requests-per-thread' / 'REQUESTS_PER_THREAD' -> 'requests_per_thread'."""
    k = key.strip().replace("-", "_")
    if "_" not in k and not k.isupper() and any(c.isupper() for c in k[1:]):
        k = "".join(f"_{c}" if c.isupper() and i else c for i, c in enumerate(k))
    k = k.lower()
    aliases = {
        "read_write_ratio": "read_ratio",
        "aggressive_mode": "aggressive",
        "redis_connection_string": "connection_string",
        "redis_secret_arn": "secret_arn",
        "aws_secret_arn": "secret_arn",
    }
    return aliases.get(k, k)


def _apply(values: dict[str, Any], raw: Mapping[str, Any], source: str) -> None:
    for key, value in raw.items():
        if value is None:
            continue
        name = _normalize_key(str(key))
        if name not in _FIELD_TYPES:
            logger.debug("Ignoring unknown config key %r from %s", key, source)
            continue
        try:
            values[name] = _coerce(name, value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid config value for {name}: {value!r}",
                context={"source": source},
                original_error=e,
            ) from e


def read_config_file(path: str | Path) -> dict[str, Any]:
    """Read the YAML file into a flat mapping. Raises ConfigurationError."""
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"Config file not found: {path}", context={"path": str(path)})
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        logger.exception("Failed to parse YAML config file")
        raise ConfigurationError(
            f"Invalid YAML syntax in config file: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read config file: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            "Config must be a YAML object/dictionary",
            context={"path": str(path), "actual_type": type(raw).__name__},
        )
    section = raw.get(CONFIG_SECTION)
    if isinstance(section, dict):
        merged = {k: v for k, v in raw.items() if k != CONFIG_SECTION}
        merged.update(section)
        return merged
    return raw


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """STRESS_THREADS=10 -> {'threads': '10'} for every recognised key."""
    env = os.environ if environ is None else environ
    out: dict[str, str] = {}
    for key, value in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = _normalize_key(key[len(ENV_PREFIX):])
        if name in _FIELD_TYPES:
            out[name] = value
    return out


def validate_run_configuration(config: RunConfiguration) -> None:
    """Validate bounds. Raises ConfigurationError; logs warnings for extreme but legal values."""
    if config.threads <= 0:
        raise ConfigurationError("threads must be greater than zero")
    if config.requests_per_thread < 0:
        raise ConfigurationError("requests_per_thread cannot be negative")
    if config.duration_seconds < 0:
        raise ConfigurationError("duration_seconds cannot be negative")
    if config.requests_per_thread == 0 and config.duration_seconds == 0:
        raise ConfigurationError("specify requests_per_thread or duration_seconds (or both)")
    if not 0.0 <= config.read_ratio <= 1.0:
        raise ConfigurationError("read_ratio must be between 0.0 and 1.0")
    if config.payload_size_bytes < 1:
        raise ConfigurationError("payload_size_bytes must be >= 1")
    if config.operation_timeout_ms is not None and config.operation_timeout_ms <= 0:
        raise ConfigurationError("operation_timeout_ms must be > 0 when set")
    if config.threads > MAX_RECOMMENDED_THREADS:
        logger.warning("Very high thread count (%d). Ensure this host can sustain that concurrency.", config.threads)
    if config.payload_size_bytes > MAX_RECOMMENDED_PAYLOAD_BYTES:
        logger.warning("Payload size is unusually large (>5MB). This may distort performance results.")


def load_config(
    path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> RunConfiguration:
    """Build a validated RunConfiguration.

    Precedence (lowest to highest): dataclass defaults, YAML file at path,
    STRESS_* environment variables, overrides (CLI). None-valued overrides are ignored.

    Raises:
        ConfigurationError: If the file is missing/invalid or a value fails validation
    """
    values: dict[str, Any] = {}
    if path is not None:
        _apply(values, read_config_file(path), str(path))
    _apply(values, env_overrides(environ), "environment")
    if overrides:
        _apply(values, {k: v for k, v in overrides.items() if v is not None}, "command line")

    config = dataclasses.replace(RunConfiguration(), **values)
    validate_run_configuration(config)
    logger.debug(
        "Loaded config: threads=%s, requests_per_thread=%s, duration=%s, environment=%s",
        config.threads, config.requests_per_thread, config.duration_seconds, config.environment,
    )
    return config
