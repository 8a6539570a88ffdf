"""Cache client capability and its Redis implementation.

The engine only sees the CacheClient protocol: read/write/delete coroutines
that either return, raise OperationTimeout (or TimeoutError) for a timeout, or
raise anything else for a generic failure. Connection lifecycle, pooling and
concurrency safety of the underlying connection belong to the client.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Protocol, runtime_checkable
from urllib.parse import urlparse

from redis.asyncio import Redis
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .exceptions import ClientConnectionError, OperationError, OperationTimeout
from .logging_config import get_logger
from .models import RunConfiguration

logger = get_logger("client")

DEFAULT_PORT = 6379
# Local targets get very short timeouts so timeouts are observable in dev runs
LOCAL_TIMEOUT_MS = 100
LOCAL_HOSTS = ("localhost", "127.0.0.1")
# Environments whose managed offering requires TLS
TLS_ENVIRONMENTS = frozenset({"AZURE"})


@runtime_checkable
class CacheClient(Protocol):
    """Operations the workload engine drives. Implementations must tolerate concurrent use."""

    async def read(self, key: str) -> bytes | None: ...

    async def write(self, key: str, payload: bytes) -> None: ...

    async def delete(self, key: str) -> None: ...


@dataclass(slots=True)
class ConnectionOptions:
    """Parsed connection target."""

    host: str = "localhost"
    port: int = DEFAULT_PORT
    password: str | None = None
    username: str | None = None
    ssl: bool = False
    db: int = 0
    url: str | None = None  # set when a redis:// or rediss:// URL was given

    @property
    def is_local(self) -> bool:
        return self.host.lower() in LOCAL_HOSTS


def parse_connection_string(connection_string: str) -> ConnectionOptions:
    """Parse either a redis URL or a 'host:port,password=...,ssl=True' string."""
    s = (connection_string or "").strip()
    if not s:
        raise ClientConnectionError("Connection string must not be empty")

    if s.startswith(("redis://", "rediss://", "unix://")):
        parsed = urlparse(s)
        return ConnectionOptions(
            host=parsed.hostname or "localhost",
            port=parsed.port or DEFAULT_PORT,
            password=parsed.password,
            username=parsed.username,
            ssl=parsed.scheme == "rediss",
            url=s,
        )

    parts = [p.strip() for p in s.split(",") if p.strip()]
    endpoint, options = parts[0], parts[1:]
    host, _, port_str = endpoint.partition(":")
    try:
        port = int(port_str) if port_str else DEFAULT_PORT
    except ValueError as e:
        raise ClientConnectionError(
            f"Invalid port in connection string: {port_str!r}", original_error=e
        ) from e

    opts = ConnectionOptions(host=host or "localhost", port=port)
    for option in options:
        key, sep, value = option.partition("=")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()
        if key == "password":
            opts.password = value
        elif key in ("user", "username"):
            opts.username = value
        elif key == "ssl":
            opts.ssl = value.lower() == "true"
        elif key in ("defaultdatabase", "db"):
            try:
                opts.db = int(value)
            except ValueError:
                logger.debug("Ignoring non-numeric database option %r", value)
    return opts


@contextmanager
def _translate_errors(operation: str, key: str) -> Iterator[None]:
    """Map redis/asyncio failures to OperationTimeout / OperationError."""
    try:
        yield
    except (RedisTimeoutError, asyncio.TimeoutError) as e:
        raise OperationTimeout(
            f"{operation} timed out", context={"key": key}, original_error=e
        ) from e
    except RedisError as e:
        raise OperationError(
            f"{operation} failed", context={"key": key}, original_error=e
        ) from e


class RedisCacheClient:
    """CacheClient over redis.asyncio. One client (and its pool) shared by all workers."""

    def __init__(
        self,
        connection_string: str,
        timeout_ms: int | None = None,
        ssl: bool | None = None,
        redis: Redis | None = None,
    ) -> None:
        self.options = parse_connection_string(connection_string)
        if ssl is not None and self.options.url is None:
            self.options.ssl = self.options.ssl or ssl
        if timeout_ms is None and self.options.is_local:
            timeout_ms = LOCAL_TIMEOUT_MS
        self.timeout_ms = timeout_ms
        self._redis = redis if redis is not None else self._create_redis()

    def _create_redis(self) -> Redis:
        timeout = self.timeout_ms / 1000.0 if self.timeout_ms else None
        kwargs: dict[str, Any] = {
            "socket_timeout": timeout,
            "socket_connect_timeout": timeout,
        }
        if self.options.url is not None:
            return Redis.from_url(self.options.url, **kwargs)
        return Redis(
            host=self.options.host,
            port=self.options.port,
            db=self.options.db,
            username=self.options.username,
            password=self.options.password,
            ssl=self.options.ssl,
            **kwargs,
        )

    async def read(self, key: str) -> bytes | None:
        with _translate_errors("GET", key):
            return await self._redis.get(key)

    async def write(self, key: str, payload: bytes) -> None:
        with _translate_errors("SET", key):
            await self._redis.set(key, payload)

    async def delete(self, key: str) -> None:
        with _translate_errors("DEL", key):
            await self._redis.delete(key)

    async def ping(self) -> bool:
        """True if the server answered PING. Never raises."""
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning("PING to %s:%s failed: %s", self.options.host, self.options.port, e)
            return False

    async def info(self) -> dict[str, Any]:
        """Flattened INFO output (all sections)."""
        return await self._redis.info()

    async def aclose(self) -> None:
        await self._redis.aclose()

    async def __aenter__(self) -> "RedisCacheClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"RedisCacheClient(host={self.options.host!r}, port={self.options.port}, ssl={self.options.ssl})"


def create_cache_client(config: RunConfiguration, connection_string: str | None = None) -> RedisCacheClient:
    """Build the client for config.environment. AZURE enables TLS unless the string says otherwise."""
    target = connection_string or config.connection_string
    env = config.environment.strip().upper()
    ssl = True if env in TLS_ENVIRONMENTS and "ssl=" not in target.lower() else None
    client = RedisCacheClient(target, timeout_ms=config.operation_timeout_ms, ssl=ssl)
    logger.debug("Created cache client for environment=%s: %r", env, client)
    return client
