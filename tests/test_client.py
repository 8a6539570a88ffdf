"""Unit tests for the Redis cache client (connection parsing, error translation)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from kvstress.client import (
    LOCAL_TIMEOUT_MS,
    CacheClient,
    RedisCacheClient,
    create_cache_client,
    parse_connection_string,
)
from kvstress.exceptions import ClientConnectionError, OperationError, OperationTimeout
from kvstress.models import RunConfiguration


def test_parse_host_port() -> None:
    opts = parse_connection_string("cache.example.com:6380")
    assert opts.host == "cache.example.com"
    assert opts.port == 6380
    assert opts.ssl is False
    assert opts.url is None


def test_parse_default_port() -> None:
    assert parse_connection_string("cache.example.com").port == 6379


def test_parse_options() -> None:
    opts = parse_connection_string("myhost:6380,password=s3cret,ssl=True,abortConnect=False,defaultDatabase=2")
    assert opts.password == "s3cret"
    assert opts.ssl is True
    assert opts.db == 2


def test_parse_url() -> None:
    opts = parse_connection_string("rediss://user:pw@cache.internal:6390/0")
    assert opts.host == "cache.internal"
    assert opts.port == 6390
    assert opts.username == "user"
    assert opts.password == "pw"
    assert opts.ssl is True
    assert opts.url is not None


def test_parse_empty_raises() -> None:
    with pytest.raises(ClientConnectionError):
        parse_connection_string("  ")


def test_parse_bad_port_raises() -> None:
    with pytest.raises(ClientConnectionError):
        parse_connection_string("host:notaport")


def test_local_target_gets_short_timeout() -> None:
    client = RedisCacheClient("localhost:6379", redis=MagicMock())
    assert client.timeout_ms == LOCAL_TIMEOUT_MS
    remote = RedisCacheClient("cache.example.com:6379", redis=MagicMock())
    assert remote.timeout_ms is None


def test_satisfies_protocol() -> None:
    assert isinstance(RedisCacheClient("localhost", redis=MagicMock()), CacheClient)


def test_operations_delegate_to_redis() -> None:
    redis = MagicMock()
    redis.get = AsyncMock(return_value=b"v")
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    client = RedisCacheClient("localhost", redis=redis)

    async def run() -> bytes | None:
        await client.write("k", b"v")
        await client.delete("k")
        return await client.read("k")

    assert asyncio.run(run()) == b"v"
    redis.set.assert_awaited_once_with("k", b"v")
    redis.delete.assert_awaited_once_with("k")


def test_timeout_translated() -> None:
    redis = MagicMock()
    redis.get = AsyncMock(side_effect=RedisTimeoutError("Timeout reading from socket"))
    client = RedisCacheClient("localhost", redis=redis)
    with pytest.raises(OperationTimeout) as exc:
        asyncio.run(client.read("k"))
    assert exc.value.context == {"key": "k"}


def test_redis_error_translated() -> None:
    redis = MagicMock()
    redis.set = AsyncMock(side_effect=RedisConnectionError("refused"))
    client = RedisCacheClient("localhost", redis=redis)
    with pytest.raises(OperationError):
        asyncio.run(client.write("k", b"v"))


def test_ping_never_raises() -> None:
    redis = MagicMock()
    redis.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
    client = RedisCacheClient("localhost", redis=redis)
    assert asyncio.run(client.ping()) is False
    redis.ping = AsyncMock(return_value=True)
    assert asyncio.run(client.ping()) is True


def test_context_manager_closes() -> None:
    redis = MagicMock()
    redis.aclose = AsyncMock()

    async def run() -> None:
        async with RedisCacheClient("localhost", redis=redis):
            pass

    asyncio.run(run())
    redis.aclose.assert_awaited_once()


def test_create_cache_client_azure_enables_tls() -> None:
    config = RunConfiguration(environment="AZURE", connection_string="myapp.redis.cache.windows.net:6380,password=x")
    client = create_cache_client(config)
    assert client.options.ssl is True


def test_create_cache_client_azure_explicit_ssl_respected() -> None:
    config = RunConfiguration(environment="AZURE", connection_string="myapp:6379,ssl=False")
    assert create_cache_client(config).options.ssl is False


def test_create_cache_client_aws_plain() -> None:
    config = RunConfiguration(environment="AWS", connection_string="cache.example.com:6379", operation_timeout_ms=250)
    client = create_cache_client(config)
    assert client.options.ssl is False
    assert client.timeout_ms == 250
    assert "cache.example.com" in repr(client)
