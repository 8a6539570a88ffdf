"""Pytest fixtures for kvstress tests."""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path
from typing import Any

import pytest

from kvstress.exceptions import OperationError, OperationTimeout


class FakeCacheClient:
    """In-memory CacheClient that records every call.

    fail_with: None, "timeout", "error" or "timeout_builtin" to make every
    operation fail the matching way. yield_each: await sleep(0) inside each op.
    """

    def __init__(
        self,
        fail_with: str | None = None,
        info: dict[str, Any] | None = None,
        yield_each: bool = False,
    ) -> None:
        self.fail_with = fail_with
        self.yield_each = yield_each
        self.calls: list[tuple[str, str]] = []
        self.store: dict[str, bytes] = {}
        self._info = info or {}
        self.info_calls = 0
        self.closed = False

    async def _maybe_fail(self, op: str, key: str) -> None:
        self.calls.append((op, key))
        if self.yield_each:
            await asyncio.sleep(0)
        if self.fail_with == "timeout":
            raise OperationTimeout(f"{op} timed out")
        if self.fail_with == "timeout_builtin":
            raise TimeoutError(f"{op} timed out")
        if self.fail_with == "error":
            raise OperationError(f"{op} failed")

    async def read(self, key: str) -> bytes | None:
        await self._maybe_fail("read", key)
        return self.store.get(key)

    async def write(self, key: str, payload: bytes) -> None:
        await self._maybe_fail("write", key)
        self.store[key] = payload

    async def delete(self, key: str) -> None:
        await self._maybe_fail("delete", key)
        self.store.pop(key, None)

    async def info(self) -> dict[str, Any]:
        self.info_calls += 1
        return dict(self._info)

    async def aclose(self) -> None:
        self.closed = True

    @property
    def keys(self) -> list[str]:
        return [key for _, key in self.calls]


@pytest.fixture
def fake_client() -> FakeCacheClient:
    return FakeCacheClient()


@pytest.fixture
def tmp_path_config_bounded() -> Path:
    """Write a minimal requests-bounded config to a temp file."""
    content = """
threads: 4
requests_per_thread: 10
duration_seconds: 0
payload_size_bytes: 64
read_ratio: 0.5
tag: ci
"""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        f.write(content)
        path = Path(f.name)
    yield path
    path.unlink(missing_ok=True)


@pytest.fixture
def tmp_path_config_section() -> Path:
    """Config nested under test_config, with PascalCase keys."""
    content = """
test_config:
  Threads: 8
  RequestsPerThread: 0
  DurationSeconds: 30
  ReadWriteRatio: 0.9
  AggressiveMode: true
  Environment: AZURE
"""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        f.write(content)
        path = Path(f.name)
    yield path
    path.unlink(missing_ok=True)
