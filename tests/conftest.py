"""
Pytest configuration and shared fixtures.

Contains settings factories, sample records and an in-process aiohttp
server that emulates the Loki push endpoint.
"""

import asyncio
import gzip
import json
import os
from collections import deque
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Callable, Deque, Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from logship.config import ShipperSettings
from logship.models import LogLevel, LogRecord

PUSH_PATH = "/loki/api/v1/push"
GZIP_MAGIC = b"\x1f\x8b"


@dataclass
class PushRequest:
    """One request received by the fake Loki server."""
    headers: Dict[str, str]
    raw_body: bytes
    document: Dict[str, Any]

    @property
    def streams(self) -> List[Dict[str, Any]]:
        return self.document["streams"]

    @property
    def entry_count(self) -> int:
        return sum(len(s["values"]) for s in self.streams)


class FakeLoki:
    """Records push requests and answers with scripted status codes."""

    def __init__(self) -> None:
        self.statuses: Deque[int] = deque()
        self.requests: List[PushRequest] = []
        self.base_url = ""
        self.delay_seconds = 0.0
        self.error_body: Optional[bytes] = None

    def respond_with(self, *statuses: int) -> None:
        self.statuses.extend(statuses)

    async def handle_push(self, request: web.Request) -> web.Response:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        raw = await request.read()
        # aiohttp may already have undone the gzip content encoding
        body = gzip.decompress(raw) if raw[:2] == GZIP_MAGIC else raw
        self.requests.append(PushRequest(
            headers=dict(request.headers),
            raw_body=raw,
            document=json.loads(body.decode("utf-8")),
        ))

        status = self.statuses.popleft() if self.statuses else 204
        if status < 300:
            return web.Response(status=status)
        if self.error_body is not None:
            return web.Response(status=status, body=self.error_body, content_type="text/plain")
        return web.Response(status=status, text=f"scripted failure {status}")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep LOGSHIP_* variables from the host out of settings."""
    for key in list(os.environ):
        if key.startswith("LOGSHIP_"):
            monkeypatch.delenv(key)


@pytest_asyncio.fixture
async def fake_loki() -> AsyncGenerator[FakeLoki, None]:
    """Running fake Loki server."""
    loki = FakeLoki()
    app = web.Application()
    app.router.add_post(PUSH_PATH, loki.handle_push)

    server = TestServer(app)
    await server.start_server()
    loki.base_url = str(server.make_url("/")).rstrip("/")
    try:
        yield loki
    finally:
        await server.close()


@pytest.fixture
def make_settings() -> Callable[..., ShipperSettings]:
    """Factory for settings with fast retries and test labels."""

    def _make(base_url: str = "http://loki.invalid:3100", **overrides: Any) -> ShipperSettings:
        retry = {
            "max_retries": 3,
            "backoff_base_seconds": 0.01,
            "backoff_max_seconds": 0.05,
        }
        retry.update(overrides.pop("retry", {}))

        data: Dict[str, Any] = {
            "base_url": base_url,
            "labels": {"app": "checkout", "env": "test"},
            "timeout_seconds": 5,
            "flush_timeout_seconds": 5,
            "retry": retry,
        }
        data.update(overrides)
        return ShipperSettings(**data)

    return _make


@pytest.fixture
def make_record() -> Callable[..., LogRecord]:
    """Factory for records with deterministic timestamps."""

    def _make(
        message: str = "Test log message",
        timestamp_ns: int = 1_700_000_000_000_000_000,
        level: LogLevel = LogLevel.INFO,
        module: Optional[str] = None,
        **fields: Any,
    ) -> LogRecord:
        return LogRecord(
            timestamp_ns=timestamp_ns,
            level=level,
            message=message,
            module=module,
            fields=fields,
        )

    return _make
