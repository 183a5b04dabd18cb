"""
Integration tests for the Loki transport against an in-process server.
"""

from typing import List

import pytest

from logship.core.buffer import GenerationBuffer, SealReason
from logship.core.encoder import encode
from logship.core.exceptions import ShipperStateError
from logship.core.metrics import MetricsCollector
from logship.core.transport import LokiTransport
from logship.models import LabelSet


def _payload(compress: bool = False, entries: int = 2):
    buffer = GenerationBuffer(max_logs=100)
    for i in range(entries):
        buffer.append(LabelSet(app="checkout"), 1_000 + i, f"line {i}")
    return encode(buffer.seal(SealReason.FLUSH), compress=compress)


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestSend:
    """Request shape and success path."""

    @pytest.mark.asyncio
    async def test_successful_push(self, fake_loki, make_settings) -> None:
        settings = make_settings(fake_loki.base_url, headers={"X-Scope-OrgID": "tenant-1"})
        transport = LokiTransport(settings)
        await transport.start()
        try:
            result = await transport.send(_payload())
        finally:
            await transport.stop()

        assert result.success is True
        assert result.attempts == 1
        assert result.status == 204
        assert result.entries == 2

        request = fake_loki.requests[0]
        assert request.headers["Content-Type"] == "application/json"
        assert "Content-Encoding" not in request.headers
        assert request.headers["X-Scope-OrgID"] == "tenant-1"
        assert request.headers["User-Agent"] == "logship/0.1.0"
        assert request.streams[0]["values"] == [["1000", "line 0"], ["1001", "line 1"]]

    @pytest.mark.asyncio
    async def test_gzip_push(self, fake_loki, make_settings) -> None:
        transport = LokiTransport(make_settings(fake_loki.base_url, compress=True))
        await transport.start()
        try:
            result = await transport.send(_payload(compress=True))
        finally:
            await transport.stop()

        assert result.success is True
        request = fake_loki.requests[0]
        assert request.headers["Content-Encoding"] == "gzip"
        assert request.entry_count == 2

    @pytest.mark.asyncio
    async def test_send_before_start(self, make_settings) -> None:
        transport = LokiTransport(make_settings())
        with pytest.raises(ShipperStateError):
            await transport._post(_payload())


class TestRetries:
    """Retry behaviour per response class."""

    @pytest.mark.asyncio
    async def test_transient_errors_then_success(self, fake_loki, make_settings) -> None:
        fake_loki.respond_with(500, 500, 200)
        sleep = _RecordingSleep()
        metrics = MetricsCollector()
        transport = LokiTransport(make_settings(fake_loki.base_url), metrics=metrics, sleep=sleep)
        await transport.start()
        try:
            result = await transport.send(_payload())
        finally:
            await transport.stop()

        assert result.success is True
        assert result.attempts == 3
        assert len(fake_loki.requests) == 3
        assert sleep.delays == [0.01, 0.02]
        assert metrics.registry.get_sample_value("logship_push_retries_total") == 2
        assert metrics.registry.get_sample_value(
            "logship_push_requests_total", {"status_code": "500"}
        ) == 2

    @pytest.mark.asyncio
    async def test_undecodable_error_body_is_still_retried(self, fake_loki, make_settings) -> None:
        fake_loki.respond_with(503, 204)
        fake_loki.error_body = b"\xff\xfe\xfa"
        sleep = _RecordingSleep()
        transport = LokiTransport(make_settings(fake_loki.base_url), sleep=sleep)
        await transport.start()
        try:
            result = await transport.send(_payload())
        finally:
            await transport.stop()

        assert result.success is True
        assert result.attempts == 2
        assert len(fake_loki.requests) == 2
        assert sleep.delays == [0.01]

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self, fake_loki, make_settings) -> None:
        fake_loki.respond_with(400)
        transport = LokiTransport(make_settings(fake_loki.base_url), sleep=_RecordingSleep())
        await transport.start()
        try:
            result = await transport.send(_payload())
        finally:
            await transport.stop()

        assert result.success is False
        assert result.retryable is False
        assert result.status == 400
        assert result.attempts == 1
        assert "scripted failure 400" in result.error_message
        assert len(fake_loki.requests) == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, fake_loki, make_settings) -> None:
        fake_loki.respond_with(503, 503, 503, 503)
        sleep = _RecordingSleep()
        transport = LokiTransport(make_settings(fake_loki.base_url), sleep=sleep)
        await transport.start()
        try:
            result = await transport.send(_payload())
        finally:
            await transport.stop()

        assert result.success is False
        assert result.retryable is True
        assert result.attempts == 4
        assert result.status == 503
        assert sleep.delays == [0.01, 0.02, 0.04]

    @pytest.mark.asyncio
    async def test_drop_policy_sends_once(self, fake_loki, make_settings) -> None:
        fake_loki.respond_with(500)
        settings = make_settings(fake_loki.base_url, retry={"failure_policy": "drop"})
        transport = LokiTransport(settings, sleep=_RecordingSleep())
        await transport.start()
        try:
            result = await transport.send(_payload())
        finally:
            await transport.stop()

        assert result.success is False
        assert result.attempts == 1
        assert len(fake_loki.requests) == 1

    @pytest.mark.asyncio
    async def test_connection_failure_is_retryable(self, make_settings) -> None:
        # Nothing listens on port 9 of localhost
        settings = make_settings("http://127.0.0.1:9", retry={"max_retries": 1})
        sleep = _RecordingSleep()
        transport = LokiTransport(settings, sleep=sleep)
        await transport.start()
        try:
            result = await transport.send(_payload())
        finally:
            await transport.stop()

        assert result.success is False
        assert result.retryable is True
        assert result.status is None
        assert result.attempts == 2
        assert transport.requests_sent == 2
