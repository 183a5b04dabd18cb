"""
Async HTTP transport for pushing payloads to Grafana Loki.

Features:
- One POST per attempt with static headers and optional gzip encoding
- Response classification into success, retryable and permanent failures
- Bounded exponential backoff
- Optional mutual TLS and trust store override
"""

import asyncio
import ssl
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Union

import aiohttp
import structlog

from ..config import FailurePolicy, ShipperSettings, TLSSettings
from .encoder import PushPayload
from .exceptions import (
    ConfigError,
    PermanentTransportError,
    RetryableTransportError,
    ShipperStateError,
    TransportError,
)
from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)

# Status codes worth retrying besides 5xx
RETRYABLE_STATUS = frozenset({408, 429})

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class DeliveryResult:
    """Result of delivering one generation."""
    generation: int
    success: bool
    entries: int
    streams: int
    attempts: int
    status: Optional[int] = None
    error_message: Optional[str] = None
    retryable: bool = False

    @classmethod
    def empty(cls, generation: int) -> "DeliveryResult":
        """Result for a flush that had nothing to send."""
        return cls(generation=generation, success=True, entries=0, streams=0, attempts=0)


def classify_status(status: int, body: str = "") -> Optional[TransportError]:
    """Map an HTTP status to None (success) or the error it represents."""
    if 200 <= status < 300:
        return None
    message = f"HTTP {status}: {body[:200]}" if body else f"HTTP {status}"
    if status >= 500 or status in RETRYABLE_STATUS:
        return RetryableTransportError(message, status=status)
    return PermanentTransportError(message, status=status)


def build_ssl_context(tls: TLSSettings) -> Optional[ssl.SSLContext]:
    """
    Build the SSL context for push requests.

    Returns None when no TLS option is set, so aiohttp uses its default
    verification.
    """
    if not tls.is_configured:
        return None

    try:
        context = ssl.create_default_context(
            cafile=str(tls.ca_bundle_path) if tls.ca_bundle_path else None
        )
        if not tls.verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        if tls.client_cert_path is not None:
            context.load_cert_chain(
                certfile=str(tls.client_cert_path),
                keyfile=str(tls.client_key_path) if tls.client_key_path else None,
            )
    except (OSError, ssl.SSLError) as e:
        raise ConfigError("Failed to load TLS material", details={"error": str(e)}) from e

    logger.info(
        "TLS context built",
        client_identity=tls.client_cert_path is not None,
        ca_bundle=str(tls.ca_bundle_path) if tls.ca_bundle_path else None,
        verify=tls.verify,
    )
    return context


class LokiTransport:
    """
    Sends push payloads to Loki with retry logic.

    Handles:
    - HTTP session lifecycle
    - Response classification
    - Retry with exponential backoff
    """

    def __init__(
        self,
        settings: ShipperSettings,
        ssl_context: Optional[ssl.SSLContext] = None,
        metrics: Optional[MetricsCollector] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings
        self.ssl_context = ssl_context if ssl_context is not None else build_ssl_context(settings.tls)
        self.metrics = metrics
        self._sleep = sleep
        self.session: Optional[aiohttp.ClientSession] = None
        self.requests_sent = 0

        self._static_headers: Dict[str, str] = {"User-Agent": settings.user_agent}
        self._static_headers.update(settings.headers)

        logger.info("Loki transport initialized", loki_url=settings.push_url)

    async def start(self) -> None:
        """Open the HTTP session."""
        if self.session is not None:
            return

        ssl_option: Union[ssl.SSLContext, bool] = self.ssl_context if self.ssl_context is not None else True
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds),
            connector=aiohttp.TCPConnector(ssl=ssl_option),
        )
        logger.debug("Loki transport started")

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

        logger.debug("Loki transport stopped")

    async def send(self, payload: PushPayload) -> DeliveryResult:
        """
        Deliver a payload, retrying transient failures.

        Never raises for delivery failures; the outcome is in the result.
        """
        retry = self.settings.retry
        max_retries = retry.max_retries if retry.failure_policy is FailurePolicy.RETRY else 0
        last_error: Optional[TransportError] = None
        attempts = 0

        for attempt in range(max_retries + 1):
            attempts += 1
            try:
                status = await self._post(payload)
            except PermanentTransportError as e:
                logger.error(
                    "Loki rejected batch",
                    generation=payload.generation,
                    status=e.status,
                    error=str(e),
                )
                return self._failed(payload, attempts, e)
            except RetryableTransportError as e:
                last_error = e
                if attempt < max_retries:
                    backoff_seconds = retry.backoff_for(attempt)
                    logger.warning(
                        "Loki push attempt failed",
                        generation=payload.generation,
                        attempt=attempts,
                        max_attempts=max_retries + 1,
                        backoff_seconds=backoff_seconds,
                        error=str(e),
                    )
                    if self.metrics:
                        self.metrics.record_retry()
                    await self._sleep(backoff_seconds)
                continue

            logger.debug(
                "Successfully sent to Loki",
                generation=payload.generation,
                streams_count=payload.stream_count,
                entries_count=payload.entry_count,
                attempts=attempts,
            )
            return DeliveryResult(
                generation=payload.generation,
                success=True,
                entries=payload.entry_count,
                streams=payload.stream_count,
                attempts=attempts,
                status=status,
            )

        logger.error(
            "Max retries exceeded",
            generation=payload.generation,
            attempts=attempts,
            entries_count=payload.entry_count,
            error=str(last_error),
        )
        return self._failed(payload, attempts, last_error)

    async def _post(self, payload: PushPayload) -> int:
        """Issue one POST; returns the status or raises a TransportError."""
        if not self.session:
            raise ShipperStateError("Transport not started")

        headers = dict(self._static_headers)
        headers.update(payload.headers)

        self.requests_sent += 1
        started = time.monotonic()
        status: Optional[int] = None
        try:
            async with self.session.post(
                self.settings.push_url,
                data=payload.body,
                headers=headers,
            ) as response:
                status = response.status
                body = "" if 200 <= status < 300 else await response.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RetryableTransportError(f"{type(e).__name__}: {e}") from e
        finally:
            if self.metrics:
                self.metrics.record_push(status, time.monotonic() - started)

        error = classify_status(status, body)
        if error is not None:
            raise error
        return status

    @staticmethod
    def _failed(payload: PushPayload, attempts: int, error: Optional[TransportError]) -> DeliveryResult:
        return DeliveryResult(
            generation=payload.generation,
            success=False,
            entries=payload.entry_count,
            streams=payload.stream_count,
            attempts=attempts,
            status=error.status if error else None,
            error_message=str(error) if error else None,
            retryable=bool(error and error.retryable),
        )
