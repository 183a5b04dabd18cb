"""
Log shipper façade and background delivery worker.

Producers call `accept()` from any thread; a single asyncio worker task
seals expired generations, encodes sealed batches and pushes them to Loki
one generation at a time.

Features:
- Explicit start/shutdown lifecycle with a final flush
- Count and lifetime triggers, explicit flush
- Sequential delivery preserving per-stream ordering
- Drop or bounded requeue of batches whose retries are exhausted
"""

import asyncio
import threading
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import structlog

from ..config import ExhaustedPolicy, ShipperSettings
from ..models.record import LogLevel, LogRecord
from .buffer import GenerationBuffer, SealedBatch, SealReason
from .encoder import encode
from .exceptions import (
    CapacityError,
    ConfigError,
    DeliveryError,
    FlushTimeout,
    FormatError,
    LogShipException,
    ShipperStateError,
)
from .formatter import Formatter
from .metrics import MetricsCollector
from .router import StreamRouter
from .transport import DeliveryResult, LokiTransport

logger = structlog.get_logger(__name__)

ErrorHook = Callable[[LogShipException], None]


@dataclass
class _Pending:
    """A queued batch, or a marker when `batch` is None, plus flush waiters."""
    batch: Optional[SealedBatch]
    waiters: List["asyncio.Future[DeliveryResult]"] = field(default_factory=list)
    generation: int = -1


class ShipperStats:
    """Thread-safe counters describing shipper activity."""

    FIELDS = (
        "accepted",
        "filtered",
        "rejected",
        "format_errors",
        "batches_sealed",
        "batches_delivered",
        "batches_failed",
        "batches_requeued",
        "entries_delivered",
        "entries_dropped",
    )

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = {name: 0 for name in self.FIELDS}

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[name] += amount

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)


class Shipper:
    """
    Buffers log records and ships them to Loki in the background.

    Usage:
        shipper = Shipper(settings, formatter=LogfmtFormatter())
        await shipper.start()
        shipper.accept(LogRecord.create("INFO", "hello", user="bob"))
        await shipper.flush()
        await shipper.shutdown()
    """

    def __init__(
        self,
        settings: ShipperSettings,
        formatter: Optional[Formatter],
        transport: Optional[LokiTransport] = None,
        metrics: Optional[MetricsCollector] = None,
        on_error: Optional[ErrorHook] = None,
    ):
        if formatter is None:
            raise ConfigError("A formatter is required")
        if not isinstance(formatter, Formatter):
            raise ConfigError(
                "Formatter must provide format(record) -> str",
                details={"formatter": type(formatter).__name__},
            )

        self.settings = settings
        self.formatter = formatter
        self.min_level = LogLevel(settings.min_level)
        self.on_error = on_error
        self.metrics = metrics if metrics is not None else MetricsCollector()
        self.router = StreamRouter(
            settings.labels,
            merge_record_labels=settings.merge_record_labels,
            label_fields=settings.label_fields,
        )
        self.transport = transport if transport is not None else LokiTransport(settings, metrics=self.metrics)
        self.buffer = GenerationBuffer(
            max_logs=settings.buffer.max_logs,
            capacity_limit=settings.buffer.capacity_limit,
            overflow_policy=settings.buffer.overflow_policy,
            on_seal=self._enqueue,
        )

        self._queue: Deque[_Pending] = deque()
        # (retry_at, batch) in retry_at order; all share the same delay
        self._requeued: Deque[Tuple[float, SealedBatch]] = deque()
        self._inflight: Optional[_Pending] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wake: Optional[asyncio.Event] = None
        self._task: Optional["asyncio.Task[None]"] = None
        self._running = False
        self._closed = False
        self._stats = ShipperStats()

        logger.info(
            "Shipper initialized",
            loki_url=settings.push_url,
            labels=settings.labels,
            max_logs=settings.buffer.max_logs,
            max_log_lifetime_seconds=settings.buffer.max_log_lifetime_seconds,
            min_level=self.min_level.value,
            compress=settings.compress,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def __aenter__(self) -> "Shipper":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    async def start(self) -> None:
        """Open the transport and start the background worker."""
        if self._running:
            return
        if self._closed:
            raise ShipperStateError("Shipper has been shut down")

        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        await self.transport.start()

        self._running = True
        self._task = asyncio.create_task(self._run_worker_loop(), name="logship-worker")

        # Records accepted before start() still need the timer armed
        if self.buffer.entry_count or self._queue:
            self._wake.set()

        logger.info("Shipper started")

    def enabled(self, level: LogLevel) -> bool:
        """Whether records of this level pass the minimum level."""
        return LogLevel(level).severity >= self.min_level.severity

    def accept(self, record: LogRecord) -> bool:
        """
        Buffer one record. Safe to call from any thread.

        Returns False when the record is below the minimum level or was
        dropped because the formatter failed. Raises CapacityError only under
        the reject overflow policy.
        """
        if self._closed:
            raise ShipperStateError("Shipper has been shut down")
        if not self.enabled(record.level):
            self._stats.incr("filtered")
            return False

        labels = self.router.route(record)
        try:
            line = self.formatter.format(record)
        except Exception as e:
            error = FormatError(
                f"Failed to format record: {e}",
                details={"error_type": type(e).__name__, "level": record.level.value},
            )
            self._stats.incr("format_errors")
            self.metrics.record_format_error()
            logger.warning("Dropping record that failed to format", error=str(e))
            self._report(error)
            return False

        try:
            result = self.buffer.append(labels, record.timestamp_ns, line)
        except CapacityError:
            self._stats.incr("rejected")
            self.metrics.record_capacity_rejection()
            raise

        self._stats.incr("accepted")
        self.metrics.record_accept(self.buffer.entry_count)

        if result.first_in_generation:
            # Arm the lifetime timer for the new generation
            self._notify()
        return True

    async def flush(self, timeout: Optional[float] = None) -> DeliveryResult:
        """
        Seal the live generation and wait until it has been delivered.

        Also waits for generations sealed earlier. Returns immediately with
        an empty result when nothing is buffered or in flight.
        """
        return await self._flush(SealReason.FLUSH, timeout)

    def flush_threadsafe(self, timeout: Optional[float] = None) -> DeliveryResult:
        """Blocking flush for callers running outside the shipper's event loop."""
        if self._loop is None or not self._running:
            raise ShipperStateError("Shipper not started")
        future = asyncio.run_coroutine_threadsafe(self.flush(timeout), self._loop)
        return future.result()

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Flush remaining records, stop the worker and close the transport.

        Resources are released even when the final flush fails or times out;
        the failure is raised afterwards.
        """
        if self._closed and not self._running:
            return
        self._closed = True

        if not self._running:
            if self.buffer.entry_count == 0 and not self._queue:
                logger.info("Shipper closed before start")
                return
            await self._start_for_shutdown()

        error: Optional[LogShipException] = None
        try:
            await self._flush(SealReason.SHUTDOWN, timeout)
        except (DeliveryError, FlushTimeout) as e:
            error = e
        finally:
            await self._stop_worker()

        logger.info("Shipper stopped", **self._stats.snapshot())
        if error is not None:
            raise error

    def stats(self) -> Dict[str, int]:
        """Counters plus current buffer state."""
        snapshot = self._stats.snapshot()
        snapshot["buffered"] = self.buffer.entry_count
        snapshot["outstanding"] = self.buffer.outstanding
        snapshot["requests_sent"] = self.transport.requests_sent
        return snapshot

    async def _start_for_shutdown(self) -> None:
        self._closed = False
        try:
            await self.start()
        finally:
            self._closed = True

    async def _flush(self, reason: SealReason, timeout: Optional[float]) -> DeliveryResult:
        self._ensure_loop()
        timeout = self.settings.flush_timeout_seconds if timeout is None else timeout

        # Exhausted batches waiting for a retry go out ahead of the live one
        self._promote_requeued(force=True)

        batch = self.buffer.seal(reason)
        if batch is None and not self._queue and self._inflight is None:
            return DeliveryResult.empty(self.buffer.generation)

        assert self._loop is not None
        waiter: "asyncio.Future[DeliveryResult]" = self._loop.create_future()
        self._attach_waiter(batch.generation if batch else None, waiter)
        self._notify()

        try:
            result = await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            logger.error("Flush timed out", timeout_seconds=timeout, reason=reason.value)
            raise FlushTimeout(timeout) from None

        if not result.success:
            raise DeliveryError(
                f"Generation {result.generation} was not delivered: {result.error_message}",
                result,
            )
        return result

    def _ensure_loop(self) -> None:
        if not self._running or self._loop is None:
            raise ShipperStateError("Shipper not started")
        if asyncio.get_running_loop() is not self._loop:
            raise ShipperStateError("flush() must run on the shipper's event loop; use flush_threadsafe()")

    def _attach_waiter(self, generation: Optional[int], waiter: "asyncio.Future[DeliveryResult]") -> None:
        # Only the worker pops from the queue and it runs on this loop, so the
        # sealed batch is still queued here.
        if generation is not None:
            for pending in reversed(list(self._queue)):
                if pending.generation == generation:
                    pending.waiters.append(waiter)
                    return
        self._queue.append(_Pending(batch=None, waiters=[waiter], generation=self.buffer.generation))

    def _enqueue(self, batch: SealedBatch) -> None:
        """Seal hook; runs under the buffer lock, possibly on a producer thread."""
        self._append_pending(batch)
        self._stats.incr("batches_sealed")
        self.metrics.record_seal(batch.reason.value, batch.entry_count, self.buffer.entry_count)
        self._notify()

    def _append_pending(self, batch: SealedBatch) -> None:
        self._queue.append(_Pending(batch=batch, generation=batch.generation))

    def _promote_requeued(self, force: bool = False) -> None:
        """Move requeued batches whose retry time has come onto the delivery queue."""
        now = time.monotonic()
        while self._requeued and (force or self._requeued[0][0] <= now):
            _, batch = self._requeued.popleft()
            self._append_pending(batch)

    def _notify(self) -> None:
        loop, wake = self._loop, self._wake
        if loop is None or wake is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(wake.set)

    def _next_timeout(self) -> Optional[float]:
        deadline = self.buffer.deadline(self.settings.buffer.max_log_lifetime_seconds)
        timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
        if self._requeued:
            requeue_wait = max(0.0, self._requeued[0][0] - time.monotonic())
            timeout = requeue_wait if timeout is None else min(timeout, requeue_wait)
        return timeout

    async def _run_worker_loop(self) -> None:
        """Main worker loop: wait for a wake-up or the next deadline, then deliver."""
        assert self._wake is not None
        while self._running:
            try:
                await asyncio.wait_for(self._wake.wait(), self._next_timeout())
            except asyncio.TimeoutError:
                # Lifetime or requeue deadline reached
                pass
            self._wake.clear()

            try:
                self._promote_requeued()
                self.buffer.seal_expired(self.settings.buffer.max_log_lifetime_seconds)
                await self._drain()
            except Exception as e:
                logger.error("Worker loop error", error=str(e), exc_info=True)

    async def _drain(self) -> None:
        while self._queue:
            pending = self._queue.popleft()
            self._inflight = pending
            try:
                if pending.batch is None:
                    result = DeliveryResult.empty(pending.generation)
                else:
                    result = await self._deliver(pending.batch)
            finally:
                self._inflight = None

            for waiter in pending.waiters:
                if not waiter.done():
                    waiter.set_result(result)

    async def _deliver(self, batch: SealedBatch) -> DeliveryResult:
        """Encode and push one sealed batch; never raises for delivery failures."""
        started = time.monotonic()
        try:
            payload = encode(batch, compress=self.settings.compress)
            result = await self.transport.send(payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Unexpected delivery error", generation=batch.generation, error=str(e), exc_info=True)
            result = DeliveryResult(
                generation=batch.generation,
                success=False,
                entries=batch.entry_count,
                streams=batch.stream_count,
                attempts=0,
                error_message=str(e),
            )

        if result.success:
            self.buffer.release(batch.entry_count)
            self._stats.incr("batches_delivered")
            self._stats.incr("entries_delivered", result.entries)
            self.metrics.record_delivery(result.entries)
            logger.info(
                "Batch delivered",
                generation=batch.generation,
                reason=batch.reason.value,
                entries_count=result.entries,
                streams_count=result.streams,
                attempts=result.attempts,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
            return result

        self._handle_failure(batch, result)
        return result

    def _handle_failure(self, batch: SealedBatch, result: DeliveryResult) -> None:
        retry = self.settings.retry
        requeue = (
            result.retryable
            and retry.on_exhausted is ExhaustedPolicy.REQUEUE
            and batch.requeues < retry.max_requeues
        )

        self._stats.incr("batches_failed")
        if requeue:
            retry_at = time.monotonic() + retry.backoff_max_seconds
            self._requeued.append((retry_at, replace(batch, requeues=batch.requeues + 1)))
            self._stats.incr("batches_requeued")
            self.metrics.record_failure("requeued")
            logger.warning(
                "Batch requeued after exhausted retries",
                generation=batch.generation,
                requeues=batch.requeues + 1,
                max_requeues=retry.max_requeues,
            )
            message = f"Generation {batch.generation} requeued: {result.error_message}"
        else:
            self.buffer.release(batch.entry_count)
            self._stats.incr("entries_dropped", batch.entry_count)
            self.metrics.record_failure("dropped" if result.retryable else "rejected")
            logger.error(
                "Dropping batch",
                generation=batch.generation,
                entries_count=batch.entry_count,
                status=result.status,
                error=result.error_message,
            )
            message = f"Generation {batch.generation} dropped: {result.error_message}"

        self._report(DeliveryError(message, result))

    def _report(self, error: LogShipException) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception as e:
            logger.error("Error hook failed", error=str(e), hook_error_type=type(e).__name__)

    async def _stop_worker(self) -> None:
        self._running = False
        inflight = self._inflight
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        abandoned = list(self._queue)
        if inflight is not None:
            abandoned.insert(0, inflight)

        batches = [p.batch for p in abandoned if p.batch is not None] + [batch for _, batch in self._requeued]
        if batches:
            dropped = sum(b.entry_count for b in batches)
            self._stats.incr("entries_dropped", dropped)
            logger.error("Discarding undelivered batches at shutdown", batches=len(batches), entries_count=dropped)

        for pending in abandoned:
            for waiter in pending.waiters:
                if not waiter.done():
                    waiter.set_exception(ShipperStateError("Shipper shut down before delivery"))
        self._queue.clear()
        self._requeued.clear()

        await self.transport.stop()
