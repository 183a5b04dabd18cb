"""
In-memory generation buffer.

Producers append formatted lines into the live generation while the
background worker delivers previously sealed generations.

Features:
- Per-label-set streams with strictly increasing timestamps
- Count trigger evaluated inside the append critical section
- Atomic swap of the live generation for a fresh one on seal
- Capacity ceiling over live and undelivered entries
"""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..models.labels import LabelSet
from .exceptions import CapacityError

Entry = Tuple[int, str]


class SealReason(str, Enum):
    """Why a generation was sealed."""

    COUNT = "count"
    LIFETIME = "lifetime"
    CAPACITY = "capacity"
    FLUSH = "flush"
    SHUTDOWN = "shutdown"


class OverflowPolicy(str, Enum):
    """What `append` does when the capacity ceiling is reached."""

    REJECT = "reject"
    FLUSH = "flush"


class Stream:
    """Ordered entries of one label set within a generation."""

    __slots__ = ("labels", "entries", "last_timestamp")

    def __init__(self, labels: LabelSet, last_timestamp: Optional[int] = None) -> None:
        self.labels = labels
        self.entries: List[Entry] = []
        self.last_timestamp = last_timestamp

    def append(self, timestamp_ns: int, line: str) -> int:
        """
        Append an entry and return the timestamp actually stored.

        A timestamp not greater than the previous one is moved to
        previous + 1ns.
        """
        if self.last_timestamp is not None and timestamp_ns <= self.last_timestamp:
            timestamp_ns = self.last_timestamp + 1
        self.entries.append((timestamp_ns, line))
        self.last_timestamp = timestamp_ns
        return timestamp_ns

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class SealedBatch:
    """Immutable snapshot of exactly one generation."""
    generation: int
    streams: Tuple[Tuple[LabelSet, Sequence[Entry]], ...]
    entry_count: int
    reason: SealReason
    sealed_at: float
    requeues: int = 0

    @property
    def stream_count(self) -> int:
        return len(self.streams)


class Buffer:
    """
    One generation of buffered entries.

    `entry_count` always equals the sum of entries across `streams`.
    """

    def __init__(self, generation: int) -> None:
        self.generation = generation
        self.streams: Dict[LabelSet, Stream] = {}
        self.entry_count = 0
        self.first_entry_time: Optional[float] = None

    def append(self, labels: LabelSet, timestamp_ns: int, line: str, last_timestamp: Optional[int] = None) -> int:
        stream = self.streams.get(labels)
        if stream is None:
            stream = Stream(labels, last_timestamp)
            self.streams[labels] = stream

        stored = stream.append(timestamp_ns, line)
        self.entry_count += 1
        if self.first_entry_time is None:
            self.first_entry_time = time.monotonic()
        return stored

    def is_empty(self) -> bool:
        return self.entry_count == 0

    def freeze(self, reason: SealReason) -> SealedBatch:
        """
        Seal this generation.

        Entry lists are handed over without copying; the buffer must already
        be detached from producers.
        """
        return SealedBatch(
            generation=self.generation,
            streams=tuple(
                (stream.labels, stream.entries)
                for stream in self.streams.values()
            ),
            entry_count=self.entry_count,
            reason=reason,
            sealed_at=time.time(),
        )


@dataclass
class AppendResult:
    """Outcome of appending one entry to the live generation."""
    timestamp_ns: int
    first_in_generation: bool
    sealed: List[SealedBatch] = field(default_factory=list)


SealHandler = Callable[[SealedBatch], None]


class GenerationBuffer:
    """
    Holder of the live generation.

    The lock covers only the append, the reference swap and the hand-off of
    the detached generation to `on_seal`, so sealed batches reach the
    delivery queue in generation order. `on_seal` must not block.
    """

    def __init__(
        self,
        max_logs: int,
        capacity_limit: Optional[int] = None,
        overflow_policy: OverflowPolicy = OverflowPolicy.FLUSH,
        on_seal: Optional[SealHandler] = None,
    ) -> None:
        self.max_logs = max_logs
        self.capacity_limit = capacity_limit
        self.overflow_policy = OverflowPolicy(overflow_policy)
        self.on_seal = on_seal

        self._lock = threading.Lock()
        self._live = Buffer(generation=0)
        # Last stored timestamp per label set, for the live and last sealed generations
        self._last_timestamps: Dict[LabelSet, int] = {}
        # Entries sealed but not yet resolved by the delivery pipeline
        self._outstanding = 0

    @property
    def entry_count(self) -> int:
        return self._live.entry_count

    @property
    def generation(self) -> int:
        return self._live.generation

    @property
    def outstanding(self) -> int:
        return self._outstanding

    def append(self, labels: LabelSet, timestamp_ns: int, line: str) -> AppendResult:
        """
        Append one formatted line to the live generation.

        Raises CapacityError when the ceiling is reached and the overflow
        policy is REJECT. Sealed batches are returned in generation order:
        the previous generation when the ceiling was hit under FLUSH, and
        this one when the append filled it (count trigger).
        """
        sealed: List[SealedBatch] = []

        with self._lock:
            if self.capacity_limit is not None and self._buffered() >= self.capacity_limit:
                if self.overflow_policy is OverflowPolicy.REJECT:
                    raise CapacityError(
                        message=f"Buffer holds {self._buffered()} undelivered entries",
                        capacity=self.capacity_limit,
                    )
                if not self._live.is_empty():
                    sealed.append(self._seal_locked(SealReason.CAPACITY))

            live = self._live
            first = live.is_empty()
            stored = live.append(labels, timestamp_ns, line, self._last_timestamps.get(labels))
            self._last_timestamps[labels] = stored

            if live.entry_count >= self.max_logs:
                sealed.append(self._seal_locked(SealReason.COUNT))

        return AppendResult(timestamp_ns=stored, first_in_generation=first, sealed=sealed)

    def seal(self, reason: SealReason) -> Optional[SealedBatch]:
        """Swap out the live generation. Sealing an empty generation is a no-op."""
        with self._lock:
            if self._live.is_empty():
                return None
            return self._seal_locked(reason)

    def seal_expired(self, max_lifetime_seconds: float, now: Optional[float] = None) -> Optional[SealedBatch]:
        """Seal the live generation if its first entry is older than the lifetime."""
        now = time.monotonic() if now is None else now
        with self._lock:
            first = self._live.first_entry_time
            if first is None or now - first < max_lifetime_seconds:
                return None
            return self._seal_locked(SealReason.LIFETIME)

    def deadline(self, max_lifetime_seconds: float) -> Optional[float]:
        """Monotonic time at which the live generation expires, if it has entries."""
        first = self._live.first_entry_time
        if first is None:
            return None
        return first + max_lifetime_seconds

    def release(self, entries: int) -> None:
        """Mark sealed entries as resolved (delivered or dropped)."""
        with self._lock:
            self._outstanding = max(0, self._outstanding - entries)

    def _buffered(self) -> int:
        return self._live.entry_count + self._outstanding

    def _seal_locked(self, reason: SealReason) -> SealedBatch:
        detached = self._live
        self._live = Buffer(generation=detached.generation + 1)
        self._outstanding += detached.entry_count
        # Only streams of the generation just sealed carry their last timestamp
        # forward; older label sets are forgotten.
        self._last_timestamps = {
            labels: stream.last_timestamp
            for labels, stream in detached.streams.items()
            if stream.last_timestamp is not None
        }

        batch = detached.freeze(reason)
        if self.on_seal is not None:
            self.on_seal(batch)
        return batch
