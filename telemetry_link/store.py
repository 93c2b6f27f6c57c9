"""In-memory recording of timestamped samples."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Union

from telemetry_link.commands import Command
from telemetry_link.errors import DuplicateField
from telemetry_link.samples import Kind, Sample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Record:
    """Samples captured at one instant, ``elapsed_ms`` after session start."""

    elapsed_ms: int
    samples: tuple[Sample, ...] = ()


@dataclass(frozen=True)
class Comment:
    """Free-form annotation (issued command or operator note)."""

    text: str


Entry = Union[Record, Comment]


def _now_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


def check_unique(samples: Iterable[Sample]) -> None:
    """Raise DuplicateField if two samples share a discriminant."""
    seen: set[Kind] = set()
    for sample in samples:
        if sample.kind in seen:
            raise DuplicateField(sample.kind.name)
        seen.add(sample.kind)


class PendingQueue:
    """
    Entries waiting to be sent by a Collector.

    Appended to from any thread; the Collector takes a snapshot, sends it and
    then discards exactly the entries it sent.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[Entry] = []

    def push(self, entry: Entry) -> None:
        with self._lock:
            self._entries.append(entry)

    def snapshot(self) -> list[Entry]:
        with self._lock:
            return list(self._entries)

    def discard(self, count: int) -> None:
        """Drop the ``count`` oldest entries (the ones just sent)."""
        with self._lock:
            del self._entries[:count]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass
class _State:
    entries: list[Entry] = field(default_factory=list)
    commands: list[Command] = field(default_factory=list)
    start_ms: int | None = None
    right_total: float = 0.0
    left_total: float = 0.0
    armed: bool = False


class Store:
    """
    Recorded entries of one session, plus running distance totals.

    All methods are safe to call from several threads. When a PendingQueue is
    attached (see :meth:`attach_queue`), every appended record is also pushed
    to it.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """
        Initialize an empty store.

        Args:
            clock: Wall-clock source in seconds (``time.time`` by default)
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._state = _State()
        self._queue: PendingQueue | None = None

    # -------------------------------------------------------------------------
    # Collector hook
    # -------------------------------------------------------------------------

    def attach_queue(self, queue: PendingQueue) -> None:
        with self._lock:
            self._queue = queue

    def detach_queue(self) -> None:
        with self._lock:
            self._queue = None

    # -------------------------------------------------------------------------
    # Appending
    # -------------------------------------------------------------------------

    def append_record(self, samples: Iterable[Sample]) -> Record:
        """
        Append one timestamped group of samples.

        ``DRIVEN_DISTANCE`` samples are shifted by the running totals so the
        stored value is an odometer reading rather than a per-tick delta.

        Returns:
            The record as stored

        Raises:
            DuplicateField: two samples share a discriminant
        """
        samples = list(samples)
        check_unique(samples)

        with self._lock:
            state = self._state
            now = _now_ms(self._clock)
            if state.start_ms is None:
                state.start_ms = now
                logger.debug("Session started at %d", now)

            right_total, left_total = state.right_total, state.left_total
            stored = tuple(
                Sample(
                    Kind.DRIVEN_DISTANCE,
                    (right_total + s.values[0], left_total + s.values[1]),
                )
                if s.kind is Kind.DRIVEN_DISTANCE
                else s
                for s in samples
            )
            record = Record(now - state.start_ms, stored)
            state.entries.append(record)
            if self._queue is not None:
                self._queue.push(record)
        return record

    def append_comment(self, text: str) -> Comment:
        comment = Comment(str(text))
        with self._lock:
            self._state.entries.append(comment)
        return comment

    def add_command(self, command: Command) -> None:
        """Remember an issued command and note it in the log."""
        with self._lock:
            self._state.commands.append(command)
            self._state.entries.append(Comment(str(command)))

    def replay(self, entry: Entry) -> None:
        """
        Insert an entry received from a remote Collector.

        The entry is stored verbatim; its distances are already cumulative.

        Raises:
            DuplicateField: a record carries two samples of one kind
        """
        if isinstance(entry, Record):
            check_unique(entry.samples)
        with self._lock:
            state = self._state
            if isinstance(entry, Record) and state.start_ms is None:
                state.start_ms = _now_ms(self._clock) - entry.elapsed_ms
            state.entries.append(entry)

    # -------------------------------------------------------------------------
    # Distance accumulator
    # -------------------------------------------------------------------------

    def update_totals(self, right_delta: float, left_delta: float) -> None:
        """
        Add driven distance to the running totals.

        The first call after construction or :meth:`clear` only arms the
        accumulator, so distance already folded into an initial sample is not
        counted twice.
        """
        with self._lock:
            state = self._state
            if not state.armed:
                state.armed = True
                return
            state.right_total += right_delta
            state.left_total += left_delta

    @property
    def totals(self) -> tuple[float, float]:
        """Running (right, left) distance totals."""
        with self._lock:
            return self._state.right_total, self._state.left_total

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def start_time(self) -> int | None:
        """Session start in epoch milliseconds, or None before the first record."""
        with self._lock:
            return self._state.start_ms

    def elapsed(self) -> int | None:
        """Milliseconds since session start, or None if nothing was recorded."""
        with self._lock:
            start = self._state.start_ms
        if start is None:
            return None
        return _now_ms(self._clock) - start

    def session_name(self) -> str:
        """File name hint built from the issued commands."""
        with self._lock:
            commands = list(self._state.commands)
        return "data_" + "_".join(str(c) for c in commands).replace(" ", "")

    def snapshot(self) -> list[Entry]:
        """Copy of the current entries, oldest first."""
        with self._lock:
            return list(self._state.entries)

    def entry(self, index: int) -> Entry:
        with self._lock:
            return self._state.entries[index]

    def __len__(self) -> int:
        with self._lock:
            return len(self._state.entries)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def clear(self) -> None:
        """Reset to an empty, unstarted session."""
        with self._lock:
            self._state = _State()

    def drain_prefix(self, count: int) -> None:
        """Drop the ``count`` oldest entries; no-op unless fewer than all."""
        with self._lock:
            entries = self._state.entries
            if count < len(entries):
                del entries[:count]
