"""Bounded in-memory ring buffer with filtered queries and live subscribers."""

import logging
import re
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Callable

from console_relay.events import Signal
from console_relay.models import BufferStats, LogEntry
from console_relay.persistence import PartitionWriter

DEFAULT_CAPACITY = 2000


def parse_iso_millis(value: str) -> float | None:
    """Parse an ISO-8601 date/time to epoch milliseconds. Naive means UTC."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp() * 1000


def parse_since(value) -> float | None:
    """Resolve a ``since`` filter to epoch milliseconds.

    Accepts a number (already epoch milliseconds), a numeric string, or a
    date/time string. Anything else disables the filter.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return parse_iso_millis(value)
    return None


def parse_levels(level) -> set[str] | None:
    if not level:
        return None
    levels = {part.strip() for part in str(level).split(",") if part.strip()}
    return levels or None


class RingBuffer:
    """Fixed-capacity FIFO of LogEntry records.

    ``add`` is serialized by an ingest lock so subscribers and the optional
    persistence writer see entries one at a time in arrival order. Readers
    take a snapshot under the storage lock.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        writer: PartitionWriter | None = None,
        logger: logging.Logger | None = None,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._writer = writer
        self._logger = logger or logging.getLogger(__name__)
        self._entries: deque[LogEntry] = deque()
        self._lock = threading.Lock()
        self._ingest_lock = threading.RLock()
        self._total_received = 0
        self._closed = False
        self._subscribers = Signal("buffer.entry", self._logger)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def writer(self) -> PartitionWriter | None:
        return self._writer

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def add(self, entry: LogEntry | None) -> None:
        if entry is None:
            return
        with self._ingest_lock:
            if self._closed:
                self._logger.debug("Buffer closed, dropping entry")
                return
            with self._lock:
                self._entries.append(entry)
                if len(self._entries) > self._capacity:
                    self._entries.popleft()
                self._total_received += 1

            self._subscribers.emit(entry)

            if self._writer is not None:
                self._writer.write(entry)

    def query(self, n: int | None = None, level=None, match: str | None = None, since=None) -> list[LogEntry]:
        """Return matching entries, oldest first.

        Filters are ANDed. With *n*, only the *n* most recent matches are
        returned. Raises ``re.error`` for an invalid *match* pattern.
        """
        since_ms = parse_since(since)
        regex = re.compile(match, re.IGNORECASE) if match else None
        levels = parse_levels(level)

        with self._lock:
            snapshot = list(self._entries)

        matched: list[LogEntry] = []
        for entry in reversed(snapshot):
            if levels is not None and entry.level not in levels:
                continue
            if regex is not None and not regex.search(entry.text or ""):
                continue
            if since_ms is not None:
                entry_ms = parse_iso_millis(entry.timestamp)
                if entry_ms is not None and entry_ms < since_ms:
                    continue
            matched.append(entry)
            if n and len(matched) >= n:
                break

        matched.reverse()
        return matched

    def get_stats(self) -> BufferStats:
        with self._lock:
            oldest = self._entries[0].timestamp if self._entries else None
            newest = self._entries[-1].timestamp if self._entries else None
            return BufferStats(
                size=len(self._entries),
                capacity=self._capacity,
                total_received=self._total_received,
                oldest_timestamp=oldest,
                newest_timestamp=newest,
                persist_dir=self._writer.persist_dir if self._writer else None,
            )

    def subscribe(self, callback: Callable[[LogEntry], None]) -> Callable[[], None]:
        """Register a live listener. Returns a handle that unsubscribes it."""
        return self._subscribers.connect(callback)

    def unsubscribe(self, callback: Callable[[LogEntry], None]) -> bool:
        return self._subscribers.disconnect(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def close(self) -> None:
        """Stop persistence, close the open partition, then mark closed."""
        with self._ingest_lock:
            if self._closed:
                return
            if self._writer is not None:
                self._writer.close()
            self._closed = True
        self._logger.info("Buffer closed (%d entries received)", self._total_received)
