"""Day-partitioned append-only NDJSON writer."""

import json
import logging
import os
import threading

from console_relay.errors import PersistenceFault
from console_relay.events import Signal
from console_relay.models import LogEntry


def partition_name(day: str) -> str:
    return f"{day}.ndjson"


class PartitionWriter:
    """Appends each entry to ``<persist_dir>/<YYYY-MM-DD>.ndjson``.

    The day key is the first 10 characters of the entry timestamp. When it
    changes, the open file is flushed and closed before the next one is
    opened, so at most one handle is ever open. I/O failures are reported
    through ``on_error`` and never raised.
    """

    def __init__(self, persist_dir: str, logger: logging.Logger | None = None):
        self._dir = os.path.abspath(persist_dir)
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._file = None
        self._day: str | None = None
        self._closed = False
        self.on_error = Signal("persistence.error", self._logger)

    @property
    def persist_dir(self) -> str:
        return self._dir

    @property
    def current_day(self) -> str | None:
        return self._day

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, entry: LogEntry) -> bool:
        """Append one entry. Returns True if the line was written."""
        with self._lock:
            if self._closed:
                return False
            fault = self._write_locked(entry)
        if fault is None:
            return True
        self.on_error.emit(fault)
        return False

    def _write_locked(self, entry: LogEntry) -> PersistenceFault | None:
        try:
            day = entry.timestamp[:10]
            if self._file is None or day != self._day:
                self._rotate_locked(day)
            self._file.write(json.dumps(entry.to_dict()) + "\n")
            self._file.flush()
        except (OSError, TypeError, ValueError) as e:
            return PersistenceFault(f"Failed to persist entry: {e}")
        return None

    def _rotate_locked(self, day: str):
        """Close the current partition, then open the one for *day*."""
        os.makedirs(self._dir, exist_ok=True)
        self._close_file_locked()
        path = os.path.join(self._dir, partition_name(day))
        self._file = open(path, "a", encoding="utf-8")
        self._day = day
        self._logger.info("Opened partition %s", path)

    def _close_file_locked(self):
        if self._file is None:
            return
        f, self._file = self._file, None
        self._day = None
        try:
            f.flush()
        finally:
            f.close()

    def close(self):
        """Stop accepting entries and close the open partition. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._close_file_locked()
                return
            except OSError as e:
                fault = PersistenceFault(f"Failed to close partition: {e}")
        self.on_error.emit(fault)
