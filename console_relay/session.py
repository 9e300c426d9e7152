"""Reconnecting DevTools session that turns console/log events into LogEntry records."""

import logging
import threading
from enum import Enum

from console_relay.errors import ConnectionFault, NoTargetFound, NormalizationFault, RelayError
from console_relay.events import Signal
from console_relay.models import SessionStatus, Target
from console_relay.normalizer import format_console_event, format_log_entry

RETRY_DELAY = 1.5  # seconds between connection attempts

CONSOLE_EVENT = "Runtime.consoleAPICalled"
LOG_EVENT = "Log.entryAdded"


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


def select_target(targets: list[dict], match: str | None = None) -> dict | None:
    """Pick the target to attach to.

    With *match*: first target whose URL, then whose title, contains it
    (case-insensitive), falling back to the first target. Without: the first
    ``page`` target, falling back to the first target.
    """
    if not targets:
        return None
    if not match:
        return next((t for t in targets if t.get("type") == "page"), targets[0])
    needle = match.lower()
    for key in ("url", "title"):
        for target in targets:
            value = target.get(key)
            if value and needle in value.lower():
                return target
    return targets[0]


class SessionManager:
    """Keeps one live connection to a debugging target, reconnecting forever.

    *client* provides ``host``, ``port``, ``list_targets()``, ``version()``
    and ``connect(target)``; see ``console_relay.cdp.CDPClient``.

    Signals:
        on_entry(LogEntry), on_connected(Target), on_disconnected(),
        on_error(RelayError)
    """

    def __init__(self, client, match: str | None = None, retry_delay: float = RETRY_DELAY,
                 logger: logging.Logger | None = None):
        self._client = client
        self._match = match
        self._retry_delay = retry_delay
        self._logger = logger or logging.getLogger(__name__)

        self.on_entry = Signal("session.entry", self._logger)
        self.on_connected = Signal("session.connected", self._logger)
        self.on_disconnected = Signal("session.disconnected", self._logger)
        self.on_error = Signal("session.error", self._logger)

        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._lost = threading.Event()
        self._connection = None
        self._thread: threading.Thread | None = None
        self._started = False
        self._state = SessionState.IDLE
        self._status = SessionStatus(host=client.host, port=client.port)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._status

    def get_status(self) -> dict:
        return self._status.to_dict()

    def start(self) -> None:
        """Run the supervising loop on a daemon thread. Idempotent."""
        with self._lock:
            if self._started or self._closed.is_set():
                return
            self._started = True
            self._thread = threading.Thread(target=self._run_loop, name="cdp-session", daemon=True)
        self._thread.start()

    def run(self) -> None:
        """Run the supervising loop in the calling thread until ``close()``."""
        with self._lock:
            if self._started:
                return
            self._started = True
        self._run_loop()

    def _run_loop(self):
        while not self._closed.is_set():
            try:
                self._connect_once()
            except Exception as e:
                fault = e if isinstance(e, RelayError) else ConnectionFault(f"Connection attempt failed: {e}")
                self._logger.debug("Connection attempt failed: %s", fault)
                self.on_error.emit(fault)
            else:
                self._lost.wait()
                self._handle_disconnect()

            if self._closed.is_set() or not self._backoff():
                break
        self._state = SessionState.CLOSED

    def _backoff(self) -> bool:
        """Wait out the retry delay. Returns False if closed meanwhile."""
        return not self._closed.wait(self._retry_delay)

    def _connect_once(self):
        self._state = SessionState.CONNECTING
        targets = self._client.list_targets()
        raw_target = select_target(targets, self._match)
        if raw_target is None:
            raise NoTargetFound("No matching Chrome target found")

        try:
            browser_version = (self._client.version() or {}).get("Browser")
        except Exception as e:
            self._logger.debug("Version query failed: %s", e)
            browser_version = None

        target = Target.from_dict(raw_target)
        self._lost.clear()
        connection = self._client.connect(raw_target)
        connection.on(CONSOLE_EVENT, self._handle_console_event)
        connection.on(LOG_EVENT, self._handle_log_event)
        connection.on_disconnect(self._lost.set)

        with self._lock:
            if self._closed.is_set():
                self._connection = None
            else:
                self._connection = connection
        if self._connection is None:
            connection.close()
            raise ConnectionFault("Session closed while connecting")

        try:
            connection.call("Runtime.enable")
            connection.call("Log.enable")
        except Exception:
            with self._lock:
                self._connection = None
            connection.close()
            raise

        self._status = SessionStatus(
            host=self._client.host,
            port=self._client.port,
            connected=True,
            target=target,
            browser_version=browser_version,
        )
        self._state = SessionState.CONNECTED
        self.on_connected.emit(target)
        self._logger.info("Connected to %s", target.url)

    def _handle_disconnect(self):
        with self._lock:
            self._connection = None
        self._status = SessionStatus(host=self._client.host, port=self._client.port)
        if not self._closed.is_set():
            self._state = SessionState.DISCONNECTED
        self._logger.info("Disconnected")
        self.on_disconnected.emit()

    def _handle_console_event(self, params: dict):
        try:
            entry = format_console_event(params)
        except Exception as e:
            self.on_error.emit(NormalizationFault(f"{CONSOLE_EVENT}: {e}"))
            return
        self.on_entry.emit(entry)

    def _handle_log_event(self, params: dict):
        try:
            entry = format_log_entry(params["entry"])
        except Exception as e:
            self.on_error.emit(NormalizationFault(f"{LOG_EVENT}: {e}"))
            return
        self.on_entry.emit(entry)

    def close(self, timeout: float = 5.0) -> None:
        """Stop reconnecting and drop the active connection. Idempotent."""
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
            self._lost.set()
            connection, self._connection = self._connection, None
            thread = self._thread

        if connection is not None:
            try:
                connection.close()
            except Exception as e:
                self.on_error.emit(ConnectionFault(f"Error closing connection: {e}"))

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._status = SessionStatus(host=self._client.host, port=self._client.port)
        self._state = SessionState.CLOSED
