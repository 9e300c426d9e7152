"""Minimal DevTools protocol client: HTTP discovery plus one websocket session."""

import itertools
import json
import logging
import threading
from typing import Callable

import requests
import websocket

from console_relay.errors import ConnectionFault

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9222
DEFAULT_TIMEOUT = 5.0


class CDPClient:
    """Talks to the ``/json`` HTTP endpoints of a remote debugging port."""

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT,
                 timeout: float = DEFAULT_TIMEOUT, logger: logging.Logger | None = None):
        self.host = host
        self.port = port
        self._timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def _get_json(self, path: str):
        url = self.base_url + path
        try:
            resp = requests.get(url, timeout=self._timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as e:
            raise ConnectionFault(f"GET {url} failed: {e}") from e

    def list_targets(self) -> list[dict]:
        targets = self._get_json("/json/list")
        if not isinstance(targets, list):
            raise ConnectionFault(f"Unexpected target list from {self.base_url}")
        return targets

    def version(self) -> dict:
        return self._get_json("/json/version")

    def connect(self, target: dict) -> "CDPConnection":
        ws_url = target.get("webSocketDebuggerUrl")
        if not ws_url:
            raise ConnectionFault(f"Target {target.get('id')} has no debugger URL (already attached?)")
        return CDPConnection(ws_url, timeout=self._timeout, logger=self._logger)


class CDPConnection:
    """A websocket session bound to one target.

    A daemon reader thread dispatches command responses to waiting callers
    and protocol events to callbacks registered with ``on``. When the socket
    drops, pending calls fail and ``on_disconnect`` callbacks fire once.
    """

    def __init__(self, ws_url: str, timeout: float = DEFAULT_TIMEOUT,
                 logger: logging.Logger | None = None, ws_factory=None):
        self._url = ws_url
        self._timeout = timeout
        self._logger = logger or logging.getLogger(__name__)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._pending: dict[int, dict] = {}
        self._listeners: dict[str, list[Callable]] = {}
        self._disconnect_callbacks: list[Callable] = []
        self._closed = threading.Event()

        factory = ws_factory or websocket.create_connection
        try:
            self._ws = factory(ws_url, timeout=timeout, suppress_origin=True)
        except (websocket.WebSocketException, OSError) as e:
            raise ConnectionFault(f"Websocket connect to {ws_url} failed: {e}") from e
        # Reads block until data arrives or the socket is closed.
        self._ws.settimeout(None)

        self._reader = threading.Thread(target=self._read_loop, name="cdp-reader", daemon=True)
        self._reader.start()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def on(self, method: str, callback: Callable[[dict], None]):
        with self._lock:
            self._listeners.setdefault(method, []).append(callback)

    def on_disconnect(self, callback: Callable[[], None]):
        with self._lock:
            already_closed = self._closed.is_set()
            if not already_closed:
                self._disconnect_callbacks.append(callback)
        if already_closed:
            callback()

    def call(self, method: str, params: dict | None = None, timeout: float | None = None) -> dict:
        """Send a command and wait for its result."""
        if self._closed.is_set():
            raise ConnectionFault(f"{method}: connection closed")
        msg_id = next(self._ids)
        slot = {"event": threading.Event(), "response": None}
        with self._lock:
            self._pending[msg_id] = slot
        payload = {"id": msg_id, "method": method, "params": params or {}}
        try:
            self._ws.send(json.dumps(payload))
        except (websocket.WebSocketException, OSError) as e:
            with self._lock:
                self._pending.pop(msg_id, None)
            raise ConnectionFault(f"{method}: send failed: {e}") from e

        if not slot["event"].wait(timeout or self._timeout):
            with self._lock:
                self._pending.pop(msg_id, None)
            raise ConnectionFault(f"{method}: no response within {timeout or self._timeout}s")

        response = slot["response"]
        if response is None:
            raise ConnectionFault(f"{method}: connection lost")
        if "error" in response:
            raise ConnectionFault(f"{method}: {response['error'].get('message', response['error'])}")
        return response.get("result", {})

    def _read_loop(self):
        try:
            while not self._closed.is_set():
                try:
                    raw = self._ws.recv()
                except (websocket.WebSocketException, OSError) as e:
                    self._logger.debug("Websocket read ended: %s", e)
                    break
                if not raw:
                    break
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    self._logger.warning("Ignoring malformed protocol message: %s", str(raw)[:200])
                    continue
                if not isinstance(message, dict):
                    self._logger.warning("Ignoring non-object protocol message: %s", str(raw)[:200])
                    continue
                try:
                    self._dispatch(message)
                except Exception:
                    self._logger.exception("Failed to dispatch protocol message")
        finally:
            self._mark_closed()

    def _dispatch(self, message: dict):
        if "id" in message:
            msg_id = message["id"]
            if not isinstance(msg_id, int):
                self._logger.warning("Ignoring response with invalid id: %r", msg_id)
                return
            with self._lock:
                slot = self._pending.pop(msg_id, None)
            if slot is not None:
                slot["response"] = message
                slot["event"].set()
            return
        method = message.get("method")
        with self._lock:
            callbacks = list(self._listeners.get(method, ()))
        for callback in callbacks:
            callback(message.get("params") or {})

    def _mark_closed(self):
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
            pending = list(self._pending.values())
            self._pending.clear()
            callbacks = list(self._disconnect_callbacks)
        for slot in pending:
            slot["event"].set()
        for callback in callbacks:
            callback()

    def close(self):
        """Close the socket. The reader thread reports the disconnect."""
        try:
            self._ws.close()
        finally:
            if threading.current_thread() is not self._reader:
                self._reader.join(timeout=2.0)
            self._mark_closed()
