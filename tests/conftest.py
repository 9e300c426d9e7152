import threading

import pytest

from console_relay.errors import ConnectionFault
from console_relay.models import EntryKind, LogEntry


def make_entry(text="hello", level="log", timestamp="2024-01-15T10:30:00.000Z", kind=EntryKind.CONSOLE):
    return LogEntry(timestamp=timestamp, kind=kind, level=level, text=text)


class FakeConnection:
    """Stands in for CDPConnection: records calls, lets tests push events and drop the socket."""

    def __init__(self, fail_enable=False):
        self.calls = []
        self.listeners = {}
        self.disconnect_callbacks = []
        self.closed = False
        self.fail_enable = fail_enable

    def on(self, method, callback):
        self.listeners.setdefault(method, []).append(callback)

    def on_disconnect(self, callback):
        self.disconnect_callbacks.append(callback)

    def call(self, method, params=None, timeout=None):
        self.calls.append(method)
        if self.fail_enable:
            raise ConnectionFault(f"{method}: connection lost")
        return {}

    def push(self, method, params):
        for callback in self.listeners.get(method, []):
            callback(params)

    def drop(self):
        for callback in self.disconnect_callbacks:
            callback()

    def close(self):
        self.closed = True
        self.drop()


class FakeClient:
    """Stands in for CDPClient. ``outcomes`` scripts each connect(): a FakeConnection or an exception."""

    def __init__(self, targets=None, version=None, outcomes=None, host="127.0.0.1", port=9222):
        self.host = host
        self.port = port
        self.targets = targets if targets is not None else [
            {"id": "T1", "title": "App", "url": "http://localhost/app", "type": "page",
             "webSocketDebuggerUrl": "ws://x/T1"},
        ]
        self.version_info = version if version is not None else {"Browser": "Chrome/120.0"}
        self.outcomes = list(outcomes or [])
        self.connections = []
        self.attempts = 0
        self.attempted = threading.Event()

    def list_targets(self):
        return self.targets

    def version(self):
        if isinstance(self.version_info, Exception):
            raise self.version_info
        return self.version_info

    def connect(self, target):
        self.attempts += 1
        self.attempted.set()
        outcome = self.outcomes.pop(0) if self.outcomes else FakeConnection()
        if isinstance(outcome, Exception):
            raise outcome
        self.connections.append(outcome)
        return outcome


@pytest.fixture
def fake_client():
    return FakeClient()
