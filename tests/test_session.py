"""Tests for the reconnecting session manager."""

import threading
import time

from conftest import FakeClient, FakeConnection
from console_relay.errors import ConnectionFault, NoTargetFound, NormalizationFault
from console_relay.models import EntryKind, Target
from console_relay.session import (
    CONSOLE_EVENT,
    LOG_EVENT,
    SessionManager,
    SessionState,
    select_target,
)


def _wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestSelectTarget:
    def test_match_by_url(self):
        targets = [{"url": "http://a", "type": "page"}, {"url": "http://b/app", "type": "page"}]
        assert select_target(targets, "app") is targets[1]

    def test_match_is_case_insensitive(self):
        targets = [{"url": "http://a"}, {"url": "http://b/APP"}]
        assert select_target(targets, "app") is targets[1]

    def test_url_match_wins_over_title(self):
        targets = [
            {"url": "http://x", "title": "my app"},
            {"url": "http://y/app", "title": "other"},
        ]
        assert select_target(targets, "app") is targets[1]

    def test_match_by_title(self):
        targets = [{"url": "http://a", "title": "Home"}, {"url": "http://b", "title": "Dashboard"}]
        assert select_target(targets, "dash") is targets[1]

    def test_match_without_hit_falls_back_to_first(self):
        targets = [{"url": "http://a", "type": "worker"}, {"url": "http://b", "type": "page"}]
        assert select_target(targets, "nomatch") is targets[0]

    def test_no_match_picks_first_page(self):
        targets = [
            {"url": "chrome-extension://x", "type": "background_page"},
            {"url": "http://sw", "type": "service_worker"},
            {"url": "http://a", "type": "page"},
            {"url": "http://b", "type": "page"},
        ]
        assert select_target(targets, None) is targets[2]

    def test_no_page_picks_first(self):
        targets = [{"url": "http://sw", "type": "service_worker"}, {"url": "http://w", "type": "worker"}]
        assert select_target(targets) is targets[0]

    def test_empty(self):
        assert select_target([], "x") is None
        assert select_target([]) is None


class TestConnect:
    def test_connect_records_status(self, fake_client):
        session = SessionManager(fake_client, retry_delay=0.01)
        connected = threading.Event()
        targets = []
        session.on_connected.connect(lambda t: (targets.append(t), connected.set()))
        session.start()
        try:
            assert connected.wait(3)
            status = session.get_status()
            assert status["connected"] is True
            assert status["host"] == "127.0.0.1"
            assert status["port"] == 9222
            assert status["browser_version"] == "Chrome/120.0"
            assert status["target"] == {
                "id": "T1", "title": "App", "url": "http://localhost/app", "type": "page",
            }
            assert targets == [Target("T1", "App", "http://localhost/app", "page")]
            assert session.state is SessionState.CONNECTED
            assert fake_client.connections[0].calls == ["Runtime.enable", "Log.enable"]
        finally:
            session.close()

    def test_version_failure_is_swallowed(self):
        client = FakeClient(version=ConnectionFault("version endpoint down"))
        session = SessionManager(client, retry_delay=0.01)
        errors = []
        session.on_error.connect(errors.append)
        session.start()
        try:
            assert _wait_for(lambda: session.status.connected)
            assert session.get_status()["browser_version"] is None
            assert errors == []
        finally:
            session.close()

    def test_no_targets_emits_error_and_retries(self):
        client = FakeClient(targets=[])
        session = SessionManager(client, retry_delay=0.01)
        errors = []
        session.on_error.connect(errors.append)
        session.start()
        try:
            assert _wait_for(lambda: len(errors) >= 2)
            assert all(isinstance(e, NoTargetFound) for e in errors)
            assert session.get_status()["connected"] is False
        finally:
            session.close()

    def test_enable_failure_closes_connection_and_retries(self):
        bad = FakeConnection(fail_enable=True)
        client = FakeClient(outcomes=[bad])
        session = SessionManager(client, retry_delay=0.01)
        errors = []
        session.on_error.connect(errors.append)
        session.start()
        try:
            assert _wait_for(lambda: session.status.connected)
            assert bad.closed
            assert isinstance(errors[0], ConnectionFault)
            assert client.attempts == 2
        finally:
            session.close()

    def test_start_is_idempotent(self, fake_client):
        session = SessionManager(fake_client, retry_delay=0.01)
        session.start()
        session.start()
        try:
            assert _wait_for(lambda: session.status.connected)
            time.sleep(0.05)
            assert fake_client.attempts == 1
        finally:
            session.close()


class TestEvents:
    def _connected_session(self, client):
        session = SessionManager(client, retry_delay=0.01)
        session.start()
        assert _wait_for(lambda: session.status.connected)
        return session

    def test_console_event_normalized(self, fake_client):
        session = self._connected_session(fake_client)
        entries = []
        session.on_entry.connect(entries.append)
        try:
            fake_client.connections[0].push(CONSOLE_EVENT, {
                "type": "warning",
                "args": [{"type": "string", "value": "careful"}],
                "timestamp": 1704153599000,
            })
            assert len(entries) == 1
            assert entries[0].kind is EntryKind.CONSOLE
            assert entries[0].level == "warning"
            assert entries[0].text == "careful"
        finally:
            session.close()

    def test_log_event_normalized(self, fake_client):
        session = self._connected_session(fake_client)
        entries = []
        session.on_entry.connect(entries.append)
        try:
            fake_client.connections[0].push(LOG_EVENT, {
                "entry": {"source": "network", "level": "error", "text": "404", "timestamp": 1704153599000},
            })
            assert entries[0].kind is EntryKind.LOG
            assert entries[0].href == "network"
        finally:
            session.close()

    def test_malformed_events_reported_and_dropped(self, fake_client):
        session = self._connected_session(fake_client)
        entries, errors = [], []
        session.on_entry.connect(entries.append)
        session.on_error.connect(errors.append)
        try:
            conn = fake_client.connections[0]
            conn.push(LOG_EVENT, {})
            conn.push(CONSOLE_EVENT, {"args": 5})
            conn.push(CONSOLE_EVENT, {"args": [{"value": "fine"}]})
            assert [e.text for e in entries] == ["fine"]
            assert len(errors) == 2
            assert all(isinstance(e, NormalizationFault) for e in errors)
            assert session.status.connected
        finally:
            session.close()


class RecordingSession(SessionManager):
    """Logs each backoff into a shared timeline."""

    def __init__(self, client, timeline, **kwargs):
        super().__init__(client, **kwargs)
        self.timeline = timeline

    def _backoff(self):
        self.timeline.append("backoff")
        return super()._backoff()


class RecordingClient(FakeClient):
    def __init__(self, timeline, **kwargs):
        super().__init__(**kwargs)
        self.timeline = timeline

    def connect(self, target):
        self.timeline.append("attempt")
        return super().connect(target)


class TestReconnect:
    def test_loss_then_failed_reconnect_backs_off_once_between_attempts(self):
        timeline = []
        first = FakeConnection()
        client = RecordingClient(timeline, outcomes=[first, ConnectionFault("refused"), FakeConnection()])
        session = RecordingSession(client, timeline, retry_delay=0.01)
        disconnected = threading.Event()
        session.on_disconnected.connect(disconnected.set)
        session.start()
        try:
            assert _wait_for(lambda: session.status.connected)
            first.drop()
            assert disconnected.wait(3)
            assert _wait_for(lambda: client.attempts == 3 and session.status.connected)
            assert timeline[:5] == ["attempt", "backoff", "attempt", "backoff", "attempt"]
        finally:
            session.close()

    def test_disconnect_clears_status(self, fake_client):
        session = SessionManager(fake_client, retry_delay=5.0)
        disconnected = threading.Event()
        session.on_disconnected.connect(disconnected.set)
        session.start()
        try:
            assert _wait_for(lambda: session.status.connected)
            fake_client.connections[0].drop()
            assert disconnected.wait(3)
            status = session.get_status()
            assert status["connected"] is False
            assert status["target"] is None
            assert status["browser_version"] is None
            assert session.state is SessionState.DISCONNECTED
        finally:
            session.close()

    def test_close_during_backoff_prevents_further_attempts(self):
        client = FakeClient(outcomes=[ConnectionFault("refused")])
        session = SessionManager(client, retry_delay=30.0)
        session.start()
        assert client.attempted.wait(3)
        time.sleep(0.05)

        started = time.monotonic()
        session.close()
        assert time.monotonic() - started < 5.0
        time.sleep(0.05)
        assert client.attempts == 1
        assert session.state is SessionState.CLOSED


class TestClose:
    def test_close_releases_wait_and_closes_connection(self, fake_client):
        session = SessionManager(fake_client, retry_delay=0.01)
        session.start()
        assert _wait_for(lambda: session.status.connected)
        session.close()
        assert fake_client.connections[0].closed
        assert session.state is SessionState.CLOSED
        assert session.get_status()["connected"] is False
        assert fake_client.attempts == 1

    def test_close_twice_is_harmless(self, fake_client):
        session = SessionManager(fake_client, retry_delay=0.01)
        errors = []
        session.on_error.connect(errors.append)
        session.start()
        assert _wait_for(lambda: session.status.connected)
        session.close()
        session.close()
        assert errors == []
        assert session.state is SessionState.CLOSED

    def test_close_error_is_emitted(self):
        class BrokenClose(FakeConnection):
            def close(self):
                super().close()
                raise OSError("socket already gone")

        client = FakeClient(outcomes=[BrokenClose()])
        session = SessionManager(client, retry_delay=0.01)
        errors = []
        session.on_error.connect(errors.append)
        session.start()
        assert _wait_for(lambda: session.status.connected)
        session.close()
        assert len(errors) == 1
        assert isinstance(errors[0], ConnectionFault)

    def test_close_before_start(self, fake_client):
        session = SessionManager(fake_client)
        session.close()
        session.start()
        assert fake_client.attempts == 0
        assert session.state is SessionState.CLOSED

    def test_run_in_caller_thread_returns_after_close(self, fake_client):
        session = SessionManager(fake_client, retry_delay=0.01)
        runner = threading.Thread(target=session.run)
        runner.start()
        assert _wait_for(lambda: session.status.connected)
        session.close()
        runner.join(3)
        assert not runner.is_alive()
