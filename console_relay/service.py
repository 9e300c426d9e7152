"""Wires the browser, session, buffer, persistence and HTTP layers together."""

import logging
import threading

from console_relay.buffer import RingBuffer
from console_relay.cdp import DEFAULT_PORT, CDPClient
from console_relay.config import Config
from console_relay.errors import LauncherError
from console_relay.launcher import BrowserInstance, launch_chrome, stop_chrome
from console_relay.models import Target
from console_relay.persistence import PartitionWriter
from console_relay.session import SessionManager
from console_relay.web import HttpServer, create_app


class RelayService:
    def __init__(self, config: Config, logger: logging.Logger | None = None,
                 client_factory=CDPClient, launcher=launch_chrome, stopper=stop_chrome):
        self._config = config
        self._logger = logger or logging.getLogger("console_relay")
        self._client_factory = client_factory
        self._launcher = launcher
        self._stopper = stopper
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

        self.browser: BrowserInstance | None = None
        self.buffer: RingBuffer | None = None
        self.session: SessionManager | None = None
        self.http: HttpServer | None = None
        self.cdp_port: int | None = None

    def start(self, serve_http: bool = True):
        """Bring every component up. On any failure, tear down what started and re-raise."""
        try:
            self._start(serve_http)
        except BaseException:
            self.shutdown()
            raise

    def _start(self, serve_http: bool):
        config = self._config

        writer = None
        if config.persist_dir:
            writer = PartitionWriter(config.persist_dir, logger=self._logger.getChild("persist"))
            writer.on_error.connect(self._log_error("persist"))
        self.buffer = RingBuffer(config.buffer_size, writer=writer, logger=self._logger.getChild("buffer"))

        # Bind before launching the browser so a taken port leaves nothing behind.
        if serve_http:
            app = create_app(self.buffer, self.status, token=config.token)
            self.http = HttpServer(app, config.host, config.port, logger=self._logger.getChild("http"))

        cdp_port = config.remote_port or 0
        if config.open_url:
            self.browser = self._launcher(
                url=config.open_url, port=cdp_port or None,
                headless=config.headless, logger=self._logger.getChild("launcher"),
            )
            cdp_port = self.browser.port
        self.cdp_port = cdp_port or DEFAULT_PORT

        client = self._client_factory(
            host=config.cdp_host, port=self.cdp_port,
            timeout=config.request_timeout, logger=self._logger.getChild("cdp"),
        )
        self.session = SessionManager(
            client, match=config.match, retry_delay=config.retry_delay,
            logger=self._logger.getChild("session"),
        )
        self.session.on_entry.connect(self.buffer.add)
        self.session.on_connected.connect(self._on_connected)
        self.session.on_disconnected.connect(self._on_disconnected)
        self.session.on_error.connect(self._log_error("cdp"))

        if self.http is not None:
            self.http.start()
        self.session.start()

    def status(self) -> dict:
        if self.session is None:
            return {"connected": False, "target": None, "browser_version": None}
        return self.session.get_status()

    def _on_connected(self, target: Target):
        self._logger.info("Streaming console from %s", target.url)

    def _on_disconnected(self):
        self._logger.warning("Target disconnected, waiting to reconnect...")

    def _log_error(self, source: str):
        def _handler(err):
            self._logger.warning("[%s] %s", source, err)
        return _handler

    def shutdown(self):
        """Close buffer, session, HTTP server and browser, in that order. Idempotent."""
        with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True

        self._logger.info("Shutting down...")
        if self.buffer is not None:
            self.buffer.close()
        if self.session is not None:
            self.session.close()
        if self.http is not None:
            self.http.stop()
        if self.browser is not None:
            try:
                self._stopper(self.browser, self._logger.getChild("launcher"))
            except LauncherError as e:
                self._logger.error("Failed to close Chrome: %s", e)
