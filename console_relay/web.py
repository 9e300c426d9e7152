"""Flask HTTP front end: health, log queries and a live SSE stream."""

import hmac
import json
import logging
import queue
import re
import threading
from typing import Callable

from flask import Flask, Response, jsonify, request
from werkzeug.serving import make_server

from console_relay.buffer import RingBuffer

STREAM_KEEPALIVE_SECONDS = 15.0
STREAM_QUEUE_SIZE = 1000  # entries held per SSE client before dropping

logger = logging.getLogger(__name__)


def _extract_token(header: str) -> str:
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip()
    return header.strip()


def _parse_limit(raw: str | None) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def create_app(buffer: RingBuffer, status_provider: Callable[[], dict] | None = None,
               token: str | None = None, keepalive: float = STREAM_KEEPALIVE_SECONDS,
               stream_queue_size: int = STREAM_QUEUE_SIZE) -> Flask:
    app = Flask(__name__)
    app.config["BUFFER"] = buffer
    status_provider = status_provider or (lambda: {})

    @app.before_request
    def check_auth():
        if not token:
            return None
        supplied = _extract_token(request.headers.get("Authorization", ""))
        if not supplied:
            return jsonify(error="unauthorized"), 401
        if not hmac.compare_digest(supplied, token):
            return jsonify(error="forbidden"), 403
        return None

    @app.route("/health")
    def health():
        return jsonify(
            status="ok",
            relay=buffer.get_stats().to_dict(),
            cdp=status_provider(),
        )

    @app.route("/logs")
    def logs():
        try:
            entries = buffer.query(
                n=_parse_limit(request.args.get("n")),
                level=request.args.get("level"),
                match=request.args.get("match"),
                since=request.args.get("since"),
            )
        except re.error as e:
            return jsonify(error="invalid_match", detail=str(e)), 400
        return jsonify([entry.to_dict() for entry in entries])

    @app.route("/logs/stream")
    def stream():
        pending: queue.Queue = queue.Queue(maxsize=stream_queue_size)

        def enqueue(entry):
            try:
                pending.put_nowait(entry)
            except queue.Full:
                logger.warning("Stream client is not keeping up, dropping entry")

        unsubscribe = buffer.subscribe(enqueue)

        def generate():
            try:
                yield ": connected\n\n"
                while True:
                    try:
                        entry = pending.get(timeout=keepalive)
                    except queue.Empty:
                        yield ": keep-alive\n\n"
                        continue
                    yield f"data: {json.dumps(entry.to_dict())}\n\n"
            finally:
                unsubscribe()

        return Response(
            generate(),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.errorhandler(404)
    def not_found(_err):
        return jsonify(error="not_found"), 404

    return app


class HttpServer:
    """Threaded werkzeug server that can be stopped from another thread."""

    def __init__(self, app: Flask, host: str, port: int, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(__name__)
        try:
            self._server = make_server(host, port, app, threaded=True)
        except SystemExit as e:
            # werkzeug exits the process when the address is taken.
            raise OSError(f"Cannot bind HTTP server to {host}:{port}") from e
        self._thread: threading.Thread | None = None

    @property
    def server_address(self) -> tuple[str, int]:
        return self._server.server_address[:2]

    def start(self):
        self._thread = threading.Thread(target=self._server.serve_forever, name="http", daemon=True)
        self._thread.start()
        host, port = self.server_address
        self._logger.info("Listening on http://%s:%d", host, port)

    def stop(self):
        # shutdown() blocks until serve_forever exits, so only call it once serving.
        if self._thread is not None:
            self._server.shutdown()
            self._thread.join(timeout=5)
        self._server.server_close()
