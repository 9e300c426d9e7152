"""Command-line entry point for the console relay."""

import argparse
import signal
import sys
import threading

from console_relay.config import load_config
from console_relay.errors import RelayError
from console_relay.logsetup import configure_logging
from console_relay.service import RelayService

VERSION = "0.1.0"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="console-relay",
        description="Relay browser console output from a DevTools endpoint over HTTP.",
    )
    parser.add_argument("--open", dest="open_url", help="Launch Chromium pointed at this URL")
    parser.add_argument("--match", help="Match target tab by URL (or title) substring")
    parser.add_argument("--port", type=int, help="Local HTTP server port (default 7070)")
    parser.add_argument("--host", help="Interface to bind (default 127.0.0.1)")
    parser.add_argument("--persist", dest="persist_dir", help="Directory for daily NDJSON log files")
    parser.add_argument("--token", help="Bearer token required for the HTTP API")
    parser.add_argument("--headless", action="store_true", default=None,
                        help="Launch Chrome headless when using --open")
    parser.add_argument("--buffer-size", type=int, help="In-memory buffer size (default 2000)")
    parser.add_argument("--remote-port", type=int, help="Existing Chrome debugging port (default 9222)")
    parser.add_argument("--quiet", action="store_true", default=None, help="Only log errors")
    parser.add_argument("--config", help="Optional YAML config file")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = vars(build_parser().parse_args(argv))
    yaml_path = args.pop("config")

    try:
        config = load_config(args, yaml_path=yaml_path)
    except ValueError as e:
        print(f"console-relay: invalid configuration: {e}", file=sys.stderr)
        return 2

    logger = configure_logging(config.quiet)
    shutdown_event = threading.Event()

    def signal_handler(signum, _frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    service = RelayService(config, logger=logger)
    try:
        service.start()
    except (RelayError, OSError) as e:
        logger.error("Failed to start: %s", e)
        service.shutdown()
        return 1

    while not shutdown_event.wait(0.5):
        pass
    service.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
