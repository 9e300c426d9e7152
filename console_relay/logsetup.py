"""Logging setup for the relay process."""

import logging
import sys

LOG_FORMAT = "%(asctime)s [console-relay] %(levelname)s %(name)s %(message)s"


def configure_logging(quiet: bool = False) -> logging.Logger:
    """Configure the root handler and return the relay's base logger.

    Quiet mode keeps errors only.
    """
    logging.basicConfig(
        level=logging.ERROR if quiet else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    logger = logging.getLogger("console_relay")
    logger.setLevel(logging.ERROR if quiet else logging.INFO)
    return logger


def null_logger() -> logging.Logger:
    """A logger that discards everything."""
    logger = logging.getLogger("console_relay.null")
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    logger.propagate = False
    logger.disabled = True
    return logger
