"""Synchronous publish/subscribe registry used for every push callback."""

import logging
import threading
from typing import Callable


class Signal:
    """Ordered registry of callbacks.

    ``emit`` calls every registered callback synchronously, in registration
    order. A callback that raises is logged and the remaining callbacks still
    run. Cancelling a subscription removes it from the registry.
    """

    def __init__(self, name: str, logger: logging.Logger | None = None):
        self._name = name
        self._logger = logger or logging.getLogger(__name__)
        self._callbacks: list[Callable] = []
        self._lock = threading.Lock()

    def connect(self, callback: Callable) -> Callable[[], None]:
        """Register *callback*. Returns a handle that unregisters it."""
        with self._lock:
            self._callbacks.append(callback)

        def _disconnect():
            self.disconnect(callback)

        return _disconnect

    def disconnect(self, callback: Callable) -> bool:
        """Remove *callback*. Returns False if it was not registered."""
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                return False
        return True

    def emit(self, *args) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(*args)
            except Exception:
                self._logger.exception("Callback for %s signal failed", self._name)

    def clear(self) -> None:
        with self._lock:
            self._callbacks.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)
