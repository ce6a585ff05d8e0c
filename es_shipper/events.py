"""Minimal synchronous event channel for pipeline and diagnostic events."""

import logging
import threading
from collections import defaultdict

logger = logging.getLogger(__name__)


class EventEmitter:
    """Registry of named events and the handlers subscribed to them.

    Handlers run synchronously on the emitting thread, in subscription order.
    An exception raised by a handler is logged and does not reach the emitter.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list] = defaultdict(list)
        self._lock = threading.Lock()

    def on(self, event: str, handler) -> None:
        with self._lock:
            self._handlers[event].append(handler)

    def off(self, event: str, handler) -> None:
        with self._lock:
            if handler in self._handlers.get(event, []):
                self._handlers[event].remove(handler)

    def emit(self, event: str, *args) -> int:
        """Call every handler of *event* with *args*. Returns the handler count."""
        with self._lock:
            handlers = list(self._handlers.get(event, []))

        for handler in handlers:
            try:
                handler(*args)
            except Exception:
                logger.exception("Handler for %r event failed", event)
        return len(handlers)

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._handlers.get(event, []))
