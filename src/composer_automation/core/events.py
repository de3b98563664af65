"""Observer registry used for status, progress and watcher notifications."""

import logging
import threading
from collections.abc import Callable
from typing import Any

Handler = Callable[[Any], None]

STATUS_CHANGED = "status_changed"
PROGRESS_UPDATE = "progress_update"
ERROR = "error"

FILE_CREATED = "file_created"
FILE_MODIFIED = "file_modified"
FILE_DELETED = "file_deleted"


class EventChannel:
    """Fire-and-forget fan-out of events to registered handlers.

    Handlers run synchronously on the publishing thread, in subscription
    order. A failing handler is logged and skipped.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self._lock = threading.Lock()
        self._handlers: dict[str, list[Handler]] = {}
        self._logger = logger or logging.getLogger(__name__)

    def subscribe(self, kind: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(kind, [])
            if handler not in handlers:
                handlers.append(handler)

    def unsubscribe(self, kind: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(kind, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, kind: str, payload: Any = None) -> None:
        with self._lock:
            handlers = list(self._handlers.get(kind, []))
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                self._logger.exception("Handler for %s event failed", kind)
