# storefront/events.py
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]

ITEM_ADDED = "item-added"
ITEM_REMOVED = "item-removed"
ITEM_UPDATED = "item-updated"
CART_CLEARED = "cart-cleared"
CART_SYNCED = "cart-synced"
ERROR = "error"
STORAGE_ERROR = "storage-error"

CART_EVENTS = (ITEM_ADDED, ITEM_REMOVED, ITEM_UPDATED, CART_CLEARED, CART_SYNCED, ERROR, STORAGE_ERROR)


class EventEmitter:
    """Named-event observer owned by one object; no process-wide registry."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        if not callable(callback):
            logger.error("Listener for %r must be callable, got %r", event, callback)
            return lambda: None
        self._listeners.setdefault(event, []).append(callback)
        return lambda: self.off(event, callback)

    def off(self, event: str, callback: Listener) -> None:
        callbacks = self._listeners.get(event)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event: str, data: Dict[str, Any]) -> None:
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(data)
            except Exception:
                logger.exception("Error in %s listener", event)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))
