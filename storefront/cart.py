"""
Cart store shared by every execution context of one storage backend.

Each mutation follows the same path: take the advisory lock, reload the
latest snapshot from shared storage, validate and mutate, schedule a
debounced write, then emit an event. None of the public operations raise;
they report failure with ``False`` and a typed ``error`` or
``storage-error`` event.

The lock is a timestamp stored next to the cart data. It stays held until
the debounced write has landed, so another context waiting on it reloads a
snapshot that already contains this one's changes. While its own write is
pending the store may take the lock again, which lets bursts of calls from
one context collapse into a single write.

Check-then-write on the lock is not atomic across contexts and a waiter
forces it after its timeout, so a context that stalls for longer than that
can still lose an update.
"""
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import settings
from .errors import QuotaExceededError
from .events import (
    CART_CLEARED, CART_SYNCED, ERROR, ITEM_ADDED, ITEM_REMOVED, ITEM_UPDATED,
    STORAGE_ERROR, EventEmitter, Listener,
)
from .models import LineItem, clamp_quantity, now_ms
from .storage import StorageContext, StorageEvent
from .validation import MAX_QUANTITY_PER_ITEM, sanitize, validate_item, validate_product

logger = logging.getLogger(__name__)

MAX_ITEMS = 50
LOCK_STALE_MS = 5000
LOCK_POLL_MS = 50
DEFAULT_LOCK_TIMEOUT_MS = 3000
UPDATE_LOCK_TIMEOUT_MS = 10000
SAVE_DEBOUNCE_MS = 100
MAX_PAYLOAD_BYTES = 5_000_000

Outcome = Tuple[bool, Optional[str], Dict[str, Any]]


class PayloadTooLargeError(Exception):
    pass


class CartStore:
    validate_product = staticmethod(validate_product)
    sanitize = staticmethod(sanitize)

    def __init__(
        self,
        storage: StorageContext,
        key: Optional[str] = None,
        lock_key: Optional[str] = None,
        max_items: int = MAX_ITEMS,
        max_quantity_per_item: int = MAX_QUANTITY_PER_ITEM,
    ):
        self.storage = storage
        self.key = key or settings.cart_key
        self.lock_key = lock_key or settings.lock_key
        self.max_items = max_items
        self.max_quantity_per_item = max_quantity_per_item
        self.events = EventEmitter()
        self.last_modified = 0
        self._save_handle: Optional[asyncio.TimerHandle] = None
        # raw cart value as last read from or written to storage
        self._persisted: Optional[str] = None
        # lock value this store wrote and has not released yet
        self._lock_token: Optional[str] = None
        self._in_operation = False

        self.items: List[LineItem] = []
        self.items = self.load()
        self.storage.add_listener(self._on_storage_event)

    # ---------------------------
    # Events
    # ---------------------------
    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        return self.events.on(event, callback)

    def off(self, event: str, callback: Listener) -> None:
        self.events.off(event, callback)

    def emit(self, event: str, data: Dict[str, Any]) -> None:
        self.events.emit(event, data)

    def _on_storage_event(self, event: StorageEvent) -> None:
        if event.key != self.key or event.new_value == event.old_value:
            return
        logger.info("Cart synced from another context")
        self.items = self.load()
        self.emit(CART_SYNCED, {"items": self.get_items()})

    # ---------------------------
    # Lock
    # ---------------------------
    @staticmethod
    def _lock_age(raw: Optional[str]) -> Optional[int]:
        if raw is None:
            return None
        try:
            return now_ms() - int(raw)
        except ValueError:
            # unreadable token counts as abandoned
            return LOCK_STALE_MS + 1

    def _write_lock(self) -> None:
        token = str(now_ms())
        self.storage.set_item(self.lock_key, token)
        self._lock_token = token

    async def acquire_lock(self, timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS) -> bool:
        start = now_ms()
        while now_ms() - start < timeout_ms:
            raw = self.storage.get_item(self.lock_key)
            if raw is not None and raw == self._lock_token:
                # still ours, kept for a write that has not landed yet
                self._write_lock()
                return True
            age = self._lock_age(raw)
            if age is None or age > LOCK_STALE_MS:
                self._write_lock()
                return True
            await asyncio.sleep(LOCK_POLL_MS / 1000)

        logger.warning("Could not acquire cart lock within %d ms, forcing", timeout_ms)
        self._write_lock()
        return True

    def release_lock(self) -> None:
        self._lock_token = None
        self.storage.remove_item(self.lock_key)

    def _finish_operation(self) -> None:
        self._in_operation = False
        if not self.save_pending:
            self.release_lock()
        # otherwise _perform_save releases once the write is out

    @asynccontextmanager
    async def _locked(self, timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS):
        await self.acquire_lock(timeout_ms)
        self._in_operation = True
        try:
            yield
        finally:
            self._finish_operation()

    # ---------------------------
    # Load & save
    # ---------------------------
    def load(self) -> List[LineItem]:
        try:
            data = self.storage.get_item(self.key)
            self._persisted = data
            if not data:
                return []
            parsed = json.loads(data)
        except ValueError:
            logger.error("Cart data is not valid JSON, resetting")
            self._discard()
            return []
        except Exception:
            logger.exception("Failed to load cart")
            return []

        if not isinstance(parsed, list):
            logger.warning("Invalid cart data format, resetting")
            self._discard()
            return []

        valid: List[LineItem] = []
        seen = set()
        for raw in parsed:
            item = LineItem.parse(raw)
            if item is None or item.id in seen or len(valid) >= self.max_items:
                continue
            seen.add(item.id)
            valid.append(item)

        if len(valid) != len(parsed):
            logger.warning("Removed %d invalid items", len(parsed) - len(valid))
            self._write(valid)

        logger.debug("Loaded %d valid items", len(valid))
        return valid

    def _discard(self) -> None:
        try:
            self.storage.remove_item(self.key)
            self._persisted = None
        except Exception:
            logger.exception("Failed to remove corrupt cart data")

    def save(self) -> None:
        """Schedule a write; calls within the debounce window collapse into one."""
        self._cancel_pending_save()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._perform_save()
            return
        self._save_handle = loop.call_later(SAVE_DEBOUNCE_MS / 1000, self._perform_save)

    def flush(self) -> bool:
        """Write a pending debounced save now. Returns False if that write failed."""
        if self._save_handle is None:
            return True
        self._cancel_pending_save()
        return self._perform_save()

    @property
    def save_pending(self) -> bool:
        return self._save_handle is not None

    def _cancel_pending_save(self) -> None:
        if self._save_handle is not None:
            self._save_handle.cancel()
            self._save_handle = None

    def _perform_save(self) -> bool:
        self._save_handle = None
        try:
            return self._write(self.items)
        finally:
            if self._lock_token is not None and not self._in_operation:
                self.release_lock()

    def _write(self, items: List[LineItem]) -> bool:
        try:
            valid = [i for i in items if validate_item(i, self.max_quantity_per_item)]
            payload = json.dumps([i.model_dump() for i in valid], ensure_ascii=False)
            if len(payload.encode("utf-8")) > MAX_PAYLOAD_BYTES:
                raise PayloadTooLargeError("cart data too large")
            self.storage.set_item(self.key, payload)
        except (QuotaExceededError, PayloadTooLargeError) as e:
            logger.error("Storage quota exceeded: %s", e)
            self.emit(STORAGE_ERROR, {"type": "quota", "message": "Cart storage is full, remove some items."})
            return False
        except Exception:
            logger.exception("Failed to save cart")
            self.emit(STORAGE_ERROR, {"type": "general", "message": "Could not save the cart."})
            return False

        self._persisted = payload
        self.last_modified = now_ms()
        logger.debug("Cart saved: %d items", len(valid))
        return True

    def _reload_snapshot(self) -> None:
        if self.save_pending and self.storage.get_item(self.key) == self._persisted:
            # nobody wrote since our last read, so memory already holds the newest state
            return
        # our own unwritten changes go out first so the reload cannot drop them
        self.flush()
        self.items = self.load()

    # ---------------------------
    # CRUD
    # ---------------------------
    async def add(self, product: Any) -> bool:
        if not self.validate_product(product):
            logger.error("Invalid product: %r", product)
            self.emit(ERROR, {"type": "invalid-product", "product": product})
            return False
        product = product.model_dump() if hasattr(product, "model_dump") else dict(product)

        try:
            async with self._locked():
                self._reload_snapshot()
                ok, event, payload = self._apply_add(product)
        except Exception as e:
            logger.exception("Error adding %s to cart", product.get("id"))
            self.emit(ERROR, {"type": "add-failed", "product": product, "error": e})
            return False

        self.emit(event, payload)
        return ok

    def _apply_add(self, product: Dict[str, Any]) -> Outcome:
        if len(self.items) >= self.max_items:
            logger.error("Cart full (max %d items)", self.max_items)
            return False, ERROR, {"type": "cart-full", "max_items": self.max_items}

        requested = product.get("quantity")
        qty = clamp_quantity(1 if requested is None else requested, self.max_quantity_per_item)
        existing = next((i for i in self.items if i.id == product["id"]), None)

        if existing is not None:
            new_quantity = min(self.max_quantity_per_item, existing.quantity + qty)
            if new_quantity == existing.quantity:
                logger.warning("Cannot add more of %s (max %d)", existing.id, self.max_quantity_per_item)
                return False, ERROR, {
                    "type": "max-quantity",
                    "product_id": existing.id,
                    "max_quantity": self.max_quantity_per_item,
                }
            existing.quantity = new_quantity
            existing.updated_at = now_ms()
        else:
            self.items.append(LineItem.from_product(product, qty))

        self.save()
        return True, ITEM_ADDED, {"product": product, "quantity": qty, "cart": self.get_summary()}

    async def remove(self, id: str) -> bool:
        try:
            async with self._locked():
                self._reload_snapshot()
                removed = self._find(id)
                if removed is not None:
                    self.items = [i for i in self.items if i.id != id]
                    self.save()
                    summary = self.get_summary()
        except Exception as e:
            logger.exception("Error removing %s from cart", id)
            self.emit(ERROR, {"type": "remove-failed", "id": id, "error": e})
            return False

        if removed is None:
            logger.warning("Item %s not found in cart", id)
            self.emit(ERROR, {"type": "not-found", "id": id})
            return False

        self.emit(ITEM_REMOVED, {"id": id, "item": removed.model_copy(), "cart": summary})
        return True

    async def update(self, id: str, quantity: Any) -> bool:
        lock_acquired = False
        try:
            lock_acquired = await self.acquire_lock(UPDATE_LOCK_TIMEOUT_MS)
            self._in_operation = True
            self._reload_snapshot()
            item = self._find(id)
            if item is not None:
                new_qty = clamp_quantity(quantity, self.max_quantity_per_item)
                changed = new_qty != item.quantity
                if changed:
                    item.quantity = new_qty
                    item.updated_at = now_ms()
                    self.save()
                    summary = self.get_summary()
        except Exception as e:
            logger.exception("Update of %s failed", id)
            self.emit(ERROR, {"type": "update-failed", "id": id, "quantity": quantity, "error": e})
            return False
        finally:
            if lock_acquired:
                self._finish_operation()

        if item is None:
            logger.warning("Item not found: %s", id)
            self.emit(ERROR, {"type": "not-found", "id": id})
            return False
        if not changed:
            return True

        self.emit(ITEM_UPDATED, {"id": id, "quantity": new_qty, "cart": summary})
        return True

    async def clear(self, silent: bool = False) -> bool:
        """
        Empty the cart. The store never asks for confirmation; callers that
        need one obtain it first. ``silent`` is passed on to subscribers so a
        clear that follows a completed checkout is not announced as a user
        action.
        """
        try:
            async with self._locked():
                self._reload_snapshot()
                item_count = len(self.items)
                self.items = []
                self.save()
        except Exception as e:
            logger.exception("Error clearing cart")
            self.emit(ERROR, {"type": "clear-failed", "error": e})
            return False

        logger.info("Cart cleared (%d items)", item_count)
        self.emit(CART_CLEARED, {"item_count": item_count, "silent": silent})
        return True

    def close(self) -> None:
        """Write anything pending and stop listening to other contexts."""
        self.flush()
        self.storage.remove_listener(self._on_storage_event)

    # ---------------------------
    # Getters
    # ---------------------------
    def _find(self, id: str) -> Optional[LineItem]:
        return next((i for i in self.items if i.id == id), None)

    def get_item_count(self) -> int:
        return sum(i.quantity for i in self.items)

    def get_total(self):
        return sum(i.price * i.quantity for i in self.items)

    def get_items(self) -> List[LineItem]:
        return [i.model_copy(deep=True) for i in self.items]

    def get_item(self, id: str) -> Optional[LineItem]:
        item = self._find(id)
        return item.model_copy(deep=True) if item is not None else None

    def get_summary(self) -> Dict[str, Any]:
        return {
            "count": self.get_item_count(),
            "total": self.get_total(),
            "items_count": len(self.items),
            "items": self.get_items(),
            "is_empty": len(self.items) == 0,
            "timestamp": now_ms(),
        }

    # ---------------------------
    # Validation
    # ---------------------------
    def validate_item(self, candidate: Any) -> bool:
        return validate_item(candidate, self.max_quantity_per_item)
