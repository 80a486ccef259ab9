# storefront/confirmation.py
import json
import logging
from typing import List, Optional

from pydantic import ValidationError

from .cart import CartStore
from .config import Settings, settings as default_settings
from .models import OrderSnapshot, now_ms
from .storage import StorageContext

logger = logging.getLogger(__name__)


class OrderConfirmation:
    """Reads the order the checkout left behind and files it into the history."""

    def __init__(self, storage: StorageContext, cart: Optional[CartStore] = None,
                 config: Settings = default_settings):
        self.storage = storage
        self.cart = cart
        self.config = config

    def last_order(self) -> Optional[OrderSnapshot]:
        raw = self.storage.get_item(self.config.last_order_key)
        if not raw:
            return None
        try:
            return OrderSnapshot.model_validate_json(raw)
        except ValidationError:
            logger.error("Last order data is unreadable")
            return None

    async def show(self) -> Optional[OrderSnapshot]:
        order = self.last_order()
        if order is None or not order.order_id:
            logger.warning("No order data found")
            return None

        if not order.viewed:
            order = order.model_copy(update={"viewed": True, "viewed_at": now_ms()})
            self.storage.set_item(self.config.last_order_key, order.model_dump_json())

        self.save_to_history(order)

        if self.cart is not None and self.cart.get_items():
            await self.cart.clear(silent=True)
        return order

    def history(self) -> List[OrderSnapshot]:
        raw = self.storage.get_item(self.config.orders_key)
        if not raw:
            return []
        try:
            entries = json.loads(raw)
        except ValueError:
            logger.error("Order history is corrupt, ignoring it")
            return []
        if not isinstance(entries, list):
            return []

        orders = []
        for entry in entries:
            try:
                orders.append(OrderSnapshot.model_validate(entry))
            except ValidationError:
                logger.warning("Skipping unreadable order history entry")
        return orders

    def save_to_history(self, order: OrderSnapshot) -> bool:
        orders = self.history()
        if any(o.order_id == order.order_id for o in orders):
            return False
        orders.append(order.model_copy(update={"saved_at": now_ms()}))
        self.storage.set_item(
            self.config.orders_key,
            json.dumps([o.model_dump(mode="json") for o in orders], ensure_ascii=False),
        )
        logger.info("Order %s saved to history", order.order_id)
        return True
