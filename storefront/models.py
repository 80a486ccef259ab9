# storefront/models.py
import time
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .validation import MAX_QUANTITY_PER_ITEM, sanitize, validate_item


def now_ms() -> int:
    return int(time.time() * 1000)


def clamp_quantity(value: Any, maximum: int = MAX_QUANTITY_PER_ITEM) -> int:
    """Truncate to an integer and clamp into ``[1, maximum]``."""
    return max(1, min(maximum, int(float(value))))


class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    price: Union[int, float]
    image: str = ""
    category: str = "general"
    quantity: int = Field(ge=1, le=MAX_QUANTITY_PER_ITEM)
    added_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    @model_validator(mode="before")
    @classmethod
    def _check_shape(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            if not validate_item(data):
                raise ValueError("invalid line item")
            data = dict(data)
            data["quantity"] = int(data["quantity"])
        return data

    @classmethod
    def parse(cls, raw: Any) -> Optional["LineItem"]:
        """Return a LineItem for a valid stored item, ``None`` otherwise."""
        try:
            return cls.model_validate(raw)
        except ValidationError:
            return None

    @classmethod
    def from_product(cls, product: Mapping[str, Any], quantity: int) -> "LineItem":
        stamp = now_ms()
        return cls(
            id=product["id"],
            name=sanitize(product["name"]),
            price=product["price"],
            image=sanitize(product.get("image") or ""),
            category=sanitize(product.get("category") or "general"),
            quantity=quantity,
            added_at=stamp,
            updated_at=stamp,
        )

    @property
    def line_total(self) -> Union[int, float]:
        return self.price * self.quantity


class Totals(BaseModel):
    subtotal: Union[int, float]
    shipping: int
    tax: int
    discount: Union[int, float]
    grand_total: Union[int, float]


class OrderSnapshot(BaseModel):
    """What the checkout leaves behind for the confirmation page."""
    model_config = ConfigDict(extra="ignore")

    order_id: str
    date: str
    customer_email: str
    customer_name: str = ""
    payment_method: str
    shipping_address: str
    shipping_method: str = "regular"
    promo_code: str = ""
    total: Union[int, float]
    totals: Optional[Totals] = None
    items: List[Dict[str, Any]] = Field(default_factory=list)
    status: str = "completed"
    submitted: bool = False
    backend_order_id: Optional[str] = None
    viewed: bool = False
    viewed_at: Optional[int] = None
    saved_at: Optional[int] = None
