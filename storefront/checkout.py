# storefront/checkout.py
import asyncio
import inspect
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

import httpx
from pydantic import BaseModel

from .cart import CartStore
from .config import Settings, settings as default_settings
from .errors import (
    CheckoutInProgressError, CheckoutValidationError, EmptyCartError,
    InvalidShippingMethodError, OrderNotConfirmedError, OrderSubmissionError,
)
from .models import OrderSnapshot, Totals
from .storage import StorageContext

logger = logging.getLogger(__name__)

# ---------------------------
# Pricing rules
# ---------------------------
TAX_RATE = 0.11
FREE_SHIPPING_THRESHOLD = 500000


@dataclass(frozen=True)
class ShippingMethod:
    key: str
    name: str
    cost: int
    estimate: str


SHIPPING_METHODS: Dict[str, ShippingMethod] = {
    "regular": ShippingMethod("regular", "Regular", 25000, "3-5 days"),
    "express": ShippingMethod("express", "Express", 50000, "1-2 days"),
    "same-day": ShippingMethod("same-day", "Same Day", 100000, "same day"),
    "free": ShippingMethod("free", "Free Shipping", 0, "5-7 days"),
}


@dataclass(frozen=True)
class Promo:
    code: str
    kind: str  # "percent" or "fixed"
    value: float = 0
    min_subtotal: int = 0


PROMO_CODES: Dict[str, Promo] = {
    "WELCOME10": Promo("WELCOME10", "percent", 0.10),
    "HEMAT50": Promo("HEMAT50", "fixed", 50000, min_subtotal=250000),
}

PAYMENT_METHODS: Dict[str, str] = {
    "creditCard": "Credit Card",
    "bankTransfer": "Bank Transfer",
    "eWallet": "E-Wallet",
    "cod": "Cash on Delivery",
}

# payment methods accepted by the order API
BACKEND_PAYMENT_METHODS: Dict[str, str] = {
    "creditCard": "midtrans",
    "eWallet": "midtrans",
    "bankTransfer": "bank_transfer",
    "cod": "cod",
}


def is_free_shipping_eligible(subtotal) -> bool:
    return subtotal >= FREE_SHIPPING_THRESHOLD


def default_shipping_method(subtotal) -> str:
    return "free" if is_free_shipping_eligible(subtotal) else "regular"


def shipping_cost(method: str, subtotal) -> int:
    shipping = SHIPPING_METHODS.get((method or "").lower())
    if shipping is None:
        raise InvalidShippingMethodError(method)
    if shipping.key == "free" and not is_free_shipping_eligible(subtotal):
        raise InvalidShippingMethodError(
            method, f"free shipping needs a subtotal of at least {FREE_SHIPPING_THRESHOLD}"
        )
    return shipping.cost


def calculate_discount(subtotal, code: str):
    promo = PROMO_CODES.get((code or "").strip().upper())
    if promo is None or subtotal < promo.min_subtotal:
        return 0
    if promo.kind == "percent":
        discount = round(subtotal * promo.value)
    else:
        discount = promo.value
    return min(discount, subtotal)


def compute_totals(subtotal, shipping_method: str, promo_code: str = "") -> Totals:
    shipping = shipping_cost(shipping_method, subtotal)
    discount = calculate_discount(subtotal, promo_code)
    tax = round((subtotal - discount) * TAX_RATE)
    return Totals(
        subtotal=subtotal,
        shipping=shipping,
        tax=tax,
        discount=discount,
        grand_total=subtotal - discount + shipping + tax,
    )


# ---------------------------
# Form validation
# ---------------------------
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+?\d{9,15}$")
POSTAL_CODE_RE = re.compile(r"^\d{5}$")
CARD_NUMBER_RE = re.compile(r"^\d{13,19}$")
CVV_RE = re.compile(r"^\d{3,4}$")
EXPIRY_RE = re.compile(r"^(\d{2})/(\d{2})$")

CARD_FIELDS = ("card_number", "card_expiry", "card_cvv")


class CheckoutForm(BaseModel):
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""
    shipping_method: str = "regular"
    payment_method: str = "creditCard"
    card_number: str = ""
    card_expiry: str = ""
    card_cvv: str = ""
    promo_code: str = ""
    notes: str = ""


def luhn_check(card_number: str) -> bool:
    total = 0
    for position, char in enumerate(reversed(card_number)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def validate_expiry_date(value: str, today: Optional[date] = None) -> bool:
    """``MM/YY`` whose first day lies after today."""
    match = EXPIRY_RE.match(value)
    if not match:
        return False
    month, year = int(match.group(1)), 2000 + int(match.group(2))
    if not 1 <= month <= 12:
        return False
    return date(year, month, 1) > (today or date.today())


def validate_field(field: str, value: str, today: Optional[date] = None) -> Tuple[bool, str]:
    value = (value or "").strip()
    if not value:
        return False, "This field is required"

    if field == "email":
        return (True, "") if EMAIL_RE.match(value) else (False, "Invalid email format")
    if field == "phone":
        compact = re.sub(r"[\s-]", "", value)
        return (True, "") if PHONE_RE.match(compact) else (False, "Invalid phone number")
    if field == "postal_code":
        return (True, "") if POSTAL_CODE_RE.match(value) else (False, "Postal code must be 5 digits")
    if field == "card_number":
        digits = re.sub(r"\s", "", value)
        ok = bool(CARD_NUMBER_RE.match(digits)) and luhn_check(digits)
        return (True, "") if ok else (False, "Invalid card number")
    if field == "card_cvv":
        return (True, "") if CVV_RE.match(value) else (False, "CVV must be 3-4 digits")
    if field == "card_expiry":
        ok = validate_expiry_date(value, today)
        return (True, "") if ok else (False, "Expiry must be MM/YY in the future")
    if field == "full_name":
        return (True, "") if len(value) >= 3 else (False, "Name must be at least 3 characters")
    if field == "address":
        return (True, "") if len(value) >= 10 else (False, "Address must be at least 10 characters")
    if field == "shipping_method":
        return (True, "") if value.lower() in SHIPPING_METHODS else (False, "Please choose a shipping method")
    if field == "payment_method":
        return (True, "") if value in PAYMENT_METHODS else (False, "Please choose a payment method")
    return True, ""


REQUIRED_FIELDS = ("full_name", "email", "phone", "address", "city", "postal_code",
                   "shipping_method", "payment_method")


def validate_form(form: CheckoutForm, today: Optional[date] = None) -> Dict[str, str]:
    """Return ``{field: message}`` for every invalid field; empty when the form is valid."""
    fields = list(REQUIRED_FIELDS)
    if form.payment_method == "creditCard":
        fields.extend(CARD_FIELDS)

    errors: Dict[str, str] = {}
    for field in fields:
        ok, message = validate_field(field, getattr(form, field), today)
        if not ok:
            errors[field] = message
    return errors


# ---------------------------
# Orchestrator
# ---------------------------
Confirm = Callable[[Totals], Union[bool, Awaitable[bool]]]


def generate_order_id(prefix: str = "ORD") -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{prefix}-{stamp}-{uuid.uuid4().hex[:6].upper()}"


class CheckoutOrchestrator:
    def __init__(
        self,
        cart: CartStore,
        storage: StorageContext,
        client=None,
        config: Settings = default_settings,
        payment_delay: Optional[float] = None,
    ):
        self.cart = cart
        self.storage = storage
        self.client = client
        self.config = config
        self.payment_delay = config.payment_delay if payment_delay is None else payment_delay
        self.promo_code = ""
        self.is_processing = False

    def totals(self, shipping_method: Optional[str] = None, promo_code: Optional[str] = None) -> Totals:
        subtotal = self.cart.get_total()
        method = shipping_method or default_shipping_method(subtotal)
        code = self.promo_code if promo_code is None else promo_code
        return compute_totals(subtotal, method, code)

    def apply_promo(self, code: str):
        """Remember ``code`` when it gives a discount; returns the discount (0 when rejected)."""
        code = (code or "").strip().upper()
        discount = calculate_discount(self.cart.get_total(), code)
        if discount > 0:
            self.promo_code = code
            logger.info("Promo %s applied: %s off", code, discount)
        else:
            self.promo_code = ""
            logger.info("Promo %s rejected", code)
        return discount

    async def place_order(self, form: Any, confirm: Optional[Confirm] = None) -> OrderSnapshot:
        if self.is_processing:
            raise CheckoutInProgressError()
        if not self.cart.get_items():
            raise EmptyCartError()

        if not isinstance(form, CheckoutForm):
            form = CheckoutForm.model_validate(form)
        errors = validate_form(form)
        if errors:
            raise CheckoutValidationError(errors)

        promo_code = form.promo_code.strip().upper() or self.promo_code
        totals = self.totals(form.shipping_method, promo_code)
        if confirm is not None:
            answer = confirm(totals)
            if inspect.isawaitable(answer):
                answer = await answer
            if not answer:
                raise OrderNotConfirmedError()

        self.is_processing = True
        try:
            logger.info("Processing payment...")
            await asyncio.sleep(self.payment_delay)

            items = self.cart.get_items()
            if not items:
                raise EmptyCartError()
            totals = self.totals(form.shipping_method, promo_code)
            order = OrderSnapshot(
                order_id=generate_order_id(),
                date=datetime.now(timezone.utc).isoformat(),
                customer_email=form.email.strip(),
                customer_name=form.full_name.strip(),
                payment_method=PAYMENT_METHODS[form.payment_method],
                shipping_address=f"{form.address.strip()}, {form.city.strip()} {form.postal_code.strip()}",
                shipping_method=form.shipping_method.lower(),
                promo_code=promo_code if totals.discount else "",
                total=totals.grand_total,
                totals=totals,
                items=[i.model_dump() for i in items],
            )

            if self.config.submit_orders:
                order = await self._submit(order, form)
            else:
                logger.warning(
                    "Order %s was created locally only; it was not sent to the order API "
                    "so stock was not reserved", order.order_id
                )

            if not await self.cart.clear(silent=True):
                logger.error("Order %s placed but the cart could not be cleared", order.order_id)

            self.storage.set_item(self.config.last_order_key, order.model_dump_json())
            self.promo_code = ""
            logger.info("Order %s placed, total %s", order.order_id, order.total)
            return order
        finally:
            self.is_processing = False

    async def _submit(self, order: OrderSnapshot, form: CheckoutForm) -> OrderSnapshot:
        if self.client is None:
            raise OrderSubmissionError("order submission is enabled but no API client is configured")

        payload = {
            "items": [{"product": item["id"], "quantity": item["quantity"]} for item in order.items],
            "shipping_address": {
                "name": form.full_name.strip(),
                "phone": form.phone.strip(),
                "address": form.address.strip(),
                "city": form.city.strip(),
                "zip_code": form.postal_code.strip(),
            },
            "payment_method": BACKEND_PAYMENT_METHODS[form.payment_method],
            "notes": form.notes or None,
        }
        try:
            r = await self.client.create_order_async(payload)
        except httpx.HTTPError as e:
            raise OrderSubmissionError(f"order API unreachable: {e}") from e

        try:
            body = r.json() if r.content else {}
        except ValueError:
            # proxies answer 502/504 with HTML
            logger.warning("Order API returned a non-JSON body (%d)", r.status_code)
            body = {}
        if not isinstance(body, dict):
            body = {}
        if r.status_code != 201 or not body.get("success"):
            message = body.get("message") or f"order API returned {r.status_code}"
            raise OrderSubmissionError(message, status_code=r.status_code)

        data = body.get("data") or {}
        return order.model_copy(update={"submitted": True, "backend_order_id": data.get("id")})
