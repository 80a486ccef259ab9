# storefront/validation.py
import html
import math
import re
from typing import Any, Mapping

# Best-effort filters only. The backend is the real trust boundary.

MAX_ID_LENGTH = 100
MAX_NAME_LENGTH = 500
MAX_TEXT_LENGTH = 500
MAX_QUANTITY_PER_ITEM = 99

REQUIRED_PRODUCT_FIELDS = ("id", "name", "price", "image")

_ID_FORBIDDEN = re.compile(r"['\";$]")
_NAME_INJECTION = re.compile(r"<script|javascript:|\bon[a-z]+\s*=", re.IGNORECASE)


def _as_mapping(candidate: Any):
    if hasattr(candidate, "model_dump"):
        return candidate.model_dump()
    if isinstance(candidate, Mapping):
        return candidate
    return None


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_whole_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def validate_product(candidate: Any) -> bool:
    product = _as_mapping(candidate)
    if product is None:
        return False

    for field in REQUIRED_PRODUCT_FIELDS:
        if field not in product:
            return False

    pid, name, price = product["id"], product["name"], product["price"]
    if not isinstance(pid, str) or not isinstance(name, str):
        return False
    if not is_number(price):
        return False

    if not 0 < len(pid) <= MAX_ID_LENGTH:
        return False
    if not 0 < len(name) <= MAX_NAME_LENGTH:
        return False
    if price < 0 or not math.isfinite(price):
        return False

    if _ID_FORBIDDEN.search(pid):
        return False
    if _NAME_INJECTION.search(name):
        return False

    return True


def validate_item(candidate: Any, max_quantity: int = MAX_QUANTITY_PER_ITEM) -> bool:
    if not validate_product(candidate):
        return False
    quantity = _as_mapping(candidate).get("quantity")
    return is_whole_number(quantity) and 0 < quantity <= max_quantity


def sanitize(text: Any) -> str:
    """Trim, drop angle brackets, escape what is left and cap the length."""
    if not isinstance(text, str):
        return ""
    cleaned = text.strip().replace("<", "").replace(">", "")
    return html.escape(cleaned, quote=False)[:MAX_TEXT_LENGTH]
