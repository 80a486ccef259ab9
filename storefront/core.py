import hashlib
import hmac
import math
import os
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field

# Request schemas and small helpers shared by the API handlers.

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[0-9][0-9 \-]{7,15}$"
ZIP_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9 \-]{2,9}$"

CATEGORIES = ("watches", "bags", "shoes", "wallets")
ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")
CANCELLABLE_STATUSES = ("pending", "confirmed")

TAX_RATE = 0.11
FREE_SHIPPING_THRESHOLD = 500000
FLAT_SHIPPING_COST = 25000


class _In(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

# ---------------------------
# Auth / users
# ---------------------------
class RegisterIn(_In):
    name: str = Field(min_length=2, max_length=50, pattern=r"^[A-Za-z\s]+$")
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6)

class LoginIn(_In):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1)

class UserCreateIn(RegisterIn):
    role: Literal["user", "admin"] = "user"

class UserUpdateIn(_In):
    name: Optional[str] = Field(None, min_length=2, max_length=50, pattern=r"^[A-Za-z\s]+$")
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    password: Optional[str] = Field(None, min_length=6)
    role: Optional[Literal["user", "admin"]] = None

# ---------------------------
# Products
# ---------------------------
class ProductIn(_In):
    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: float = Field(ge=0)
    category: Literal["watches", "bags", "shoes", "wallets"]
    stock: int = Field(0, ge=0)
    images: List[str] = Field(default_factory=list)

# ---------------------------
# Orders
# ---------------------------
class OrderItemIn(_In):
    product: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    attributes: Dict[str, Any] = Field(default_factory=dict)

class ShippingAddressIn(_In):
    name: str = Field(min_length=2, max_length=50)
    phone: str = Field(pattern=PHONE_PATTERN)
    address: str = Field(min_length=10, max_length=200)
    city: str = Field(min_length=2, max_length=50)
    zip_code: str = Field(pattern=ZIP_PATTERN)

class OrderIn(_In):
    items: List[OrderItemIn] = Field(min_length=1)
    shipping_address: ShippingAddressIn
    payment_method: Literal["midtrans", "bank_transfer", "cod"]
    notes: Optional[str] = Field(None, max_length=500)

class StatusUpdateIn(_In):
    status: Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
    notes: Optional[str] = None

class CancelIn(_In):
    reason: Optional[str] = None

# ---------------------------
# Helpers
# ---------------------------
def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def hash_password(password: str, salt: Optional[bytes] = None) -> str:
    salt = salt or os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, 100_000)
    return f"{salt.hex()}${digest.hex()}"

def verify_password(password: str, stored: str) -> bool:
    salt_hex, _, digest_hex = stored.partition("$")
    expected = hash_password(password, bytes.fromhex(salt_hex)).partition("$")[2]
    return hmac.compare_digest(expected, digest_hex)

def _make_user_dict(user_id: str, name: str, email: str, password: str, role: str = "user") -> Dict[str, Any]:
    return {
        "id": user_id,
        "name": name,
        "email": email.lower(),
        "password_hash": hash_password(password),
        "role": role,
        "created_at": utcnow_iso(),
    }

def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in user.items() if k != "password_hash"}

def _make_product_dict(product_id: str, p: ProductIn) -> Dict[str, Any]:
    return {
        "id": product_id,
        "name": p.name,
        "description": p.description,
        "price": p.price,
        "category": p.category,
        "stock": p.stock,
        "images": p.images,
        "created_at": utcnow_iso(),
    }

def order_totals(subtotal: float) -> Tuple[int, int, float]:
    """Return (tax, shipping, total) for an order subtotal."""
    tax = round(subtotal * TAX_RATE)
    shipping = 0 if subtotal >= FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING_COST
    return tax, shipping, subtotal + tax + shipping

def paginate(rows: List[Dict[str, Any]], page: int, limit: int) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
    start = (page - 1) * limit
    total = len(rows)
    return rows[start:start + limit], {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit),
    }
