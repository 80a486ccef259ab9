# storefront/errors.py
from typing import Dict, Optional


class StorefrontError(Exception):
    """Base class for every error raised by the storefront package."""


# ---------------------------
# Storage
# ---------------------------
class StorageError(StorefrontError):
    pass


class QuotaExceededError(StorageError):
    def __init__(self, key: str, size: int, quota: int):
        super().__init__(f"writing {key!r} needs {size} bytes, quota is {quota}")
        self.key = key
        self.size = size
        self.quota = quota


# ---------------------------
# Checkout
# ---------------------------
class CheckoutError(StorefrontError):
    pass


class EmptyCartError(CheckoutError):
    def __init__(self):
        super().__init__("cart is empty")


class CheckoutInProgressError(CheckoutError):
    def __init__(self):
        super().__init__("an order is already being processed")


class OrderNotConfirmedError(CheckoutError):
    def __init__(self):
        super().__init__("order was not confirmed by the customer")


class CheckoutValidationError(CheckoutError):
    def __init__(self, errors: Dict[str, str]):
        super().__init__("form incomplete: " + ", ".join(sorted(errors)))
        self.errors = errors


class InvalidShippingMethodError(CheckoutError):
    def __init__(self, method: str, reason: Optional[str] = None):
        super().__init__(reason or f"unknown shipping method: {method}")
        self.method = method


class OrderSubmissionError(CheckoutError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
