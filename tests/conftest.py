"""
Pytest configuration and shared fixtures.

Environment is set before any storefront module is imported so the settings
object picks up the test values.
"""
import asyncio
import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["STOREFRONT_PAYMENT_DELAY"] = "0"
os.environ["STOREFRONT_SUBMIT_ORDERS"] = "0"
os.environ["STOREFRONT_LOG_DIR"] = os.path.join(_TMP, "logs")
os.environ["STOREFRONT_STORAGE_PATH"] = os.path.join(_TMP, "storage.json")

import pytest  # noqa: E402

from storefront.cart import CartStore  # noqa: E402
from storefront.storage import MemoryStorage  # noqa: E402


def run(coro):
    return asyncio.run(coro)


def record(cart, *events):
    """Collect ``(event, payload)`` pairs emitted by ``cart``."""
    seen = []
    for name in events:
        cart.on(name, lambda data, name=name: seen.append((name, data)))
    return seen


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def ctx(storage):
    return storage.context()


@pytest.fixture
def cart(ctx):
    store = CartStore(ctx)
    yield store
    store.close()


@pytest.fixture
def product():
    return {
        "id": "w-001",
        "name": "Classic Leather Watch",
        "price": 1250000,
        "image": "assets/watch1.jpg",
        "category": "watches",
    }


@pytest.fixture
def make_product():
    def _make(pid: str, price=100000, **extra):
        return {"id": pid, "name": f"Product {pid}", "price": price, "image": f"assets/{pid}.jpg", **extra}
    return _make
