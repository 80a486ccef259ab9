import asyncio
from typing import Dict, Any

# In-memory document collections for the order API, plus per-key locks.

PRODUCTS: Dict[str, Dict[str, Any]] = {}
USERS: Dict[str, Dict[str, Any]] = {}
TOKENS: Dict[str, str] = {}
ORDERS: Dict[str, Dict[str, Any]] = {}
_LOCKS: Dict[str, asyncio.Lock] = {}

def _get_lock(key: str) -> asyncio.Lock:
    if key not in _LOCKS:
        _LOCKS[key] = asyncio.Lock()
    return _LOCKS[key]

def reset_collections() -> None:
    PRODUCTS.clear()
    USERS.clear()
    TOKENS.clear()
    ORDERS.clear()
    _LOCKS.clear()
