import logging
import uuid
from typing import Optional, Dict, Any, List

from fastapi import HTTPException

from .config import settings
from .core import (
    RegisterIn, LoginIn, UserCreateIn, UserUpdateIn, ProductIn, OrderIn,
    StatusUpdateIn, CancelIn, CANCELLABLE_STATUSES,
    _make_user_dict, _make_product_dict, public_user, verify_password,
    hash_password, order_totals, paginate, utcnow_iso,
)
from .database import PRODUCTS, USERS, TOKENS, ORDERS, _get_lock, reset_collections

logger = logging.getLogger(__name__)

# This file contains the logic behind every API endpoint.

# ---------------------------
# Auth
# ---------------------------
def _find_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    email = email.lower()
    return next((u for u in USERS.values() if u["email"] == email), None)

def _issue_token(user_id: str) -> str:
    token = uuid.uuid4().hex
    TOKENS[token] = user_id
    return token

def user_for_token(token: str) -> Optional[Dict[str, Any]]:
    user_id = TOKENS.get(token)
    return USERS.get(user_id) if user_id else None

def seed_admin() -> Dict[str, Any]:
    existing = _find_user_by_email(settings.admin_email)
    if existing:
        return existing
    uid = uuid.uuid4().hex
    USERS[uid] = _make_user_dict(uid, "Administrator", settings.admin_email, settings.admin_password, role="admin")
    logger.info("Seeded admin account %s", settings.admin_email)
    return USERS[uid]

async def register_logic(payload: RegisterIn):
    lock = _get_lock("users")
    async with lock:
        if _find_user_by_email(payload.email):
            raise HTTPException(status_code=400, detail="User already exists")
        uid = uuid.uuid4().hex
        USERS[uid] = _make_user_dict(uid, payload.name, payload.email, payload.password)
    token = _issue_token(uid)
    return {"success": True, "data": {"user": public_user(USERS[uid]), "token": token}}

async def login_logic(payload: LoginIn):
    user = _find_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = _issue_token(user["id"])
    return {"success": True, "data": {"user": public_user(user), "token": token}}

async def me_logic(user: Dict[str, Any]):
    return {"success": True, "data": public_user(user)}

# ---------------------------
# Products
# ---------------------------
async def list_products_logic(category: Optional[str], page: int, limit: int):
    rows = [p for p in PRODUCTS.values() if not category or p["category"] == category]
    rows.sort(key=lambda p: p["created_at"], reverse=True)
    data, pagination = paginate(rows, page, limit)
    return {"success": True, "data": data, "pagination": pagination}

async def get_product_logic(product_id: str):
    p = PRODUCTS.get(product_id)
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True, "data": p}

async def create_product_logic(payload: ProductIn):
    pid = uuid.uuid4().hex
    PRODUCTS[pid] = _make_product_dict(pid, payload)
    return {"success": True, "data": PRODUCTS[pid], "message": "Product created successfully"}

# ---------------------------
# Orders
# ---------------------------
def _order_view(order: Dict[str, Any]) -> Dict[str, Any]:
    owner = USERS.get(order["user"])
    view = dict(order)
    view["user"] = {"id": order["user"], "name": owner["name"], "email": owner["email"]} if owner else {"id": order["user"]}
    return view

def _set_status(order: Dict[str, Any], status: str, notes: Optional[str]) -> None:
    order["status"] = status
    order["status_history"].append({"status": status, "notes": notes, "at": utcnow_iso()})
    order["updated_at"] = utcnow_iso()

async def get_orders_logic(user: Dict[str, Any], page: int, limit: int):
    rows = [o for o in ORDERS.values() if o["user"] == user["id"]]
    rows.sort(key=lambda o: o["created_at"], reverse=True)
    data, pagination = paginate(rows, page, limit)
    return {"success": True, "data": data, "pagination": pagination}

async def get_order_logic(user: Dict[str, Any], order_id: str):
    order = ORDERS.get(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order["user"] != user["id"] and user["role"] != "admin":
        raise HTTPException(status_code=403, detail="Not authorized to access this order")
    return {"success": True, "data": _order_view(order)}

async def create_order_logic(user: Dict[str, Any], payload: OrderIn):
    product_keys = sorted({f"product:{item.product}" for item in payload.items})
    locks = [_get_lock(k) for k in product_keys]
    for l in locks:
        await l.acquire()

    try:
        # quantities per product, so repeated lines are checked against stock together
        wanted: Dict[str, int] = {}
        for item in payload.items:
            wanted[item.product] = wanted.get(item.product, 0) + item.quantity

        for pid, qty in wanted.items():
            prod = PRODUCTS.get(pid)
            if not prod:
                raise HTTPException(status_code=404, detail=f"Product {pid} not found")
            if prod["stock"] < qty:
                raise HTTPException(status_code=400, detail=f"Insufficient stock for {prod['name']}")

        subtotal = 0
        order_items: List[Dict[str, Any]] = []
        for item in payload.items:
            prod = PRODUCTS[item.product]
            order_items.append({
                "product": item.product,
                "name": prod["name"],
                "price": prod["price"],
                "quantity": item.quantity,
                "image": prod["images"][0] if prod["images"] else "",
                "attributes": item.attributes,
            })
            subtotal += prod["price"] * item.quantity

        # Commit
        for pid, qty in wanted.items():
            PRODUCTS[pid]["stock"] -= qty
    finally:
        for l in reversed(locks):
            l.release()

    tax, shipping, total = order_totals(subtotal)
    order_id = uuid.uuid4().hex
    now = utcnow_iso()
    order = {
        "id": order_id,
        "user": user["id"],
        "items": order_items,
        "shipping_address": payload.shipping_address.model_dump(),
        "payment_method": payload.payment_method,
        "payment_status": "pending",
        "subtotal": subtotal,
        "tax_amount": tax,
        "shipping_cost": shipping,
        "total_amount": total,
        "notes": payload.notes,
        "status": "pending",
        "status_history": [{"status": "pending", "notes": None, "at": now}],
        "created_at": now,
        "updated_at": now,
    }
    ORDERS[order_id] = order
    logger.info("Order %s created for %s, total %s", order_id, user["email"], total)
    return {"success": True, "data": order, "message": "Order created successfully"}

async def update_order_status_logic(order_id: str, payload: StatusUpdateIn):
    order = ORDERS.get(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    _set_status(order, payload.status, payload.notes)
    return {"success": True, "data": order, "message": f"Order status updated to {payload.status}"}

async def cancel_order_logic(user: Dict[str, Any], order_id: str, payload: CancelIn):
    order = ORDERS.get(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order["user"] != user["id"]:
        raise HTTPException(status_code=403, detail="Not authorized to cancel this order")
    if order["status"] not in CANCELLABLE_STATUSES:
        raise HTTPException(status_code=400, detail="Order cannot be cancelled at this stage")

    product_keys = sorted({f"product:{item['product']}" for item in order["items"]})
    locks = [_get_lock(k) for k in product_keys]
    for l in locks:
        await l.acquire()
    try:
        for item in order["items"]:
            prod = PRODUCTS.get(item["product"])
            if prod:
                prod["stock"] += item["quantity"]
    finally:
        for l in reversed(locks):
            l.release()

    _set_status(order, "cancelled", payload.reason)
    return {"success": True, "message": "Order cancelled successfully"}

async def get_all_orders_logic(status: Optional[str], payment_status: Optional[str], page: int, limit: int):
    rows = list(ORDERS.values())
    if status:
        rows = [o for o in rows if o["status"] == status]
    if payment_status:
        rows = [o for o in rows if o["payment_status"] == payment_status]
    rows.sort(key=lambda o: o["created_at"], reverse=True)
    data, pagination = paginate(rows, page, limit)
    return {"success": True, "data": [_order_view(o) for o in data], "pagination": pagination}

# ---------------------------
# Users (admin)
# ---------------------------
async def get_users_logic(page: int, limit: int):
    rows = sorted(USERS.values(), key=lambda u: u["created_at"], reverse=True)
    data, pagination = paginate(rows, page, limit)
    return {"success": True, "data": [public_user(u) for u in data], "pagination": pagination}

async def get_user_logic(user_id: str):
    user = USERS.get(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "data": public_user(user)}

async def create_user_logic(payload: UserCreateIn):
    async with _get_lock("users"):
        if _find_user_by_email(payload.email):
            raise HTTPException(status_code=400, detail="User already exists")
        uid = uuid.uuid4().hex
        USERS[uid] = _make_user_dict(uid, payload.name, payload.email, payload.password, payload.role)
    return {"success": True, "data": public_user(USERS[uid]), "message": "User created successfully"}

async def update_user_logic(user_id: str, payload: UserUpdateIn):
    user = USERS.get(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    changes = payload.model_dump(exclude_none=True)
    if "email" in changes:
        other = _find_user_by_email(changes["email"])
        if other and other["id"] != user_id:
            raise HTTPException(status_code=400, detail="Email already in use")
        changes["email"] = changes["email"].lower()
    if "password" in changes:
        changes["password_hash"] = hash_password(changes.pop("password"))
    user.update(changes)
    return {"success": True, "data": public_user(user), "message": "User updated successfully"}

async def delete_user_logic(user_id: str):
    if USERS.pop(user_id, None) is None:
        raise HTTPException(status_code=404, detail="User not found")
    for token in [t for t, uid in TOKENS.items() if uid == user_id]:
        del TOKENS[token]
    return {"success": True, "message": "User deleted successfully"}

# Utility: reset (for tests/demo)
async def reset_all_logic():
    reset_collections()
    seed_admin()
    return {"success": True, "message": "reset"}
