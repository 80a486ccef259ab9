# storefront/main.py
import logging
import time
from typing import Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Header, Query, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import handlers
from .config import settings
from .core import (
    RegisterIn, LoginIn, UserCreateIn, UserUpdateIn, ProductIn, OrderIn,
    StatusUpdateIn, CancelIn,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="storefront order API (in-memory)")
_started = time.monotonic()

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
)

handlers.seed_admin()

# ---------------------------
# Error envelope
# ---------------------------
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 404 and message == "Not Found":
        message = "Route not found"
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": message})

@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"success": False, "message": "Validation failed", "errors": errors})

# ---------------------------
# Auth dependencies
# ---------------------------
async def protect(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    user = handlers.user_for_token(authorization[len("Bearer "):].strip())
    if not user:
        raise HTTPException(status_code=401, detail="Not authorized, token failed")
    return user

def authorize(*roles: str):
    async def checker(user: Dict[str, Any] = Depends(protect)) -> Dict[str, Any]:
        if user["role"] not in roles:
            raise HTTPException(status_code=403, detail=f"User role {user['role']} is not authorized to access this route")
        return user
    return checker

admin_only = authorize("admin")

# ---------------------------
# Health
# ---------------------------
@app.get("/api/health")
async def health():
    return {
        "success": True,
        "message": "storefront API is running",
        "uptime": round(time.monotonic() - _started, 3),
    }

# ---------------------------
# Auth endpoints
# ---------------------------
@app.post("/api/auth/register", status_code=201)
async def register(payload: RegisterIn):
    return await handlers.register_logic(payload)

@app.post("/api/auth/login")
async def login(payload: LoginIn):
    return await handlers.login_logic(payload)

@app.get("/api/auth/me")
async def me(user: Dict[str, Any] = Depends(protect)):
    return await handlers.me_logic(user)

# ---------------------------
# Product endpoints
# ---------------------------
@app.get("/api/products")
async def list_products(category: Optional[str] = None, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)):
    return await handlers.list_products_logic(category, page, limit)

@app.get("/api/products/{product_id}")
async def get_product(product_id: str):
    return await handlers.get_product_logic(product_id)

@app.post("/api/products", status_code=201)
async def create_product(payload: ProductIn, user: Dict[str, Any] = Depends(admin_only)):
    return await handlers.create_product_logic(payload)

# ---------------------------
# Order endpoints
# ---------------------------
@app.get("/api/orders")
async def get_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), user: Dict[str, Any] = Depends(protect)):
    return await handlers.get_orders_logic(user, page, limit)

@app.post("/api/orders", status_code=201)
async def create_order(payload: OrderIn, user: Dict[str, Any] = Depends(protect)):
    return await handlers.create_order_logic(user, payload)

@app.get("/api/orders/admin/all")
async def get_all_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = Query(None, alias="paymentStatus"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: Dict[str, Any] = Depends(admin_only),
):
    return await handlers.get_all_orders_logic(status, payment_status, page, limit)

@app.get("/api/orders/{order_id}")
async def get_order(order_id: str, user: Dict[str, Any] = Depends(protect)):
    return await handlers.get_order_logic(user, order_id)

@app.put("/api/orders/{order_id}/status")
async def update_order_status(order_id: str, payload: StatusUpdateIn, user: Dict[str, Any] = Depends(admin_only)):
    return await handlers.update_order_status_logic(order_id, payload)

@app.put("/api/orders/{order_id}/cancel")
async def cancel_order(order_id: str, payload: Optional[CancelIn] = None, user: Dict[str, Any] = Depends(protect)):
    return await handlers.cancel_order_logic(user, order_id, payload or CancelIn())

# ---------------------------
# User endpoints (admin)
# ---------------------------
@app.get("/api/users")
async def get_users(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), user: Dict[str, Any] = Depends(admin_only)):
    return await handlers.get_users_logic(page, limit)

@app.get("/api/users/{user_id}")
async def get_user(user_id: str, user: Dict[str, Any] = Depends(admin_only)):
    return await handlers.get_user_logic(user_id)

@app.post("/api/users", status_code=201)
async def create_user(payload: UserCreateIn, user: Dict[str, Any] = Depends(admin_only)):
    return await handlers.create_user_logic(payload)

@app.put("/api/users/{user_id}")
async def update_user(user_id: str, payload: UserUpdateIn, user: Dict[str, Any] = Depends(admin_only)):
    return await handlers.update_user_logic(user_id, payload)

@app.delete("/api/users/{user_id}")
async def delete_user(user_id: str, user: Dict[str, Any] = Depends(admin_only)):
    return await handlers.delete_user_logic(user_id)

# ---------------------------
# Utility: reset (for tests/demo)
# ---------------------------
@app.post("/api/reset")
async def reset_all(user: Dict[str, Any] = Depends(admin_only)):
    return await handlers.reset_all_logic()


if __name__ == "__main__":
    import uvicorn
    from .logger import setup_logger

    setup_logger()
    uvicorn.run(app, host="0.0.0.0", port=8085)
