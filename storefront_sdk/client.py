# storefront_sdk/client.py
import httpx
import requests
from typing import Any, Dict, Optional


class StorefrontClient:
    def __init__(self, base_url: str = "http://localhost:8085", token: Optional[str] = None, timeout: int = 10):
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.timeout = timeout
        self.token = None
        if token:
            self.set_token(token)

    def set_token(self, token: str):
        self.token = token
        self.session.headers.update({"Authorization": f"Bearer {token}"})

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api{path}"

    def health(self):
        r = self.session.get(self._url("/health"), timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    # Auth
    def register(self, name: str, email: str, password: str):
        r = self.session.post(self._url("/auth/register"), json={
            "name": name, "email": email, "password": password
        }, timeout=self.timeout)
        r.raise_for_status()
        body = r.json()
        self.set_token(body["data"]["token"])
        return body

    def login(self, email: str, password: str):
        r = self.session.post(self._url("/auth/login"), json={"email": email, "password": password}, timeout=self.timeout)
        r.raise_for_status()
        body = r.json()
        self.set_token(body["data"]["token"])
        return body

    def me(self):
        r = self.session.get(self._url("/auth/me"), timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    # Products
    def list_products(self, category: Optional[str] = None, page: int = 1, limit: int = 10):
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if category:
            params["category"] = category
        r = self.session.get(self._url("/products"), params=params, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def get_product(self, product_id: str):
        r = self.session.get(self._url(f"/products/{product_id}"), timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def create_product(self, name: str, price: float, category: str, stock: int = 0, description: Optional[str] = None, images=None):
        r = self.session.post(self._url("/products"), json={
            "name": name, "price": price, "category": category, "stock": stock,
            "description": description, "images": images or [],
        }, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    # Orders
    def create_order(self, payload: Dict[str, Any]):
        # no raise_for_status: callers inspect 400/404 bodies
        return self.session.post(self._url("/orders"), json=payload, timeout=self.timeout)

    async def create_order_async(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self._url("/orders"), json=payload, headers=headers)

    def list_orders(self, page: int = 1, limit: int = 10):
        r = self.session.get(self._url("/orders"), params={"page": page, "limit": limit}, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def get_order(self, order_id: str):
        r = self.session.get(self._url(f"/orders/{order_id}"), timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def cancel_order(self, order_id: str, reason: Optional[str] = None):
        return self.session.put(self._url(f"/orders/{order_id}/cancel"), json={"reason": reason}, timeout=self.timeout)

    def update_order_status(self, order_id: str, status: str, notes: Optional[str] = None):
        r = self.session.put(self._url(f"/orders/{order_id}/status"), json={"status": status, "notes": notes}, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def list_all_orders(self, status: Optional[str] = None, payment_status: Optional[str] = None, page: int = 1, limit: int = 10):
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        if payment_status:
            params["paymentStatus"] = payment_status
        r = self.session.get(self._url("/orders/admin/all"), params=params, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    # Users (admin)
    def list_users(self, page: int = 1, limit: int = 10):
        r = self.session.get(self._url("/users"), params={"page": page, "limit": limit}, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def get_user(self, user_id: str):
        r = self.session.get(self._url(f"/users/{user_id}"), timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def create_user(self, name: str, email: str, password: str, role: str = "user"):
        r = self.session.post(self._url("/users"), json={
            "name": name, "email": email, "password": password, "role": role
        }, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def update_user(self, user_id: str, **changes):
        r = self.session.put(self._url(f"/users/{user_id}"), json=changes, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def delete_user(self, user_id: str):
        r = self.session.delete(self._url(f"/users/{user_id}"), timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    # Reset (admin); every token is dropped, log in again afterwards
    def reset(self):
        r = self.session.post(self._url("/reset"), timeout=self.timeout)
        r.raise_for_status()
        return r.json()
