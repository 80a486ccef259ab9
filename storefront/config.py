from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=ROOT_DIR / ".env")


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_float(*keys: str, default: float) -> float:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return float(v)


def _get_bool(*keys: str, default: bool = False) -> bool:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "on")


def _get_list(*keys: str, default: str) -> Tuple[str, ...]:
    v = _get_env(*keys, default=default) or ""
    return tuple(part.strip() for part in v.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    storage_path: str
    key_prefix: str
    payment_delay: float
    submit_orders: bool
    api_url: str
    api_token: str
    admin_email: str
    admin_password: str
    log_level: str
    log_dir: str
    cors_origins: Tuple[str, ...]

    # shared storage keys
    @property
    def cart_key(self) -> str:
        return f"{self.key_prefix}_cart"

    @property
    def lock_key(self) -> str:
        return f"{self.key_prefix}_cart_lock"

    @property
    def last_order_key(self) -> str:
        return f"{self.key_prefix}_last_order"

    @property
    def orders_key(self) -> str:
        return f"{self.key_prefix}_orders"


def load_settings() -> Settings:
    return Settings(
        storage_path=_get_env("STOREFRONT_STORAGE_PATH", default=str(ROOT_DIR / "data" / "storage.json")) or "",
        key_prefix=_get_env("STOREFRONT_KEY_PREFIX", default="storefront") or "storefront",
        payment_delay=_get_float("STOREFRONT_PAYMENT_DELAY", default=2.0),
        submit_orders=_get_bool("STOREFRONT_SUBMIT_ORDERS", default=False),
        api_url=_get_env("STOREFRONT_API_URL", "API_URL", default="http://127.0.0.1:8085") or "",
        api_token=_get_env("STOREFRONT_API_TOKEN", default="") or "",
        admin_email=_get_env("STOREFRONT_ADMIN_EMAIL", default="admin@storefront.local") or "",
        admin_password=_get_env("STOREFRONT_ADMIN_PASSWORD", default="admin123") or "",
        log_level=(_get_env("STOREFRONT_LOG_LEVEL", "LOG_LEVEL", default="INFO") or "INFO").upper(),
        log_dir=_get_env("STOREFRONT_LOG_DIR", default=str(ROOT_DIR / "data" / "logs")) or "",
        cors_origins=_get_list("STOREFRONT_CORS_ORIGINS", "CORS_ORIGIN", default="http://localhost:3000"),
    )


settings = load_settings()
