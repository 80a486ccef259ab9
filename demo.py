#!/usr/bin/env python
# Walk through the order API with the SDK. Start the server first:
#   python -m storefront.main
from storefront.config import settings
from storefront_sdk.client import StorefrontClient


def main():
    admin = StorefrontClient(base_url=settings.api_url)

    # -----------------------------
    # Reset everything for demo
    # -----------------------------
    print("Logging in as admin and resetting store...")
    admin.login(settings.admin_email, settings.admin_password)
    admin.reset()
    admin.login(settings.admin_email, settings.admin_password)

    # -----------------------------
    # Register products
    # -----------------------------
    print("\nRegistering products...")
    watch = admin.create_product("Classic Leather Watch", 1250000, "watches", stock=3)["data"]
    wallet = admin.create_product("Slim Bifold Wallet", 180000, "wallets", stock=10)["data"]
    print(watch)
    print(wallet)

    print("\nListing watches...")
    print(admin.list_products(category="watches"))

    # -----------------------------
    # Customer account
    # -----------------------------
    customer = StorefrontClient(base_url=settings.api_url)
    print("\nRegistering customer...")
    print(customer.register("Alice Example", "alice@example.com", "secret123"))

    # -----------------------------
    # Place order
    # -----------------------------
    print("\nPlacing order...")
    r = customer.create_order({
        "items": [{"product": watch["id"], "quantity": 1}, {"product": wallet["id"], "quantity": 2}],
        "shipping_address": {
            "name": "Alice Example",
            "phone": "+62 812 3456 7890",
            "address": "Jl. Sudirman No. 1",
            "city": "Jakarta",
            "zip_code": "10220",
        },
        "payment_method": "bank_transfer",
    })
    print(r.status_code, r.json())
    order_id = r.json()["data"]["id"]

    print("\nStock after order...")
    print(admin.get_product(watch["id"])["data"]["stock"], admin.get_product(wallet["id"])["data"]["stock"])

    # -----------------------------
    # Cancel and list
    # -----------------------------
    print("\nCancelling order...")
    print(customer.cancel_order(order_id, "changed my mind").json())
    print("\nCustomer orders...")
    print(customer.list_orders())
    print("\nAll orders (admin)...")
    print(admin.list_all_orders())


if __name__ == "__main__":
    main()
