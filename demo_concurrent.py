#!/usr/bin/env python
# Two "tabs" sharing one cart: adds of the same product from different tabs
# merge, each tab hears about the other's writes, and a lock left behind by
# a dead tab only delays the next writer.
import asyncio
import time

from storefront.cart import CartStore
from storefront.events import CART_SYNCED, ERROR, ITEM_ADDED
from storefront.storage import MemoryStorage

PRODUCT = {"id": "w-001", "name": "Classic Leather Watch", "price": 1250000, "image": "assets/watch1.jpg"}
CHRONO = {"id": "w-002", "name": "Steel Chronograph", "price": 2300000, "image": "assets/watch2.jpg"}


def watch_tab(name: str, cart: CartStore):
    cart.on(ITEM_ADDED, lambda d: print(f"✅ [{name}] added {d['quantity']} x {d['product']['name']}"))
    cart.on(CART_SYNCED, lambda d: print(f"🔄 [{name}] synced: {[(i.id, i.quantity) for i in d['items']]}"))
    cart.on(ERROR, lambda d: print(f"❌ [{name}] error: {d['type']}"))


async def main():
    storage = MemoryStorage()
    tab_a = CartStore(storage.context())
    tab_b = CartStore(storage.context())
    watch_tab("tab A", tab_a)
    watch_tab("tab B", tab_b)

    print("\n⚡ Both tabs add the same product...")
    await asyncio.gather(
        tab_a.add({**PRODUCT, "quantity": 3}),
        tab_b.add({**PRODUCT, "quantity": 5}),
    )
    await asyncio.sleep(0.15)

    print("\n🔒 A lock left behind by a crashed tab is taken over once stale...")
    storage.set_item(tab_a.lock_key, "0")
    await tab_b.add({**CHRONO, "quantity": 1})

    print("\n⏳ A lock that is still fresh is forced after the timeout...")
    await tab_a.acquire_lock()
    started = time.monotonic()
    await tab_b.add({**CHRONO, "quantity": 1})
    print(f"   tab B waited {time.monotonic() - started:.1f}s")

    for cart in (tab_a, tab_b):
        cart.close()

    # a fresh context sees the merged result
    fresh = CartStore(storage.context())
    print("\n📦 Final cart:", [(i.id, i.quantity) for i in fresh.get_items()])
    print("🧮 Items:", fresh.get_item_count(), "Total:", fresh.get_total())
    fresh.close()


if __name__ == "__main__":
    asyncio.run(main())
