# tests/test_cart.py
import asyncio
import json
import random
import time

from conftest import record, run

from storefront.cart import CartStore, LOCK_STALE_MS
from storefront.config import settings
from storefront.events import (
    CART_CLEARED, ERROR, ITEM_ADDED, ITEM_REMOVED, ITEM_UPDATED, STORAGE_ERROR,
)
from storefront.models import now_ms
from storefront.storage import MemoryStorage


def stored_items(ctx):
    raw = ctx.get_item(settings.cart_key)
    return json.loads(raw) if raw else []


# ---------------------------
# add
# ---------------------------
def test_add_new_item(cart, ctx, product):
    seen = record(cart, ITEM_ADDED)
    assert run(cart.add({**product, "quantity": 2})) is True
    assert cart.get_item_count() == 2
    assert cart.get_total() == 2 * 1250000

    name, data = seen[0]
    assert data["quantity"] == 2
    assert data["cart"]["count"] == 2
    assert data["cart"]["items_count"] == 1

    assert cart.flush() is True
    assert stored_items(ctx)[0]["id"] == "w-001"


def test_add_without_quantity_defaults_to_one(cart, product):
    run(cart.add(product))
    assert cart.get_item("w-001").quantity == 1


def test_quantity_is_clamped(cart, make_product):
    run(cart.add({**make_product("a"), "quantity": 150}))
    run(cart.add({**make_product("b"), "quantity": 0}))
    run(cart.add({**make_product("c"), "quantity": -5}))
    run(cart.add({**make_product("d"), "quantity": 2.7}))
    assert cart.get_item("a").quantity == 99
    assert cart.get_item("b").quantity == 1
    assert cart.get_item("c").quantity == 1
    assert cart.get_item("d").quantity == 2


def test_duplicate_add_merges_quantities(cart, product):
    async def scenario():
        await cart.add({**product, "quantity": 3})
        await cart.add({**product, "quantity": 5})

    run(scenario())
    items = cart.get_items()
    assert len(items) == 1
    assert items[0].quantity == 8


def test_merge_stops_at_max_quantity(cart, product):
    seen = record(cart, ERROR)

    async def scenario():
        await cart.add({**product, "quantity": 95})
        assert await cart.add({**product, "quantity": 10}) is True
        return await cart.add(product)

    assert run(scenario()) is False
    assert cart.get_item("w-001").quantity == 99
    assert seen[-1][1]["type"] == "max-quantity"
    assert seen[-1][1]["max_quantity"] == 99


def test_cart_full_rejects_new_line(cart, make_product):
    seen = record(cart, ERROR)

    async def fill():
        for i in range(50):
            assert await cart.add(make_product(f"p{i}"))
        return await cart.add(make_product("p50"))

    assert run(fill()) is False
    assert len(cart.get_items()) == 50
    assert seen[-1][1] == {"type": "cart-full", "max_items": 50}


def test_full_cart_still_rejects_existing_product(cart, make_product):
    # capacity is checked before merging, so even a known id is turned away
    cart.max_items = 1
    run(cart.add(make_product("only")))
    assert run(cart.add(make_product("only"))) is False
    assert cart.get_item("only").quantity == 1


def test_invalid_products_are_rejected(cart, product):
    seen = record(cart, ERROR)
    bad = [
        {k: v for k, v in product.items() if k != "image"},
        {**product, "name": "<script>alert(1)</script>"},
        {**product, "name": "click onload=steal()"},
        {**product, "id": "x'; DROP TABLE"},
        {**product, "price": -1},
        {**product, "price": "100"},
        {**product, "price": True},
        {**product, "id": ""},
        "not a product",
    ]
    for candidate in bad:
        assert run(cart.add(candidate)) is False
    assert cart.get_items() == []
    assert all(data["type"] == "invalid-product" for _, data in seen)
    assert len(seen) == len(bad)


def test_add_sanitizes_text_fields(cart, product):
    run(cart.add({**product, "name": "  Nice & <b>bold</b> watch  "}))
    name = cart.get_item("w-001").name
    assert "<" not in name and ">" not in name
    assert "&amp;" in name
    assert not name.startswith(" ")


def test_unparseable_quantity_fails_add(cart, product):
    seen = record(cart, ERROR)
    assert run(cart.add({**product, "quantity": "lots"})) is False
    assert seen[0][1]["type"] == "add-failed"
    assert cart.get_items() == []


def test_lock_held_until_debounced_write_lands(cart, ctx, product):
    async def scenario():
        await cart.add(product)
        assert cart.save_pending
        assert ctx.get_item(settings.lock_key) is not None
        await asyncio.sleep(0.2)

    run(scenario())
    assert ctx.get_item(settings.lock_key) is None
    assert stored_items(ctx)[0]["id"] == "w-001"


def test_own_pending_write_does_not_block_next_call(cart, product, make_product):
    async def scenario():
        await cart.add(product)
        started = time.monotonic()
        await cart.add(make_product("b"))
        await cart.update("w-001", 3)
        return time.monotonic() - started

    assert run(scenario()) < 0.05
    assert cart.get_item("w-001").quantity == 3


def test_flush_releases_held_lock(cart, ctx, product):
    run(cart.add(product))
    assert ctx.get_item(settings.lock_key) is not None
    cart.flush()
    assert ctx.get_item(settings.lock_key) is None


# ---------------------------
# remove / update / clear
# ---------------------------
def test_remove_item(cart, product):
    seen = record(cart, ITEM_REMOVED)
    run(cart.add(product))
    assert run(cart.remove("w-001")) is True
    assert cart.get_items() == []
    assert seen[0][1]["item"].name == "Classic Leather Watch"
    assert seen[0][1]["cart"]["is_empty"] is True


def test_remove_missing_item_reports_not_found(cart):
    seen = record(cart, ERROR)
    assert run(cart.remove("ghost")) is False
    assert seen == [(ERROR, {"type": "not-found", "id": "ghost"})]


def test_update_quantity(cart, product):
    seen = record(cart, ITEM_UPDATED)
    run(cart.add(product))
    assert run(cart.update("w-001", 4)) is True
    assert cart.get_item("w-001").quantity == 4
    assert seen[0][1]["quantity"] == 4
    assert seen[0][1]["cart"]["count"] == 4


def test_update_same_quantity_is_a_no_op(cart, product):
    seen = record(cart, ITEM_UPDATED)
    run(cart.add({**product, "quantity": 3}))
    assert run(cart.update("w-001", 3)) is True
    assert seen == []


def test_update_clamps_and_reports_failures(cart, product):
    errors = record(cart, ERROR)
    run(cart.add(product))
    run(cart.update("w-001", 500))
    assert cart.get_item("w-001").quantity == 99
    run(cart.update("w-001", 0))
    assert cart.get_item("w-001").quantity == 1

    assert run(cart.update("w-001", "abc")) is False
    assert run(cart.update("ghost", 2)) is False
    assert [data["type"] for _, data in errors] == ["update-failed", "not-found"]


def test_update_releases_lock_on_failure(cart, ctx, product):
    run(cart.add(product))
    cart.flush()
    run(cart.update("w-001", "abc"))
    run(cart.update("ghost", 2))
    assert ctx.get_item(settings.lock_key) is None


def test_clear(cart, ctx, make_product):
    seen = record(cart, CART_CLEARED)

    async def scenario():
        await cart.add({**make_product("a"), "quantity": 2})
        await cart.add(make_product("b"))
        return await cart.clear(silent=True)

    assert run(scenario()) is True
    assert cart.get_items() == []
    assert seen[0][1] == {"item_count": 2, "silent": True}
    cart.flush()
    assert stored_items(ctx) == []


def test_mixed_operations_keep_cart_within_limits(cart, ctx, make_product):
    rng = random.Random(7)
    quantities = [1, 5, 50, 99, 150, 0, -3, 2.7, "lots"]

    def check():
        items = cart.get_items()
        assert len(items) <= 50
        assert all(cart.validate_item(i) for i in items)
        assert len({i.id for i in items}) == len(items)

    async def scenario():
        for _ in range(400):
            pid = f"p{rng.randrange(60)}"
            roll = rng.random()
            if roll < 0.55:
                await cart.add({**make_product(pid), "quantity": rng.choice(quantities)})
            elif roll < 0.8:
                await cart.update(pid, rng.choice(quantities))
            elif roll < 0.98:
                await cart.remove(pid)
            else:
                await cart.clear()
            check()

    run(scenario())
    cart.flush()
    assert len(stored_items(ctx)) == len(cart.get_items())
    assert all(1 <= i["quantity"] <= 99 for i in stored_items(ctx))


# ---------------------------
# getters
# ---------------------------
def test_get_items_returns_copies(cart, product):
    run(cart.add({**product, "quantity": 2}))
    items = cart.get_items()
    items[0].quantity = 50
    items.clear()
    copy = cart.get_item("w-001")
    copy.name = "changed"
    assert cart.get_item("w-001").quantity == 2
    assert cart.get_item("w-001").name == "Classic Leather Watch"


def test_summary(cart, make_product):
    async def scenario():
        await cart.add({**make_product("a", price=1000), "quantity": 2})
        await cart.add({**make_product("b", price=500), "quantity": 3})

    run(scenario())
    summary = cart.get_summary()
    assert summary["count"] == 5
    assert summary["items_count"] == 2
    assert summary["total"] == 3500
    assert summary["is_empty"] is False


# ---------------------------
# load & save
# ---------------------------
def test_round_trip_through_storage(storage, cart, product):
    run(cart.add({**product, "quantity": 4}))
    cart.flush()
    other = CartStore(storage.context())
    item = other.get_item("w-001")
    assert item.quantity == 4
    assert item.name == "Classic Leather Watch"
    assert item.price == 1250000


def test_load_discards_unparseable_json(storage, ctx):
    ctx.set_item(settings.cart_key, "not json")
    store = CartStore(ctx)
    assert store.get_items() == []
    assert ctx.get_item(settings.cart_key) is None


def test_load_discards_non_list(storage, ctx):
    ctx.set_item(settings.cart_key, json.dumps({"id": "w-001"}))
    store = CartStore(ctx)
    assert store.get_items() == []
    assert ctx.get_item(settings.cart_key) is None


def test_load_filters_invalid_and_duplicate_items(ctx):
    good = {"id": "a", "name": "A", "price": 10, "image": "a.jpg", "quantity": 2}
    ctx.set_item(settings.cart_key, json.dumps([
        good,
        {**good, "id": "b", "quantity": 0},
        {**good, "id": "c", "quantity": 1.5},
        {**good, "id": "d", "name": "<script>x</script>"},
        {**good, "quantity": 5},
        "junk",
    ]))
    store = CartStore(ctx)
    assert [(i.id, i.quantity) for i in store.get_items()] == [("a", 2)]
    assert [i["id"] for i in stored_items(ctx)] == ["a"]


def test_debounced_writes_collapse(cart, ctx, make_product):
    writes = []
    other = ctx.backend.context()
    other.add_listener(lambda e: writes.append(e) if e.key == settings.cart_key else None)

    async def burst():
        for i in range(5):
            await cart.add(make_product(f"p{i}"))
        assert cart.save_pending
        await asyncio.sleep(0.2)

    run(burst())
    assert len(writes) == 1
    assert len(json.loads(writes[0].new_value)) == 5


def test_quota_error_is_reported():
    storage = MemoryStorage(quota_bytes=150)
    store = CartStore(storage.context())
    seen = record(store, STORAGE_ERROR)
    product = {"id": "big", "name": "x" * 200, "price": 1, "image": "big.jpg"}

    assert run(store.add(product)) is True
    assert store.flush() is False
    assert seen[0][1]["type"] == "quota"
    assert storage.get_item(settings.cart_key) is None


# ---------------------------
# lock
# ---------------------------
def test_free_lock_is_taken_immediately(cart, ctx):
    assert run(cart.acquire_lock()) is True
    assert abs(int(ctx.get_item(settings.lock_key)) - now_ms()) < 1000
    cart.release_lock()
    assert ctx.get_item(settings.lock_key) is None


def test_stale_lock_is_taken_over(cart, ctx):
    ctx.set_item(settings.lock_key, str(now_ms() - LOCK_STALE_MS - 1000))
    started = time.monotonic()
    assert run(cart.acquire_lock()) is True
    assert time.monotonic() - started < 0.5
    assert now_ms() - int(ctx.get_item(settings.lock_key)) < 1000


def test_unreadable_lock_token_counts_as_stale(cart, ctx):
    ctx.set_item(settings.lock_key, "garbage")
    started = time.monotonic()
    assert run(cart.acquire_lock()) is True
    assert time.monotonic() - started < 0.5


def test_fresh_lock_is_forced_after_timeout(cart, ctx):
    old = now_ms()
    ctx.set_item(settings.lock_key, str(old))
    started = time.monotonic()
    assert run(cart.acquire_lock(timeout_ms=200)) is True
    assert time.monotonic() - started >= 0.15
    assert int(ctx.get_item(settings.lock_key)) >= old


# ---------------------------
# listeners
# ---------------------------
def test_failing_listener_does_not_stop_others(cart, product):
    seen = []

    def broken(data):
        raise RuntimeError("boom")

    cart.on(ITEM_ADDED, broken)
    cart.on(ITEM_ADDED, lambda data: seen.append(data["quantity"]))
    assert run(cart.add(product)) is True
    assert seen == [1]


def test_unsubscribe(cart, product):
    seen = []
    unsubscribe = cart.on(ITEM_ADDED, seen.append)
    unsubscribe()
    run(cart.add(product))
    assert seen == []
    assert cart.events.listener_count(ITEM_ADDED) == 0


def test_non_callable_listener_is_ignored(cart):
    unsubscribe = cart.on(ITEM_ADDED, "nope")
    unsubscribe()
    assert cart.events.listener_count(ITEM_ADDED) == 0
