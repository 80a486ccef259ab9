# tests/test_checkout.py
import dataclasses
import json
from datetime import date

import httpx
import pytest

from conftest import run

from storefront.cart import CartStore
from storefront.checkout import (
    CheckoutForm, CheckoutOrchestrator, calculate_discount, compute_totals,
    default_shipping_method, luhn_check, validate_expiry_date, validate_field, validate_form,
)
from storefront.config import settings
from storefront.errors import (
    CheckoutInProgressError, CheckoutValidationError, EmptyCartError,
    InvalidShippingMethodError, OrderNotConfirmedError, OrderSubmissionError,
)

TODAY = date(2026, 10, 19)


@pytest.fixture
def form():
    return CheckoutForm(
        full_name="Alice Example",
        email="alice@example.com",
        phone="+62 812-3456-7890",
        address="Jl. Sudirman No. 1",
        city="Jakarta",
        postal_code="10220",
        shipping_method="regular",
        payment_method="creditCard",
        card_number="4111 1111 1111 1111",
        card_expiry="12/99",
        card_cvv="123",
    )


@pytest.fixture
def filled_cart(cart, product):
    run(cart.add(product))
    return cart


class FakeClient:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.payloads = []

    async def create_order_async(self, payload):
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.response


# ---------------------------
# Pricing
# ---------------------------
def test_totals_regular_shipping():
    totals = compute_totals(400000, "regular")
    assert totals.shipping == 25000
    assert totals.tax == 44000
    assert totals.discount == 0
    assert totals.grand_total == 469000


def test_totals_free_shipping_above_threshold():
    assert default_shipping_method(600000) == "free"
    totals = compute_totals(600000, "free")
    assert totals.shipping == 0
    assert totals.grand_total == 600000 + 66000


def test_free_shipping_needs_threshold():
    assert default_shipping_method(400000) == "regular"
    with pytest.raises(InvalidShippingMethodError):
        compute_totals(400000, "free")


def test_unknown_shipping_method():
    with pytest.raises(InvalidShippingMethodError) as exc:
        compute_totals(400000, "teleport")
    assert exc.value.method == "teleport"


def test_promo_discount_reduces_tax_base():
    totals = compute_totals(400000, "express", "welcome10")
    assert totals.discount == 40000
    assert totals.tax == 39600
    assert totals.grand_total == 360000 + 50000 + 39600


def test_fixed_promo_needs_minimum_subtotal():
    assert calculate_discount(200000, "HEMAT50") == 0
    assert calculate_discount(300000, "HEMAT50") == 50000
    assert calculate_discount(300000, "NOPE") == 0


# ---------------------------
# Form validation
# ---------------------------
def test_luhn():
    assert luhn_check("4111111111111111")
    assert luhn_check("5555555555554444")
    assert not luhn_check("4111111111111112")


def test_expiry_date():
    assert validate_expiry_date("11/26", TODAY)
    assert validate_expiry_date("01/30", TODAY)
    assert not validate_expiry_date("10/26", TODAY)
    assert not validate_expiry_date("13/30", TODAY)
    assert not validate_expiry_date("1/30", TODAY)


def test_field_rules():
    assert validate_field("email", "") == (False, "This field is required")
    assert not validate_field("email", "alice@example")[0]
    assert validate_field("phone", "0812-3456-7890")[0]
    assert not validate_field("phone", "12345")[0]
    assert not validate_field("postal_code", "1234")[0]
    assert not validate_field("card_cvv", "12")[0]
    assert not validate_field("full_name", "Al")[0]
    assert not validate_field("address", "short")[0]


def test_valid_form(form):
    assert validate_form(form, TODAY) == {}


def test_card_fields_only_for_credit_card(form):
    form = form.model_copy(update={"card_number": "", "card_expiry": "", "card_cvv": ""})
    assert set(validate_form(form, TODAY)) == {"card_number", "card_expiry", "card_cvv"}
    bank = form.model_copy(update={"payment_method": "bankTransfer"})
    assert validate_form(bank, TODAY) == {}


# ---------------------------
# Placing orders
# ---------------------------
def test_place_order(filled_cart, ctx, form):
    checkout = CheckoutOrchestrator(filled_cart, ctx, payment_delay=0)
    order = run(checkout.place_order(form))

    assert order.order_id.startswith("ORD-")
    assert order.total == 1250000 + 25000 + 137500
    assert order.payment_method == "Credit Card"
    assert order.submitted is False
    assert order.items[0]["id"] == "w-001"
    assert filled_cart.get_items() == []
    assert checkout.is_processing is False

    saved = json.loads(ctx.get_item(settings.last_order_key))
    assert saved["order_id"] == order.order_id


def test_place_order_uses_applied_promo(filled_cart, ctx, form):
    checkout = CheckoutOrchestrator(filled_cart, ctx, payment_delay=0)
    assert checkout.apply_promo("welcome10") == 125000
    order = run(checkout.place_order(form))
    assert order.promo_code == "WELCOME10"
    assert order.totals.discount == 125000
    assert checkout.promo_code == ""


def test_rejected_promo_is_forgotten(filled_cart, ctx):
    checkout = CheckoutOrchestrator(filled_cart, ctx, payment_delay=0)
    assert checkout.apply_promo("BOGUS") == 0
    assert checkout.promo_code == ""


def test_confirmation_declined(filled_cart, ctx, form):
    checkout = CheckoutOrchestrator(filled_cart, ctx, payment_delay=0)
    shown = []

    def decline(totals):
        shown.append(totals)
        return False

    with pytest.raises(OrderNotConfirmedError):
        run(checkout.place_order(form, confirm=decline))
    assert shown[0].grand_total == 1412500
    assert len(filled_cart.get_items()) == 1
    assert ctx.get_item(settings.last_order_key) is None


def test_async_confirmation(filled_cart, ctx, form):
    checkout = CheckoutOrchestrator(filled_cart, ctx, payment_delay=0)

    async def accept(totals):
        return True

    assert run(checkout.place_order(form, confirm=accept)).order_id


def test_empty_cart_rejected(cart, ctx, form):
    checkout = CheckoutOrchestrator(cart, ctx, payment_delay=0)
    with pytest.raises(EmptyCartError):
        run(checkout.place_order(form))


def test_invalid_form_rejected(filled_cart, ctx, form):
    checkout = CheckoutOrchestrator(filled_cart, ctx, payment_delay=0)
    bad = form.model_copy(update={"email": "nope", "postal_code": ""})
    with pytest.raises(CheckoutValidationError) as exc:
        run(checkout.place_order(bad))
    assert set(exc.value.errors) == {"email", "postal_code"}
    assert len(filled_cart.get_items()) == 1


def test_form_can_be_a_dict(filled_cart, ctx, form):
    checkout = CheckoutOrchestrator(filled_cart, ctx, payment_delay=0)
    order = run(checkout.place_order(form.model_dump()))
    assert order.customer_email == "alice@example.com"


def test_second_order_while_processing(filled_cart, ctx, form):
    checkout = CheckoutOrchestrator(filled_cart, ctx, payment_delay=0)
    checkout.is_processing = True
    with pytest.raises(CheckoutInProgressError):
        run(checkout.place_order(form))


def test_cart_emptied_during_payment(filled_cart, ctx, form):
    checkout = CheckoutOrchestrator(filled_cart, ctx, payment_delay=0)

    async def empty_then_accept(totals):
        await filled_cart.clear()
        return True

    with pytest.raises(EmptyCartError):
        run(checkout.place_order(form, confirm=empty_then_accept))
    assert checkout.is_processing is False


# ---------------------------
# Submitting to the order API
# ---------------------------
SUBMITTING = dataclasses.replace(settings, submit_orders=True)


def test_order_submitted_to_api(filled_cart, ctx, form):
    client = FakeClient(httpx.Response(201, json={"success": True, "data": {"id": "abc123"}}))
    checkout = CheckoutOrchestrator(filled_cart, ctx, client=client, config=SUBMITTING, payment_delay=0)
    order = run(checkout.place_order(form.model_copy(update={"notes": "leave at door"})))

    assert order.submitted is True
    assert order.backend_order_id == "abc123"
    payload = client.payloads[0]
    assert payload["items"] == [{"product": "w-001", "quantity": 1}]
    assert payload["payment_method"] == "midtrans"
    assert payload["shipping_address"]["zip_code"] == "10220"
    assert payload["notes"] == "leave at door"
    assert filled_cart.get_items() == []


def test_rejected_submission_keeps_cart(filled_cart, ctx, form):
    response = httpx.Response(400, json={"success": False, "message": "Insufficient stock for Classic Leather Watch"})
    checkout = CheckoutOrchestrator(filled_cart, ctx, client=FakeClient(response), config=SUBMITTING, payment_delay=0)
    with pytest.raises(OrderSubmissionError) as exc:
        run(checkout.place_order(form))
    assert exc.value.status_code == 400
    assert "Insufficient stock" in str(exc.value)
    assert len(filled_cart.get_items()) == 1
    assert ctx.get_item(settings.last_order_key) is None
    assert checkout.is_processing is False


def test_non_json_error_page_keeps_cart(filled_cart, ctx, form):
    response = httpx.Response(502, text="<html>Bad Gateway</html>")
    checkout = CheckoutOrchestrator(filled_cart, ctx, client=FakeClient(response), config=SUBMITTING, payment_delay=0)
    with pytest.raises(OrderSubmissionError) as exc:
        run(checkout.place_order(form))
    assert exc.value.status_code == 502
    assert str(exc.value) == "order API returned 502"
    assert len(filled_cart.get_items()) == 1
    assert ctx.get_item(settings.last_order_key) is None
    assert checkout.is_processing is False


def test_unreachable_api(filled_cart, ctx, form):
    client = FakeClient(error=httpx.ConnectError("connection refused"))
    checkout = CheckoutOrchestrator(filled_cart, ctx, client=client, config=SUBMITTING, payment_delay=0)
    with pytest.raises(OrderSubmissionError):
        run(checkout.place_order(form))
    assert len(filled_cart.get_items()) == 1


def test_submission_without_client(filled_cart, ctx, form):
    checkout = CheckoutOrchestrator(filled_cart, ctx, config=SUBMITTING, payment_delay=0)
    with pytest.raises(OrderSubmissionError):
        run(checkout.place_order(form))
