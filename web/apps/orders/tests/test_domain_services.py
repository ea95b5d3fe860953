"""Unit tests for the cart, checkout and payment services.

The services run over the in-memory adapters, so these tests need neither
a database nor a network.
"""
import pytest

from apps.orders.adapters import PlainTextReceiptRenderer
from apps.orders.domain import (
    CardDetails,
    ConcurrencyConflict,
    GatewayUnavailable,
    InvalidArgument,
    InvalidTransition,
    NotFound,
    OrderStatus,
    OutOfStock,
)
from apps.orders.services import CheckoutService, OrderService, PaymentService, StockLedger

CARD = CardDetails(holder="Jane Doe", card_number="4242424242424242", expiry_month=12, expiry_year=2030, cvv=123)


def make_services(order_store, catalog, gateway, session="s1"):
    ledger = StockLedger(catalog)
    orders = OrderService(order_store, catalog, session, ledger=ledger)
    checkout = CheckoutService(order_store, ledger, PlainTextReceiptRenderer(), session)
    payments = PaymentService(order_store, checkout, gateway, session)
    return orders, checkout, payments


def stock_of(catalog, alias):
    return catalog.get_item_by_alias(alias).stock


class UnreachableGateway:
    def __init__(self):
        self.calls = 0

    def pay_terminal(self, transaction):
        self.calls += 1
        raise GatewayUnavailable("connect timeout")

    def pay_card(self, card):
        self.calls += 1
        raise GatewayUnavailable("connect timeout")


# ---- cart assembly ----

def test_add_item_opens_order_and_reserves_stock(order_store, catalog, gateway):
    orders, _, _ = make_services(order_store, catalog, gateway)

    receipt = orders.add_item_to_order("sword")

    assert receipt.item_name == "Sword"
    assert receipt.quantity == 1
    assert receipt.sum == 1500
    assert receipt.paid_at is None
    assert stock_of(catalog, "sword") == 4
    order = order_store.get_open_order("s1")
    assert order.id == receipt.order_id
    assert order.status == OrderStatus.OPEN


def test_adding_same_item_twice_accumulates_one_line(order_store, catalog, gateway):
    orders, _, _ = make_services(order_store, catalog, gateway)

    orders.add_item_to_order("sword")
    receipt = orders.add_item_to_order("sword")

    order = order_store.get_open_order("s1")
    assert len(order.line_items) == 1
    assert order.line_items[0].quantity == 2
    assert receipt.quantity == 2
    assert receipt.sum == 3000
    assert stock_of(catalog, "sword") == 3


def test_receipt_sum_covers_every_line(order_store, catalog, gateway):
    orders, _, _ = make_services(order_store, catalog, gateway)

    orders.add_item_to_order("sword")
    receipt = orders.add_item_to_order("shield")

    assert receipt.sum == 1500 + 900
    # discount is reported, not applied
    assert receipt.discount == 10
    assert receipt.price == 900


def test_out_of_stock_creates_no_order(order_store, catalog, gateway):
    orders, _, _ = make_services(order_store, catalog, gateway)

    with pytest.raises(OutOfStock):
        orders.add_item_to_order("potion")

    assert order_store.get_open_order("s1") is None
    assert stock_of(catalog, "potion") == 0


def test_stock_never_goes_negative(order_store, catalog, gateway):
    orders, _, _ = make_services(order_store, catalog, gateway)

    orders.add_item_to_order("shield")
    orders.add_item_to_order("shield")
    with pytest.raises(OutOfStock):
        orders.add_item_to_order("shield")

    assert stock_of(catalog, "shield") == 0
    assert order_store.get_open_order("s1").line_for("shield").quantity == 2


@pytest.mark.parametrize("alias", ["", "   ", None])
def test_blank_alias_is_rejected(order_store, catalog, gateway, alias):
    orders, _, _ = make_services(order_store, catalog, gateway)
    with pytest.raises(InvalidArgument):
        orders.add_item_to_order(alias)
    with pytest.raises(InvalidArgument):
        orders.remove_item_from_order(alias)


def test_unknown_item_is_not_found(order_store, catalog, gateway):
    orders, _, _ = make_services(order_store, catalog, gateway)
    with pytest.raises(NotFound):
        orders.add_item_to_order("dragon")
    assert order_store.get_open_order("s1") is None


def test_remove_item_returns_its_stock(order_store, catalog, gateway):
    orders, _, _ = make_services(order_store, catalog, gateway)
    orders.add_item_to_order("sword")
    orders.add_item_to_order("sword")

    orders.remove_item_from_order("sword")

    assert stock_of(catalog, "sword") == 5
    assert orders.get_open_cart_details() == []


def test_remove_without_open_order_or_line_is_not_found(order_store, catalog, gateway):
    orders, _, _ = make_services(order_store, catalog, gateway)
    with pytest.raises(NotFound):
        orders.remove_item_from_order("sword")

    orders.add_item_to_order("sword")
    with pytest.raises(NotFound):
        orders.remove_item_from_order("shield")
    assert stock_of(catalog, "shield") == 2


def test_sessions_have_separate_open_orders(order_store, catalog, gateway):
    alice, _, _ = make_services(order_store, catalog, gateway, session="alice")
    bob, _, _ = make_services(order_store, catalog, gateway, session="bob")

    r1 = alice.add_item_to_order("sword")
    r2 = bob.add_item_to_order("sword")

    assert r1.order_id != r2.order_id
    assert stock_of(catalog, "sword") == 3


def test_cart_details_list_line_summaries(order_store, catalog, gateway):
    orders, _, _ = make_services(order_store, catalog, gateway)
    receipt = orders.add_item_to_order("sword")
    orders.add_item_to_order("shield")

    details = orders.get_cart_details(receipt.order_id)

    assert [(d.item_id, d.quantity, d.price) for d in details] == [
        (catalog.get_item_by_alias("sword").id, 1, 1500),
        (catalog.get_item_by_alias("shield").id, 1, 900),
    ]
    assert orders.get_open_cart_details() == details


def test_open_cart_details_empty_without_open_order(order_store, catalog, gateway):
    orders, _, _ = make_services(order_store, catalog, gateway)
    assert orders.get_open_cart_details() == []


def test_line_price_is_snapshot_at_first_add(order_store, catalog, gateway, storage):
    orders, _, _ = make_services(order_store, catalog, gateway)
    orders.add_item_to_order("sword")
    storage.items[catalog.get_item_by_alias("sword").id].price = 9999

    receipt = orders.add_item_to_order("sword")

    assert order_store.get_open_order("s1").line_for("sword").price == 1500
    assert receipt.sum == 3000


# ---- stock ledger ----

def test_ledger_rejects_non_positive_quantity(catalog):
    ledger = StockLedger(catalog)
    item = catalog.get_item_by_alias("sword")
    with pytest.raises(InvalidArgument):
        ledger.reserve(item, 0)


def test_ledger_detects_stale_item(catalog):
    ledger = StockLedger(catalog)
    stale = catalog.get_item_by_alias("sword")
    ledger.reserve(catalog.get_item_by_alias("sword"), 1)

    with pytest.raises(ConcurrencyConflict):
        ledger.reserve(stale, 1)
    assert stock_of(catalog, "sword") == 4


# ---- payments ----

def test_card_payment_scenario(order_store, catalog, gateway):
    orders, _, payments = make_services(order_store, catalog, gateway)
    orders.add_item_to_order("sword")
    orders.add_item_to_order("sword")
    order_id = order_store.get_open_order("s1").id

    result = payments.process_card_payment(CARD)

    assert result.status == OrderStatus.PAID
    assert result.order_id == order_id
    assert result.customer_id is not None
    assert result.sum == 3000
    paid = order_store.get_by_id(order_id)
    assert paid.customer.name == "Jane Doe"
    assert paid.customer_id == result.customer_id
    assert paid.status == OrderStatus.PAID
    assert paid.paid_at is not None
    assert stock_of(catalog, "sword") == 3

    # a fresh cart opens after payment
    receipt = orders.add_item_to_order("shield")
    assert receipt.order_id != order_id
    orders.remove_item_from_order("shield")
    assert stock_of(catalog, "shield") == 2
    assert orders.get_open_cart_details() == []


def test_terminal_payment_charges_order_total(order_store, catalog, gateway):
    orders, _, payments = make_services(order_store, catalog, gateway)
    orders.add_item_to_order("shield")

    result = payments.process_terminal_payment()

    assert result.status == OrderStatus.PAID
    assert gateway.calls == [
        {"method": "terminal", "amount": 900, "invoice_id": gateway.calls[0]["invoice_id"]}
    ]


def test_declined_payment_cancels_and_restocks(order_store, catalog, gateway):
    orders, _, payments = make_services(order_store, catalog, gateway)
    orders.add_item_to_order("sword")
    orders.add_item_to_order("sword")

    result = payments.process_card_payment(
        CardDetails(holder="x", card_number="not-a-card", expiry_month=1, expiry_year=2030, cvv=1)
    )

    assert result.status == OrderStatus.CANCELLED
    assert result.sum == 3000
    cancelled = order_store.get_by_id(result.order_id)
    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.paid_at is None
    assert stock_of(catalog, "sword") == 5
    assert order_store.get_open_order("s1") is None


def test_empty_order_terminal_payment_is_cancelled(order_store, catalog, gateway):
    orders, _, payments = make_services(order_store, catalog, gateway)
    orders.add_item_to_order("sword")
    orders.remove_item_from_order("sword")

    result = payments.process_terminal_payment()

    assert result.status == OrderStatus.CANCELLED
    assert result.sum == 0


def test_unreachable_gateway_cancels_after_one_call(order_store, catalog):
    gateway = UnreachableGateway()
    orders, _, payments = make_services(order_store, catalog, gateway)
    orders.add_item_to_order("sword")

    result = payments.process_terminal_payment()

    assert gateway.calls == 1
    assert result.status == OrderStatus.CANCELLED
    assert stock_of(catalog, "sword") == 5


def test_payment_without_open_order_is_not_found(order_store, catalog, gateway):
    _, _, payments = make_services(order_store, catalog, gateway)
    with pytest.raises(NotFound):
        payments.process_terminal_payment()
    with pytest.raises(NotFound):
        payments.process_card_payment(CARD)
    assert gateway.calls == []


def test_paid_order_cannot_transition_again(order_store, catalog, gateway):
    orders, checkout, payments = make_services(order_store, catalog, gateway)
    orders.add_item_to_order("sword")
    order = order_store.get_open_order("s1")
    payments.process_card_payment(CARD)

    with pytest.raises(InvalidTransition):
        checkout.cancel(order)
    with pytest.raises(InvalidTransition):
        checkout.complete(order)
    assert stock_of(catalog, "sword") == 4


# ---- checkout extras ----

def test_receipt_document(order_store, catalog, gateway):
    orders, checkout, _ = make_services(order_store, catalog, gateway)
    receipt = orders.add_item_to_order("sword")

    text = checkout.get_receipt_document(receipt.order_id).decode("utf-8")

    assert f"Order ID: {receipt.order_id}" in text
    assert "User ID: -" in text
    assert "Sum: 1500" in text
    assert "Validity Date: " in text


def test_receipt_document_unknown_order(order_store, catalog, gateway):
    import uuid

    _, checkout, _ = make_services(order_store, catalog, gateway)
    with pytest.raises(NotFound):
        checkout.get_receipt_document(uuid.uuid4())


def test_payment_options(order_store, catalog, gateway):
    orders, checkout, _ = make_services(order_store, catalog, gateway)
    assert [o.title for o in checkout.list_payment_options()] == ["Bank", "IBox terminal", "Visa"]

    with pytest.raises(NotFound):
        checkout.get_payment_options_with_open_order()

    receipt = orders.add_item_to_order("sword")
    order, options = checkout.get_payment_options_with_open_order()
    assert order.id == receipt.order_id
    assert len(options) == 3


# ---- order history ----

def test_delete_open_order_releases_stock(order_store, catalog, gateway):
    orders, _, _ = make_services(order_store, catalog, gateway)
    receipt = orders.add_item_to_order("sword")

    orders.delete_order(receipt.order_id)

    assert stock_of(catalog, "sword") == 5
    with pytest.raises(NotFound):
        orders.get_order(receipt.order_id)
    assert orders.get_cart_details(receipt.order_id) == []


def test_delete_paid_order_keeps_stock(order_store, catalog, gateway):
    orders, _, payments = make_services(order_store, catalog, gateway)
    receipt = orders.add_item_to_order("sword")
    payments.process_card_payment(CARD)

    orders.delete_order(receipt.order_id)

    assert stock_of(catalog, "sword") == 4
    assert orders.list_orders() == []


def test_list_orders_newest_first(order_store, catalog, gateway):
    orders, _, payments = make_services(order_store, catalog, gateway)
    first = orders.add_item_to_order("sword").order_id
    payments.process_card_payment(CARD)
    second = orders.add_item_to_order("shield").order_id

    listed = orders.list_orders()
    assert {o.id for o in listed} == {first, second}
    assert [o.created_at for o in listed] == sorted((o.created_at for o in listed), reverse=True)
    assert orders.get_order(first).total == 1500


def test_card_without_holder_leaves_buyer_unknown(order_store, catalog, gateway):
    import dataclasses

    orders, _, payments = make_services(order_store, catalog, gateway)
    orders.add_item_to_order("sword")

    result = payments.process_card_payment(dataclasses.replace(CARD, holder="  "))

    assert result.status == OrderStatus.PAID
    assert result.customer_id is None
    assert order_store.get_by_id(result.order_id).customer is None


def test_terminal_payment_has_no_buyer(order_store, catalog, gateway):
    orders, _, payments = make_services(order_store, catalog, gateway)
    orders.add_item_to_order("sword")
    assert payments.process_terminal_payment().customer_id is None


# ---- in-memory store under concurrent requests ----

def test_cart_reads_while_another_session_writes(order_store, catalog, gateway):
    import threading

    writer, _, _ = make_services(order_store, catalog, gateway, session="w")
    reader, _, _ = make_services(order_store, catalog, gateway, session="r")
    reader.add_item_to_order("shield")
    errors = []

    def write():
        try:
            for _ in range(50):
                writer.add_item_to_order("sword")
                writer.remove_item_from_order("sword")
        except Exception as e:
            errors.append(e)

    def read():
        try:
            for _ in range(3000):
                assert len(reader.get_open_cart_details()) == 1
                reader.list_orders()
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=write), threading.Thread(target=read)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert stock_of(catalog, "sword") == 5
