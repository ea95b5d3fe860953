"""In-process adapters for the orders domain ports.

These adapters implement the catalog, order store, payment gateway and
document renderer ports without a database or any network calls. They are
used by unit tests and by local development when
``settings.ORDER_STORE_BACKEND == "memory"`` or
``settings.USE_HTTP_ADAPTERS`` is off.

The in-memory catalog and order store share one ``InMemoryStorage`` so a
unit of work (``atomic()``) covers stock and order writes together, the
same guarantee the Django repositories get from a database transaction.
Reads always return copies, mirroring a real store where every load
produces fresh objects.
"""

import copy
import functools
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional

from .audit import AuditAction, snapshot
from .domain import (
    AuditLogPort,
    CardDetails,
    ConcurrencyConflict,
    Customer,
    DocumentRendererPort,
    Item,
    LineItem,
    NotFound,
    Order,
    OrderStatus,
    PaymentGatewayPort,
    PersistenceError,
    TerminalTransaction,
    utcnow,
)


class InMemoryStorage:
    """Process-local tables shared by the in-memory catalog and order store.

    ``lock`` is reentrant. Every adapter method holds it, so a read never
    iterates a table another request is changing, and ``atomic()`` holds
    it for the whole unit of work.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self.items: dict[int, Item] = {}
        self.customers: dict[int, Customer] = {}
        self.orders: dict[uuid.UUID, dict] = {}
        self.lines: dict[int, dict] = {}
        self._next_item_id = 1
        self._next_line_id = 1
        self._next_customer_id = 1

    def next_item_id(self) -> int:
        nid = self._next_item_id
        self._next_item_id += 1
        return nid

    def next_line_id(self) -> int:
        nid = self._next_line_id
        self._next_line_id += 1
        return nid

    def next_customer_id(self) -> int:
        nid = self._next_customer_id
        self._next_customer_id += 1
        return nid

    @contextmanager
    def atomic(self):
        """Run a block as a unit of work; restore all tables on error."""
        with self.lock:
            saved = copy.deepcopy((self.items, self.customers, self.orders, self.lines))
            try:
                yield
            except BaseException:
                self.items, self.customers, self.orders, self.lines = saved
                raise

    def clear(self):
        with self.lock:
            self.items.clear()
            self.customers.clear()
            self.orders.clear()
            self.lines.clear()


def _synchronized(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.storage.lock:
            return method(self, *args, **kwargs)
    return wrapper


class InMemoryCatalog:
    """``CatalogPort`` over an ``InMemoryStorage``."""

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    @_synchronized
    def add_item(self, item: Item) -> Item:
        """Seed an item (assigns an id when missing) and return a copy."""
        if item.id is None:
            item.id = self.storage.next_item_id()
        self.storage.items[item.id] = copy.deepcopy(item)
        return copy.deepcopy(item)

    @_synchronized
    def get_item_by_alias(self, alias: str) -> Optional[Item]:
        for item in self.storage.items.values():
            if item.alias == alias:
                return copy.deepcopy(item)
        return None

    @_synchronized
    def update_item_stock(self, item: Item) -> None:
        current = self.storage.items.get(item.id)
        if current is None or current.version != item.version:
            raise ConcurrencyConflict(f"Item '{item.alias}' changed since it was read.")
        current.stock = item.stock
        current.version += 1
        item.version = current.version


class InMemoryOrderRepository:
    """``OrderStorePort`` over an ``InMemoryStorage``.

    Enforces the same constraints as the database schema: one OPEN order
    per session key and one line per (order, item).
    """

    def __init__(self, storage: InMemoryStorage, audit: AuditLogPort | None = None):
        self.storage = storage
        self.audit = audit

    def atomic(self):
        return self.storage.atomic()

    def _record(self, action, entity_type, entity_id, before, after):
        if self.audit is not None:
            self.audit.record(action, entity_type, str(entity_id), before, after)

    def _line(self, rec: dict) -> LineItem:
        return LineItem(
            id=rec["id"],
            order_id=rec["order_id"],
            item=copy.deepcopy(self.storage.items[rec["item_id"]]),
            quantity=rec["quantity"],
            price=rec["price"],
            discount=rec["discount"],
        )

    def _order(self, rec: dict, with_lines: bool = False) -> Order:
        customer_id = rec["customer_id"]
        return Order(
            id=rec["id"],
            session_key=rec["session_key"],
            status=OrderStatus(rec["status"]),
            created_at=rec["created_at"],
            paid_at=rec["paid_at"],
            customer=self.storage.customers.get(customer_id) if customer_id is not None else None,
            line_items=self.get_line_items(rec["id"]) if with_lines else [],
        )

    # -- queries --

    @_synchronized
    def get_open_order(self, session_key: str) -> Optional[Order]:
        for rec in self.storage.orders.values():
            if rec["session_key"] == session_key and rec["status"] == OrderStatus.OPEN.value:
                return self._order(rec, with_lines=True)
        return None

    @_synchronized
    def get_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        rec = self.storage.orders.get(order_id)
        return self._order(rec) if rec else None

    @_synchronized
    def get_by_id_with_line_items(self, order_id: uuid.UUID) -> Optional[Order]:
        rec = self.storage.orders.get(order_id)
        return self._order(rec, with_lines=True) if rec else None

    @_synchronized
    def get_all(self) -> List[Order]:
        recs = sorted(self.storage.orders.values(), key=lambda r: r["created_at"], reverse=True)
        return [self._order(r, with_lines=True) for r in recs]

    @_synchronized
    def get_line_items(self, order_id: uuid.UUID) -> List[LineItem]:
        recs = [r for r in self.storage.lines.values() if r["order_id"] == order_id]
        return [self._line(r) for r in sorted(recs, key=lambda r: r["id"])]

    # -- order writes --

    @_synchronized
    def add(self, order: Order) -> None:
        if order.status == OrderStatus.OPEN and self.get_open_order(order.session_key) is not None:
            raise PersistenceError("Error when adding the order to the database.")
        if order.customer is not None:
            self.storage.customers[order.customer.id] = order.customer
        order.id = order.id or uuid.uuid4()
        self.storage.orders[order.id] = {
            "id": order.id,
            "session_key": order.session_key,
            "status": order.status.value,
            "customer_id": order.customer_id,
            "created_at": order.created_at,
            "paid_at": order.paid_at,
        }
        self._record(AuditAction.CREATE, "Order", order.id, None, snapshot(order))

    @_synchronized
    def update(self, order: Order) -> None:
        rec = self.storage.orders.get(order.id)
        if rec is None:
            raise PersistenceError("Error when updating the order in the database.")
        before = snapshot(self._order(rec, with_lines=True))
        rec.update(status=order.status.value, customer_id=order.customer_id, paid_at=order.paid_at)
        self._record(AuditAction.UPDATE, "Order", order.id, before, snapshot(order))

    @_synchronized
    def remove(self, order_id: uuid.UUID) -> None:
        rec = self.storage.orders.get(order_id)
        if rec is None:
            raise NotFound(f"No order found with the id '{order_id}'.")
        before = snapshot(self._order(rec, with_lines=True))
        del self.storage.orders[order_id]
        for line_id in [k for k, r in self.storage.lines.items() if r["order_id"] == order_id]:
            del self.storage.lines[line_id]
        self._record(AuditAction.DELETE, "Order", order_id, before, None)

    def mark_paid(self, order: Order) -> None:
        order.status = OrderStatus.PAID
        order.paid_at = utcnow()
        self.update(order)

    def mark_cancelled(self, order: Order) -> None:
        order.status = OrderStatus.CANCELLED
        order.paid_at = None
        self.update(order)

    @_synchronized
    def add_customer(self, name: str) -> Customer:
        customer = Customer(id=self.storage.next_customer_id(), name=name)
        self.storage.customers[customer.id] = customer
        self._record(AuditAction.CREATE, "Customer", customer.id, None, snapshot(customer))
        return customer

    # -- line item writes --

    @_synchronized
    def add_line_item(self, order: Order, line: LineItem) -> None:
        if order.id not in self.storage.orders:
            raise PersistenceError("Error when adding the order details to the database.")
        for r in self.storage.lines.values():
            if r["order_id"] == order.id and r["item_id"] == line.item.id:
                raise PersistenceError("Error when adding the order details to the database.")
        line.id = self.storage.next_line_id()
        line.order_id = order.id
        self.storage.lines[line.id] = {
            "id": line.id,
            "order_id": order.id,
            "item_id": line.item.id,
            "quantity": line.quantity,
            "price": line.price,
            "discount": line.discount,
        }
        self._record(AuditAction.CREATE, "LineItem", line.id, None, snapshot(line))

    @_synchronized
    def update_line_item(self, line: LineItem) -> None:
        rec = self.storage.lines.get(line.id)
        if rec is None:
            raise PersistenceError("Error when updating the order details in the database.")
        before = snapshot(self._line(rec))
        rec["quantity"] = line.quantity
        self._record(AuditAction.UPDATE, "LineItem", line.id, before, snapshot(line))

    @_synchronized
    def remove_line_item(self, line_id: int) -> None:
        rec = self.storage.lines.get(line_id)
        if rec is None:
            raise NotFound(f"No order details found with the id '{line_id}'.")
        before = snapshot(self._line(rec))
        del self.storage.lines[line_id]
        self._record(AuditAction.DELETE, "LineItem", line_id, before, None)


class PaymentGatewayStub(PaymentGatewayPort):
    """Stub implementation of ``PaymentGatewayPort``.

    Approves terminal payments with a positive amount and card payments
    whose card number is all digits. Every call is appended to ``calls``
    so tests can assert how many gateway requests were made.
    """

    def __init__(self):
        self.calls: list[dict] = []

    def pay_terminal(self, transaction: TerminalTransaction) -> bool:
        self.calls.append({"method": "terminal", "amount": transaction.amount, "invoice_id": transaction.invoice_id})
        return transaction.amount > 0

    def pay_card(self, card: CardDetails) -> bool:
        self.calls.append({"method": "card", "amount": card.amount, "holder": card.holder})
        return card.card_number.isdigit()


class PlainTextReceiptRenderer(DocumentRendererPort):
    """Renders the bank invoice as a UTF-8 text document."""

    content_type = "text/plain; charset=utf-8"
    extension = "txt"

    def render(self, customer_id: int | None, order_id: uuid.UUID, expiry_date: datetime, total: int) -> bytes:
        lines = [
            f"User ID: {customer_id if customer_id is not None else '-'}",
            f"Order ID: {order_id}",
            f"Validity Date: {expiry_date.isoformat()}",
            f"Sum: {total}",
        ]
        return ("\n".join(lines) + "\n").encode("utf-8")
