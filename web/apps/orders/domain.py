"""Domain models, errors and ports for the cart and checkout flow.

This module contains the dataclasses used as entities and DTOs for catalog
items, orders and their line items, the exception taxonomy raised by the
order services, and protocol definitions (ports) for the collaborators the
services depend on: the catalog, the order store, the payment gateway, the
receipt document renderer and the change-audit log.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ContextManager, List, Optional, Protocol
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---- Enums ----
class OrderStatus(str, Enum):
    """Enumeration of the possible order statuses.

    ``OPEN`` orders act as the shopper's cart. ``PAID`` and ``CANCELLED``
    are terminal for checkout; ``SHIPPED`` is owned by fulfilment.
    """

    OPEN = "Open"
    CHECKOUT = "Checkout"
    PAID = "Paid"
    SHIPPED = "Shipped"
    CANCELLED = "Cancelled"


# ---- Errors ----
class OrderError(Exception):
    """Base class for failures raised by the order services.

    ``str(error)`` is always the short error code so callers (and the HTTP
    layer) can map it without parsing messages. A human readable explanation
    is kept in ``detail``.
    """

    code = "ORDER_ERROR"

    def __init__(self, detail: str | None = None):
        super().__init__(self.code)
        self.detail = detail or self.code


class InvalidArgument(OrderError):
    code = "INVALID_ARGUMENT"


class NotFound(OrderError):
    code = "NOT_FOUND"


class OutOfStock(OrderError):
    code = "OUT_OF_STOCK"


class PersistenceError(OrderError):
    """A store write affected no rows or violated a constraint."""

    code = "PERSISTENCE_ERROR"


class ConcurrencyConflict(PersistenceError):
    """The row changed since it was loaded (version mismatch)."""

    code = "CONCURRENCY_CONFLICT"


class InvalidTransition(OrderError):
    code = "INVALID_TRANSITION"


class GatewayUnavailable(OrderError):
    """The payment gateway could not be reached or timed out."""

    code = "GATEWAY_UNAVAILABLE"


# ---- Entities ----
@dataclass
class Item:
    """A catalog product as seen by the order flow.

    Attributes:
        id: Catalog identifier.
        alias: Unique, URL friendly key used to look the item up.
        name: Display name.
        price: Unit price in integer minor units.
        stock: Units currently available. Never negative.
        discount: Discount percentage stored with the product.
        version: Optimistic concurrency token bumped on every stock write.
    """

    id: int | None
    alias: str
    name: str
    price: int
    stock: int
    discount: int = 0
    version: int = 0


@dataclass(frozen=True)
class Customer:
    id: int
    name: str


@dataclass
class LineItem:
    """One entry of an order: a quantity of a single item.

    ``price`` and ``discount`` are snapshots taken when the item was first
    added, so later catalog changes do not alter an existing cart.
    """

    id: int | None
    order_id: uuid.UUID | None
    item: Item
    quantity: int
    price: int
    discount: int = 0

    @property
    def total(self) -> int:
        return self.price * self.quantity


@dataclass
class Order:
    """An order and, while ``OPEN``, the shopper's cart.

    Attributes:
        id: Persistent identifier, or None until stored.
        session_key: Cart session the order belongs to. At most one
            ``OPEN`` order exists per session key.
        status: Current OrderStatus.
        created_at: Creation timestamp.
        paid_at: Payment timestamp, set only on the transition to PAID.
        customer: Buyer, if known. Anonymous carts have none.
        line_items: Line items owned by the order.
    """

    id: uuid.UUID | None
    session_key: str
    status: OrderStatus = OrderStatus.OPEN
    created_at: datetime = field(default_factory=utcnow)
    paid_at: datetime | None = None
    customer: Customer | None = None
    line_items: List[LineItem] = field(default_factory=list)

    @property
    def customer_id(self) -> int | None:
        return self.customer.id if self.customer else None

    @property
    def total(self) -> int:
        return sum(line.total for line in self.line_items)

    def line_for(self, alias: str) -> LineItem | None:
        for line in self.line_items:
            if line.item.alias == alias:
                return line
        return None


# ---- Result records ----
@dataclass(frozen=True)
class Receipt:
    """Summary returned after an item is added to the cart."""

    customer_id: int | None
    order_id: uuid.UUID
    item_id: int
    item_name: str
    quantity: int
    sum: int
    created_at: datetime
    paid_at: datetime | None
    price: int
    discount: int


@dataclass(frozen=True)
class LineItemSummary:
    id: int
    quantity: int
    price: int
    item_id: int

    @classmethod
    def from_line_item(cls, line: LineItem) -> "LineItemSummary":
        return cls(id=line.id, quantity=line.quantity, price=line.price, item_id=line.item.id)


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a checkout attempt.

    The sum and ids are those of the order before the transition, so a
    cancelled checkout still reports what was being paid.
    """

    order_id: uuid.UUID
    customer_id: int | None
    sum: int
    status: OrderStatus


@dataclass(frozen=True)
class PaymentOption:
    title: str
    image_url: str
    description: str


@dataclass(frozen=True)
class TerminalTransaction:
    amount: int
    account_ref: str
    invoice_id: str


@dataclass(frozen=True)
class CardDetails:
    """Card transaction payload supplied by the shopper.

    Validated at the HTTP boundary before it reaches the services.
    """

    holder: str
    card_number: str
    expiry_month: int
    expiry_year: int
    cvv: int
    amount: int = 0


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Port describing the catalog operations used by the stock ledger."""

    def get_item_by_alias(self, alias: str) -> Optional[Item]:
        """Return the item with the given alias, or None.

        Inside a unit of work implementations lock the row so the returned
        stock figure stays valid until commit.
        """
        raise NotImplementedError()

    def update_item_stock(self, item: Item) -> None:
        """Persist ``item.stock``.

        Raises:
            ConcurrencyConflict: If ``item.version`` no longer matches the
                stored row.
        """
        raise NotImplementedError()


class OrderStorePort(Protocol):
    """Port describing order persistence.

    Every write raises PersistenceError when it affects no rows. All
    writes issued inside ``atomic()`` commit together or not at all.
    """

    def atomic(self) -> ContextManager: ...

    def get_open_order(self, session_key: str) -> Optional[Order]: ...

    def get_by_id(self, order_id: uuid.UUID) -> Optional[Order]: ...

    def get_by_id_with_line_items(self, order_id: uuid.UUID) -> Optional[Order]: ...

    def get_all(self) -> List[Order]: ...

    def add(self, order: Order) -> None: ...

    def update(self, order: Order) -> None: ...

    def remove(self, order_id: uuid.UUID) -> None: ...

    def get_line_items(self, order_id: uuid.UUID) -> List[LineItem]: ...

    def add_line_item(self, order: Order, line: LineItem) -> None: ...

    def update_line_item(self, line: LineItem) -> None: ...

    def remove_line_item(self, line_id: int) -> None: ...

    def mark_paid(self, order: Order) -> None: ...

    def mark_cancelled(self, order: Order) -> None: ...

    def add_customer(self, name: str) -> Customer:
        """Store a new buyer and return it with its id assigned."""
        ...


class PaymentGatewayPort(Protocol):
    """Port describing the external payment processor.

    Both methods return True when the gateway accepted the payment and
    False when it declined it. Transport failures raise GatewayUnavailable.
    """

    def pay_terminal(self, transaction: TerminalTransaction) -> bool:
        raise NotImplementedError()

    def pay_card(self, card: CardDetails) -> bool:
        raise NotImplementedError()


class DocumentRendererPort(Protocol):
    """Port describing the receipt/invoice document renderer."""

    content_type: str
    extension: str

    def render(self, customer_id: int | None, order_id: uuid.UUID, expiry_date: datetime, total: int) -> bytes:
        raise NotImplementedError()


class AuditLogPort(Protocol):
    """Port receiving before/after snapshots of store mutations."""

    def record(self, action: str, entity_type: str, entity_id: str, before: dict | None, after: dict | None) -> None:
        raise NotImplementedError()
