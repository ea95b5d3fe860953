"""Domain services for the cart, checkout and payment flow.

``OrderService`` assembles the shopper's open order (the cart),
``CheckoutService`` owns the Open -> Paid/Cancelled transitions and the
receipt document, and ``PaymentService`` calls the payment gateway and
hands the outcome to the checkout service. Stock is only ever touched
through ``StockLedger``.

Every service is bound to one cart session key; "the open order" always
means the OPEN order of that session. The services do not handle HTTP or
ORM details; they talk to the ports defined in ``domain``.
"""

import logging
import uuid
from datetime import timedelta
from typing import List, Tuple

from .domain import (
    CardDetails,
    CatalogPort,
    DocumentRendererPort,
    GatewayUnavailable,
    InvalidArgument,
    InvalidTransition,
    Item,
    LineItem,
    LineItemSummary,
    NotFound,
    Order,
    OrderStatus,
    OrderStorePort,
    OutOfStock,
    PaymentGatewayPort,
    PaymentOption,
    PaymentResult,
    Receipt,
    TerminalTransaction,
    utcnow,
)

logger = logging.getLogger("orders.services")

DEFAULT_ACCOUNT_REF = "3fa85f64-5717-4562-b3fc-2c963f66afa6"

PAYMENT_OPTIONS: Tuple[PaymentOption, ...] = (
    PaymentOption(
        title="Bank",
        image_url="https://www.svgrepo.com/show/533463/bank.svg",
        description=(
            "Pay by bank transfer. Download the invoice and pay it at your bank "
            "before its validity date."
        ),
    ),
    PaymentOption(
        title="IBox terminal",
        image_url="https://www.svgrepo.com/show/315644/terminal.svg",
        description=(
            "Pay at a point of sale terminal. The terminal charges the order total "
            "against the store account and confirms the order immediately."
        ),
    ),
    PaymentOption(
        title="Visa",
        image_url="https://www.svgrepo.com/show/473823/visa.svg",
        description="Pay with a Visa credit, debit or prepaid card.",
    ),
)


def _clean_alias(item_alias: str | None) -> str:
    alias = (item_alias or "").strip()
    if not alias:
        raise InvalidArgument("Item alias must not be empty.")
    return alias


class StockLedger:
    """Reserves and releases catalog stock.

    Callers run these inside the order store's unit of work so the stock
    write commits together with the order change it backs.
    """

    def __init__(self, catalog: CatalogPort):
        self.catalog = catalog

    def reserve(self, item: Item, quantity: int = 1) -> None:
        """Take ``quantity`` units of ``item`` out of stock.

        Raises:
            InvalidArgument: If ``quantity`` is not positive.
            OutOfStock: If fewer than ``quantity`` units are available.
            ConcurrencyConflict: If the item changed since it was read.
        """
        if quantity <= 0:
            raise InvalidArgument("Quantity to reserve must be positive.")
        if quantity > item.stock:
            raise OutOfStock(f"Not enough '{item.alias}' in store.")
        item.stock -= quantity
        self.catalog.update_item_stock(item)

    def release(self, item: Item, quantity: int) -> None:
        """Return ``quantity`` units of ``item`` to stock.

        The item is re-read (and locked) first; the copy held by a line item
        may be older than the stored row.
        """
        current = self.catalog.get_item_by_alias(item.alias)
        if current is None:
            raise NotFound(f"Item '{item.alias}' no longer exists.")
        current.stock += quantity
        self.catalog.update_item_stock(current)
        item.stock, item.version = current.stock, current.version


class OrderService:
    """Assembles the open order of one cart session.

    Args:
        orders: OrderStorePort used for persistence.
        catalog: CatalogPort used to resolve items.
        session_key: Cart session this service acts for.
        ledger: Optional StockLedger; built over ``catalog`` when omitted.
    """

    def __init__(self, orders: OrderStorePort, catalog: CatalogPort, session_key: str, ledger: StockLedger | None = None):
        self.orders = orders
        self.catalog = catalog
        self.session_key = session_key
        self.ledger = ledger or StockLedger(catalog)

    def add_item_to_order(self, item_alias: str) -> Receipt:
        """Add one unit of an item to the open order, creating it if needed.

        Adding an item already in the cart increments its line quantity
        instead of creating a second line.

        Raises:
            InvalidArgument: If ``item_alias`` is blank.
            NotFound: If no item has that alias.
            OutOfStock: If the item has no stock left. No order is created.
        """
        alias = _clean_alias(item_alias)

        with self.orders.atomic():
            item = self.catalog.get_item_by_alias(alias)
            if item is None:
                raise NotFound(f"Item '{alias}' not found.")
            if item.stock <= 0:
                raise OutOfStock(f"Not enough '{alias}' in store.")

            order = self.orders.get_open_order(self.session_key)
            if order is None:
                order = Order(id=None, session_key=self.session_key)
                self.orders.add(order)
                logger.info("order opened", extra={"order_id": str(order.id)})

            self.ledger.reserve(item, 1)

            line = order.line_for(alias)
            if line is not None:
                line.quantity += 1
                line.item = item
                self.orders.update_line_item(line)
            else:
                line = LineItem(
                    id=None,
                    order_id=order.id,
                    item=item,
                    quantity=1,
                    price=item.price,
                    discount=item.discount,
                )
                self.orders.add_line_item(order, line)
                order.line_items.append(line)

        logger.info(
            "item added to cart",
            extra={"order_id": str(order.id), "item": alias, "quantity": line.quantity, "stock_left": item.stock},
        )
        return Receipt(
            customer_id=order.customer_id,
            order_id=order.id,
            item_id=item.id,
            item_name=item.name,
            quantity=line.quantity,
            sum=order.total,
            created_at=order.created_at,
            paid_at=order.paid_at,
            price=item.price,
            discount=item.discount,
        )

    def remove_item_from_order(self, item_alias: str) -> None:
        """Remove an item's line from the open order and restock it.

        Raises:
            InvalidArgument: If ``item_alias`` is blank.
            NotFound: If there is no open order or it has no line for the item.
        """
        alias = _clean_alias(item_alias)

        with self.orders.atomic():
            order = self.orders.get_open_order(self.session_key)
            if order is None:
                raise NotFound("There is no open order.")
            line = order.line_for(alias)
            if line is None:
                raise NotFound(f"Can't find order details for the item alias '{alias}' in the open order.")

            self.orders.remove_line_item(line.id)
            self.ledger.release(line.item, line.quantity)

        logger.info(
            "item removed from cart",
            extra={"order_id": str(order.id), "item": alias, "quantity": line.quantity},
        )

    def get_cart_details(self, order_id: uuid.UUID) -> List[LineItemSummary]:
        return [LineItemSummary.from_line_item(li) for li in self.orders.get_line_items(order_id)]

    def get_open_cart_details(self) -> List[LineItemSummary]:
        order = self.orders.get_open_order(self.session_key)
        if order is None:
            return []
        return self.get_cart_details(order.id)

    # -- order history --

    def get_order(self, order_id: uuid.UUID) -> Order:
        order = self.orders.get_by_id_with_line_items(order_id)
        if order is None:
            raise NotFound("Order not found.")
        return order

    def list_orders(self) -> List[Order]:
        return self.orders.get_all()

    def delete_order(self, order_id: uuid.UUID) -> None:
        """Delete an order; an OPEN order returns its stock first."""
        with self.orders.atomic():
            order = self.get_order(order_id)
            if order.status == OrderStatus.OPEN:
                for line in order.line_items:
                    self.ledger.release(line.item, line.quantity)
            self.orders.remove(order.id)


class CheckoutService:
    """Drives the checkout state machine of the open order.

    Open -> Paid when the gateway accepts the payment, Open -> Cancelled
    otherwise. Both targets are terminal here. Cancelling returns the
    order's reserved stock.

    Args:
        orders: OrderStorePort used for persistence.
        ledger: StockLedger used to release stock on cancellation.
        renderer: DocumentRendererPort used for receipt documents.
        session_key: Cart session this service acts for.
        validity_days: Days a bank invoice stays payable.
    """

    def __init__(
        self,
        orders: OrderStorePort,
        ledger: StockLedger,
        renderer: DocumentRendererPort,
        session_key: str,
        validity_days: int = 3,
    ):
        self.orders = orders
        self.ledger = ledger
        self.renderer = renderer
        self.session_key = session_key
        self.validity_days = validity_days

    def _reload_open(self, order: Order) -> Order:
        current = self.orders.get_by_id_with_line_items(order.id)
        if current is None:
            raise NotFound("Order not found.")
        if current.status != OrderStatus.OPEN:
            raise InvalidTransition(f"Order {order.id} is {current.status.value}, expected Open.")
        return current

    def complete(self, order: Order) -> None:
        """Mark an OPEN order as PAID and stamp the payment time."""
        with self.orders.atomic():
            current = self._reload_open(order)
            self.orders.mark_paid(current)
        order.status, order.paid_at = current.status, current.paid_at
        logger.info("order paid", extra={"order_id": str(order.id)})

    def cancel(self, order: Order) -> None:
        """Mark an OPEN order as CANCELLED and release its stock."""
        with self.orders.atomic():
            current = self._reload_open(order)
            for line in current.line_items:
                self.ledger.release(line.item, line.quantity)
            self.orders.mark_cancelled(current)
        order.status, order.paid_at = current.status, None
        logger.info("order cancelled", extra={"order_id": str(order.id)})

    def identify_buyer(self, order: Order, name: str) -> None:
        """Record ``name`` as the buyer of an OPEN order that has none yet."""
        name = (name or "").strip()
        if not name or order.customer is not None:
            return
        with self.orders.atomic():
            current = self._reload_open(order)
            current.customer = self.orders.add_customer(name)
            self.orders.update(current)
        order.customer = current.customer
        logger.info("buyer identified", extra={"order_id": str(order.id), "customer_id": order.customer_id})

    def get_receipt_document(self, order_id: uuid.UUID) -> bytes:
        order = self.orders.get_by_id_with_line_items(order_id)
        if order is None:
            raise NotFound("Order not found.")
        expiry = utcnow() + timedelta(days=self.validity_days)
        return self.renderer.render(order.customer_id, order.id, expiry, order.total)

    def list_payment_options(self) -> List[PaymentOption]:
        return list(PAYMENT_OPTIONS)

    def get_payment_options_with_open_order(self) -> Tuple[Order, List[PaymentOption]]:
        order = self.orders.get_open_order(self.session_key)
        if order is None:
            raise NotFound("There is no open order.")
        return order, self.list_payment_options()


class PaymentService:
    """Pays the open order through the gateway and settles the outcome.

    Exactly one gateway call is made per payment. Any unsuccessful
    outcome, declined or unreachable gateway alike, cancels the order;
    the caller still gets a PaymentResult rather than an exception.
    """

    def __init__(
        self,
        orders: OrderStorePort,
        checkout: CheckoutService,
        gateway: PaymentGatewayPort,
        session_key: str,
        account_ref: str = DEFAULT_ACCOUNT_REF,
    ):
        self.orders = orders
        self.checkout = checkout
        self.gateway = gateway
        self.session_key = session_key
        self.account_ref = account_ref

    def _open_order(self) -> Order:
        order = self.orders.get_open_order(self.session_key)
        if order is None:
            raise NotFound("There is no open order.")
        return order

    def process_terminal_payment(self) -> PaymentResult:
        order = self._open_order()
        transaction = TerminalTransaction(
            amount=order.total,
            account_ref=self.account_ref,
            invoice_id=str(uuid.uuid4()),
        )
        return self._settle(order, "terminal", lambda: self.gateway.pay_terminal(transaction))

    def process_card_payment(self, card: CardDetails) -> PaymentResult:
        """Pay by card; the card holder is recorded as the buyer first."""
        order = self._open_order()
        self.checkout.identify_buyer(order, card.holder)
        return self._settle(order, "card", lambda: self.gateway.pay_card(card))

    def _settle(self, order: Order, method: str, call) -> PaymentResult:
        total = order.total
        try:
            accepted = call()
        except GatewayUnavailable as e:
            logger.warning("payment gateway unavailable", extra={"order_id": str(order.id), "method": method, "error": e.detail})
            accepted = False

        if accepted:
            self.checkout.complete(order)
        else:
            self.checkout.cancel(order)

        return PaymentResult(order_id=order.id, customer_id=order.customer_id, sum=total, status=order.status)
