"""Repository layer for persisting orders and catalog stock.

This module contains the Django ORM implementations of the ``CatalogPort``
and ``OrderStorePort`` used by the order services. Both repositories map
ORM rows to the domain dataclasses so the services are not coupled to
Django ORM details, and both raise domain errors instead of ORM errors.

Unit of work: ``DjangoOrderRepository.atomic()`` is ``transaction.atomic()``.
Catalog writes issued inside it share the same database transaction, so a
stock reservation and the line item it backs commit together.
"""

import uuid
from typing import List, Optional

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from .audit import AuditAction, snapshot
from .domain import (
    AuditLogPort,
    ConcurrencyConflict,
    Customer,
    Item,
    LineItem,
    NotFound,
    Order,
    OrderStatus,
    PersistenceError,
)
from .models import CustomerModel, ItemModel, LineItemModel, OrderModel


# ---------------- Mappers ---------------- #

def _to_item(obj: ItemModel) -> Item:
    return Item(
        id=obj.id,
        alias=obj.alias,
        name=obj.name,
        price=obj.price,
        stock=obj.stock,
        discount=obj.discount,
        version=obj.version,
    )


def _to_line(obj: LineItemModel) -> LineItem:
    return LineItem(
        id=obj.id,
        order_id=obj.order_id,
        item=_to_item(obj.item),
        quantity=obj.quantity,
        price=obj.price,
        discount=obj.discount,
    )


def _to_order(obj: OrderModel, with_lines: bool = False) -> Order:
    customer = Customer(id=obj.customer.id, name=obj.customer.name) if obj.customer_id else None
    lines = [_to_line(li) for li in obj.line_items.all()] if with_lines else []
    return Order(
        id=obj.id,
        session_key=obj.session_key,
        status=OrderStatus(obj.status),
        created_at=obj.created_at,
        paid_at=obj.paid_at,
        customer=customer,
        line_items=lines,
    )


# ---------------- Catalog ---------------- #

class DjangoCatalogRepository:
    """Catalog lookups and stock writes backed by the ``items`` table."""

    def get_item_by_alias(self, alias: str) -> Optional[Item]:
        """Return the item with ``alias`` or None.

        When called inside an atomic block the row is locked with
        ``SELECT ... FOR UPDATE`` until the transaction ends.
        """
        qs = ItemModel.objects.filter(alias=alias)
        if transaction.get_connection().in_atomic_block:
            qs = qs.select_for_update()
        obj = qs.first()
        return _to_item(obj) if obj else None

    def update_item_stock(self, item: Item) -> None:
        """Persist the item's stock, guarded by its version.

        Raises:
            ConcurrencyConflict: If no row matched the id and version,
                meaning the item was changed or deleted since it was read.
        """
        updated = ItemModel.objects.filter(pk=item.id, version=item.version).update(
            stock=item.stock, version=F("version") + 1
        )
        if updated == 0:
            raise ConcurrencyConflict(f"Item '{item.alias}' changed since it was read.")
        item.version += 1


# ---------------- Orders ---------------- #

class DjangoOrderRepository:
    """Order store backed by the ``orders`` and ``order_line_items`` tables.

    Args:
        audit: Optional AuditLogPort notified after each successful write.
    """

    def __init__(self, audit: AuditLogPort | None = None):
        self.audit = audit

    def atomic(self):
        return transaction.atomic()

    def _orders(self):
        return OrderModel.objects.select_related("customer")

    def _orders_with_lines(self):
        return self._orders().prefetch_related("line_items__item")

    def _record(self, action, entity_type, entity_id, before, after):
        if self.audit is not None:
            self.audit.record(action, entity_type, str(entity_id), before, after)

    # -- queries --

    def get_open_order(self, session_key: str) -> Optional[Order]:
        obj = self._orders_with_lines().filter(session_key=session_key, status=OrderModel.Status.OPEN).first()
        return _to_order(obj, with_lines=True) if obj else None

    def get_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        obj = self._orders().filter(pk=order_id).first()
        return _to_order(obj) if obj else None

    def get_by_id_with_line_items(self, order_id: uuid.UUID) -> Optional[Order]:
        obj = self._orders_with_lines().filter(pk=order_id).first()
        return _to_order(obj, with_lines=True) if obj else None

    def get_all(self) -> List[Order]:
        return [_to_order(o, with_lines=True) for o in self._orders_with_lines().all()]

    def get_line_items(self, order_id: uuid.UUID) -> List[LineItem]:
        qs = LineItemModel.objects.filter(order_id=order_id).select_related("item")
        return [_to_line(li) for li in qs]

    # -- order writes --

    def add(self, order: Order) -> None:
        """Insert a new order row.

        Raises:
            PersistenceError: If the insert violates a constraint, e.g. a
                second OPEN order for the same session key.
        """
        obj = OrderModel(
            id=order.id or uuid.uuid4(),
            session_key=order.session_key,
            status=order.status.value,
            customer_id=order.customer_id,
            created_at=order.created_at,
            paid_at=order.paid_at,
        )
        try:
            # Savepoint so a constraint violation leaves the outer transaction usable
            with transaction.atomic():
                obj.save(force_insert=True)
        except IntegrityError as e:
            raise PersistenceError("Error when adding the order to the database.") from e
        order.id = obj.id
        self._record(AuditAction.CREATE, "Order", order.id, None, snapshot(order))

    def update(self, order: Order) -> None:
        before = snapshot(self.get_by_id_with_line_items(order.id))
        updated = OrderModel.objects.filter(pk=order.id).update(
            status=order.status.value,
            customer_id=order.customer_id,
            paid_at=order.paid_at,
        )
        if updated == 0:
            raise PersistenceError("Error when updating the order in the database.")
        self._record(AuditAction.UPDATE, "Order", order.id, before, snapshot(order))

    def remove(self, order_id: uuid.UUID) -> None:
        existing = self.get_by_id_with_line_items(order_id)
        if existing is None:
            raise NotFound(f"No order found with the id '{order_id}'.")
        deleted, _ = OrderModel.objects.filter(pk=order_id).delete()
        if deleted == 0:
            raise PersistenceError("Error when deleting the order from the database.")
        self._record(AuditAction.DELETE, "Order", order_id, snapshot(existing), None)

    def mark_paid(self, order: Order) -> None:
        order.status = OrderStatus.PAID
        order.paid_at = timezone.now()
        self.update(order)

    def mark_cancelled(self, order: Order) -> None:
        order.status = OrderStatus.CANCELLED
        order.paid_at = None
        self.update(order)

    def add_customer(self, name: str) -> Customer:
        obj = CustomerModel.objects.create(name=name)
        customer = Customer(id=obj.id, name=obj.name)
        self._record(AuditAction.CREATE, "Customer", customer.id, None, snapshot(customer))
        return customer

    # -- line item writes --

    def add_line_item(self, order: Order, line: LineItem) -> None:
        try:
            with transaction.atomic():
                obj = LineItemModel.objects.create(
                    order_id=order.id,
                    item_id=line.item.id,
                    quantity=line.quantity,
                    price=line.price,
                    discount=line.discount,
                )
        except IntegrityError as e:
            raise PersistenceError("Error when adding the order details to the database.") from e
        line.id = obj.id
        line.order_id = order.id
        self._record(AuditAction.CREATE, "LineItem", line.id, None, snapshot(line))

    def update_line_item(self, line: LineItem) -> None:
        before = LineItemModel.objects.select_related("item").filter(pk=line.id).first()
        updated = LineItemModel.objects.filter(pk=line.id).update(quantity=line.quantity)
        if updated == 0:
            raise PersistenceError("Error when updating the order details in the database.")
        self._record(
            AuditAction.UPDATE,
            "LineItem",
            line.id,
            snapshot(_to_line(before)) if before else None,
            snapshot(line),
        )

    def remove_line_item(self, line_id: int) -> None:
        existing = LineItemModel.objects.select_related("item").filter(pk=line_id).first()
        if existing is None:
            raise NotFound(f"No order details found with the id '{line_id}'.")
        before = snapshot(_to_line(existing))
        deleted, _ = LineItemModel.objects.filter(pk=line_id).delete()
        if deleted == 0:
            raise PersistenceError("Error when deleting the order details from the database.")
        self._record(AuditAction.DELETE, "LineItem", line_id, before, None)
