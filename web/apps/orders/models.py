import uuid
from django.db import models
from django.db.models import Q
from django.utils import timezone


class CustomerModel(models.Model):
    name = models.CharField(max_length=200)

    class Meta:
        db_table = "customers"


class ItemModel(models.Model):
    # Lookup key used by the cart endpoints
    alias = models.SlugField(max_length=100, unique=True)
    name = models.CharField(max_length=200)
    price = models.PositiveIntegerField(default=0)
    stock = models.PositiveIntegerField(default=0)
    discount = models.PositiveSmallIntegerField(default=0)

    # Bumped on every stock write, see DjangoCatalogRepository.update_item_stock
    version = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "items"


class OrderModel(models.Model):
    # UUID PK expuesto en API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    class Status(models.TextChoices):
        OPEN = "Open"
        CHECKOUT = "Checkout"
        PAID = "Paid"
        SHIPPED = "Shipped"
        CANCELLED = "Cancelled"

    session_key = models.CharField(max_length=64, db_index=True)
    customer = models.ForeignKey(
        CustomerModel, null=True, blank=True, on_delete=models.SET_NULL, related_name="orders"
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.OPEN)
    created_at = models.DateTimeField(default=timezone.now)
    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        constraints = [
            # One cart per session
            models.UniqueConstraint(
                fields=["session_key"],
                condition=Q(status="Open"),
                name="orders_one_open_per_session",
            ),
        ]


class LineItemModel(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="line_items")
    item = models.ForeignKey(ItemModel, on_delete=models.PROTECT, related_name="line_items")
    quantity = models.PositiveIntegerField(default=1)
    price = models.PositiveIntegerField()
    discount = models.PositiveSmallIntegerField(default=0)

    class Meta:
        db_table = "order_line_items"
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(fields=["order", "item"], name="line_items_one_per_item"),
        ]


class ChangeLogModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    action = models.CharField(max_length=16)
    entity_type = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=64, blank=True)
    before = models.JSONField(null=True, blank=True)
    after = models.JSONField(null=True, blank=True)

    class Meta:
        db_table = "change_log"
        ordering = ["id"]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict, blank=True)
    order_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
