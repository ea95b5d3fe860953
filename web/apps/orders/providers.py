"""Service provider helpers for wiring the order services with ports.

The factories here pick the port implementations from settings:

- ``settings.ORDER_STORE_BACKEND`` selects the order store and catalog:
  ``"django"`` (default) for the ORM repositories, ``"memory"`` for the
  process-local in-memory store.
- ``settings.USE_HTTP_ADAPTERS`` selects the payment gateway: the httpx
  client when truthy, the in-process stub otherwise.

Views call these per request with the request's cart session key.
"""

from django.conf import settings

from .adapters import (
    InMemoryCatalog,
    InMemoryOrderRepository,
    InMemoryStorage,
    PaymentGatewayStub,
    PlainTextReceiptRenderer,
)
from .audit import DatabaseAuditLog, LoggingAuditLog
from .http_adapters import HttpPaymentGatewayClient
from .repository import DjangoCatalogRepository, DjangoOrderRepository
from .services import DEFAULT_ACCOUNT_REF, CheckoutService, OrderService, PaymentService, StockLedger

# Shared by every request of this process when the memory backend is active
MEMORY_STORAGE = InMemoryStorage()


def _use_memory() -> bool:
    return getattr(settings, "ORDER_STORE_BACKEND", "django") == "memory"


def get_order_store():
    if _use_memory():
        return InMemoryOrderRepository(MEMORY_STORAGE, audit=LoggingAuditLog())
    return DjangoOrderRepository(audit=DatabaseAuditLog())


def get_catalog():
    if _use_memory():
        return InMemoryCatalog(MEMORY_STORAGE)
    return DjangoCatalogRepository()


def get_payment_gateway(idempotency_key: str | None = None):
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpPaymentGatewayClient(idempotency_key=idempotency_key)
    return PaymentGatewayStub()


def get_order_service(session_key: str) -> OrderService:
    """Return an OrderService bound to ``session_key``."""
    return OrderService(orders=get_order_store(), catalog=get_catalog(), session_key=session_key)


def get_checkout_service(session_key: str) -> CheckoutService:
    return CheckoutService(
        orders=get_order_store(),
        ledger=StockLedger(get_catalog()),
        renderer=PlainTextReceiptRenderer(),
        session_key=session_key,
        validity_days=getattr(settings, "RECEIPT_VALIDITY_DAYS", 3),
    )


def get_payment_service(session_key: str, idempotency_key: str | None = None) -> PaymentService:
    """Return a PaymentService bound to ``session_key``.

    Args:
        session_key: Cart session whose open order will be paid.
        idempotency_key: Optional key forwarded to the HTTP gateway.
    """
    orders = get_order_store()
    checkout = CheckoutService(
        orders=orders,
        ledger=StockLedger(get_catalog()),
        renderer=PlainTextReceiptRenderer(),
        session_key=session_key,
        validity_days=getattr(settings, "RECEIPT_VALIDITY_DAYS", 3),
    )
    return PaymentService(
        orders=orders,
        checkout=checkout,
        gateway=get_payment_gateway(idempotency_key),
        session_key=session_key,
        account_ref=getattr(settings, "PAYMENT_ACCOUNT_REF", DEFAULT_ACCOUNT_REF),
    )
