"""HTTP adapter client for the external payment gateway.

This module implements the ``PaymentGatewayPort`` using ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from a ContextVar set by
    the gateway middleware.
- Payments idempotency: an ``Idempotency-Key`` (set by the view through the
    provider) is forwarded so the gateway can deduplicate retried requests.
- A single attempt per payment with a configurable timeout. Retrying a
    payment is the shopper's decision, so transport errors are surfaced as
    ``GatewayUnavailable`` and non-2xx answers as a declined payment.
"""

import logging
from typing import Optional

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from .domain import CardDetails, GatewayUnavailable, PaymentGatewayPort, TerminalTransaction

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")

logger = logging.getLogger("orders.payment_gateway")


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras.

    Reads the request id from the ContextVar populated by middleware and
    adds it as ``X-Request-ID`` when present. Then applies any extra headers
    provided by the caller.

    Args:
        extra: Optional dict of additional headers to include.

    Returns:
        dict: Final headers dictionary for the outgoing request.
    """
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


# ---------------- Payment Gateway Adapter ---------------- #

class HttpPaymentGatewayClient(PaymentGatewayPort):
    """HTTP client for the payment gateway's terminal and card endpoints.

    Notes:
        ``idempotency_key`` is optional; when set it is sent as the
        ``Idempotency-Key`` header on every call made by this instance.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None, idempotency_key: str | None = None):
        self.base_url = (base_url or settings.PAYMENT_GATEWAY_BASE_URL).rstrip("/")
        self.timeout = timeout or getattr(settings, "PAYMENT_GATEWAY_TIMEOUT_SECS", 30.0)
        self.idempotency_key = idempotency_key

    def pay_terminal(self, transaction: TerminalTransaction) -> bool:
        """Charge the store account through a payment terminal.

        Args:
            transaction: Amount, account reference and invoice number.

        Returns:
            bool: True on a 2xx answer, False on any other status.

        Raises:
            GatewayUnavailable: On network errors or timeouts.
        """
        payload = {
            "amount": transaction.amount,
            "accountRef": transaction.account_ref,
            "invoiceId": transaction.invoice_id,
        }
        return self._post("/payments/terminal", payload)

    def pay_card(self, card: CardDetails) -> bool:
        """Charge a card.

        Args:
            card: Card transaction payload supplied by the shopper.

        Returns:
            bool: True on a 2xx answer, False on any other status.

        Raises:
            GatewayUnavailable: On network errors or timeouts.
        """
        payload = {
            "amount": card.amount,
            "holder": card.holder,
            "cardNumber": card.card_number,
            "expiryMonth": card.expiry_month,
            "expiryYear": card.expiry_year,
            "cvv": card.cvv,
        }
        return self._post("/payments/card", payload)

    def _post(self, path: str, payload: dict) -> bool:
        extras = {}
        if self.idempotency_key:
            extras["Idempotency-Key"] = self.idempotency_key
        headers = _request_headers(extras)

        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(f"{self.base_url}{path}", json=payload, headers=headers or None)
        except httpx.HTTPError as e:
            logger.warning("payment gateway request failed", extra={"path": path, "error": str(e)})
            raise GatewayUnavailable(str(e)) from e

        ok = 200 <= resp.status_code < 300
        logger.info("payment gateway answered", extra={"path": path, "status_code": resp.status_code, "accepted": ok})
        return ok
