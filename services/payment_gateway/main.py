"""Sandbox payment gateway API built with FastAPI.

This service stands in for the external payment processor during local
development and end-to-end tests. It speaks the same wire contract the
storefront's ``HttpPaymentGatewayClient`` uses:

- ``POST /payments/terminal`` with ``{amount, accountRef, invoiceId}``
- ``POST /payments/card`` with ``{amount, holder, cardNumber, expiryMonth,
  expiryYear, cvv}``

A 200 answer means the payment was accepted; 402 means it was declined.
Payments above ``GATEWAY_DECLINE_ABOVE`` minor units are declined, and card
payments are declined when the card number fails the Luhn check. Every
answered request is recorded through ``repo.TransactionsRepo``.
"""

import os
import uuid
import logging
import time
from typing import Annotated, Optional

from fastapi import FastAPI, HTTPException, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pythonjsonlogger.json import JsonFormatter
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError

from repo import TransactionsRepo, IdempotencyKey, canonical_hash, get_session, init_db, engine

app = FastAPI(title="Sandbox Payment Gateway")

DECLINE_ABOVE = int(os.getenv("GATEWAY_DECLINE_ABOVE", "1000000"))

logger = logging.getLogger("payment_gateway")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # espera activa breve hasta que la DB acepte conexiones
    deadline = time.time() + 30  # 30s
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class TerminalRequest(BaseModel):
    """Request body for a terminal payment.

    Attributes:
        amount: Amount in minor units to charge the account.
        account_ref: Store account the terminal charges.
        invoice_id: Invoice number generated by the caller.
    """
    model_config = ConfigDict(populate_by_name=True)

    amount: int = Field(ge=0)
    account_ref: str = Field(min_length=1, alias="accountRef")
    invoice_id: str = Field(min_length=1, alias="invoiceId")


class CardRequest(BaseModel):
    """Request body for a card payment.

    Attributes:
        amount: Amount in minor units.
        holder: Cardholder name.
        card_number: Card number (digits only).
        expiry_month: Expiration month, 1-12.
        expiry_year: Expiration year, 1960 or later.
        cvv: Card verification value, 1-999.
    """
    model_config = ConfigDict(populate_by_name=True)

    amount: int = Field(ge=0)
    holder: str = ""
    card_number: str = Field(min_length=1, pattern=r"^[0-9]+$", alias="cardNumber")
    expiry_month: int = Field(ge=1, le=12, alias="expiryMonth")
    expiry_year: int = Field(ge=1960, alias="expiryYear")
    cvv: int = Field(ge=1, le=999)


class PaymentResponse(BaseModel):
    """Response body of an answered payment.

    Attributes:
        approved: Whether the payment was accepted.
        transaction_id: UUID of the recorded transaction.
    """
    approved: bool
    transaction_id: uuid.UUID


def luhn_ok(number: str) -> bool:
    """Return True when ``number`` passes the Luhn checksum."""
    total = 0
    for i, ch in enumerate(reversed(number)):
        d = int(ch)
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


def _answer(approved: bool, tx_id: uuid.UUID) -> JSONResponse:
    body = PaymentResponse(approved=approved, transaction_id=tx_id).model_dump(mode="json")
    return JSONResponse(body, status_code=200 if approved else 402)


def _process(method: str, payload: dict, approved: bool, amount: int, reference: str, idempotency_key: Optional[str]):
    """Record a transaction, deduplicating on ``idempotency_key``.

    Without a key every request creates a transaction. With a key, the
    first request creates the transaction and binds it to the key; retries
    with the same payload get the same transaction back; reusing the key
    with a different payload answers 409.
    """
    repo = TransactionsRepo()
    if not idempotency_key:
        tx_id = repo.create_tx(method=method, amount=amount, reference=reference, approved=approved)
        return _answer(approved, tx_id)

    payload_hash = canonical_hash({"method": method, **payload})
    with get_session() as s:
        try:
            s.add(IdempotencyKey(key=idempotency_key, request_hash=payload_hash))
            s.commit()
        except IntegrityError:
            s.rollback()
            rec = s.execute(
                select(IdempotencyKey).where(IdempotencyKey.key == idempotency_key).with_for_update()
            ).scalars().first()
            if not rec:
                raise HTTPException(status_code=500, detail="IDEMPOTENCY_LOOKUP_ERROR")
            if rec.request_hash != payload_hash:
                raise HTTPException(status_code=409, detail="IDEMPOTENCY_CONFLICT")
            if rec.transaction_id:
                tx = repo.get(rec.transaction_id)
                return _answer(tx.approved, tx.id)

        tx_id = repo.create_tx(method=method, amount=amount, reference=reference, approved=approved)
        rec = s.get(IdempotencyKey, idempotency_key)
        rec.transaction_id = tx_id
        s.add(rec)
        s.commit()
        return _answer(approved, tx_id)


@app.get("/health")
def health():
    """Liveness/health probe endpoint."""
    return {"ok": True}


@app.post("/payments/terminal", response_model=PaymentResponse)
def pay_terminal(
    req: TerminalRequest,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Charge the store account through a terminal.

    Returns:
        200 with ``{approved: true, transaction_id}`` when accepted, 402
        with ``approved: false`` when the amount is zero or above the
        decline limit.
    """
    approved = 0 < req.amount <= DECLINE_ABOVE
    return _process(
        "terminal",
        req.model_dump(mode="json"),
        approved,
        req.amount,
        req.invoice_id[:64],
        idempotency_key,
    )


@app.post("/payments/card", response_model=PaymentResponse)
def pay_card(
    req: CardRequest,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Charge a card.

    Returns:
        200 when accepted, 402 when the amount is above the decline limit
        or the card number fails the Luhn check.
    """
    approved = req.amount <= DECLINE_ABOVE and luhn_ok(req.card_number)
    return _process(
        "card",
        req.model_dump(mode="json"),
        approved,
        req.amount,
        f"**** {req.card_number[-4:]}",
        idempotency_key,
    )


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
