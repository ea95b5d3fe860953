"""SQLAlchemy repository for sandbox gateway transactions.

This module records every payment the sandbox gateway answers, approved or
declined, together with the payment method and a non-sensitive reference
(the terminal invoice id, or the last four digits of a card). It also keeps
idempotency records so retried requests map to the transaction created by
the first attempt.

Database connection parameters are read from the ``DATABASE_URL``
environment variable, defaulting to a local SQLite file suitable for
development.
"""

import os
import uuid
import hashlib
import json
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine, Integer, String, Boolean, BigInteger, DateTime, Uuid, select
from sqlalchemy.orm import DeclarativeBase, mapped_column, Session
from sqlalchemy import UniqueConstraint

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./payment_gateway.db")
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=_connect_args)


class Base(DeclarativeBase):
    pass


class Transaction(Base):
    """SQLAlchemy model representing a gateway transaction.

    Attributes:
        id: Public UUID primary key returned to clients.
        internal_id: Internal monotonically increasing identifier.
        method: ``terminal`` or ``card``.
        amount: Amount in minor units as sent by the client.
        reference: Invoice id for terminal payments, masked card number
            for card payments.
        approved: Whether the gateway accepted the payment.
        created_at: When the transaction was recorded.
    """

    __tablename__ = "transactions"

    id = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Internal incremental id
    internal_id = mapped_column(BigInteger, unique=True, nullable=True)

    method = mapped_column(String(16), nullable=False)
    amount = mapped_column(Integer, nullable=False)
    reference = mapped_column(String(64), nullable=False, default="")
    approved = mapped_column(Boolean, default=False, nullable=False)
    created_at = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)


def canonical_hash(payload: dict) -> str:
    """SHA-256 of ``payload`` as sorted, compact JSON.

    Used to tell a retried payment request apart from a different request
    that reuses the same idempotency key.
    """
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


class IdempotencyKey(Base):
    """Idempotency key sent by the storefront, bound to one transaction.

    ``transaction_id`` stays empty between claiming the key and recording
    the transaction.
    """

    __tablename__ = "idempotency_keys"
    key = mapped_column(String(200), primary_key=True)
    request_hash = mapped_column(String(64), nullable=False)
    transaction_id = mapped_column(Uuid(as_uuid=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("key", name="ux_idempotency_key"),
    )


def init_db() -> None:
    Base.metadata.create_all(engine)


@contextmanager
def get_session():
    with Session(engine) as s:
        yield s


def _next_internal_id(session: Session) -> int:
    # locks the newest row so concurrent inserts number sequentially
    last = (
        session.execute(
            select(Transaction)
            .order_by(Transaction.internal_id.desc())
            .with_for_update(skip_locked=False)
            .limit(1)
        )
        .scalars()
        .first()
    )
    return 1 if not last or last.internal_id is None else last.internal_id + 1


class TransactionsRepo:
    """Repository for recording and reading gateway transactions."""

    def create_tx(self, method: str, amount: int, reference: str, approved: bool) -> uuid.UUID:
        """Create and persist a new transaction.

        Args:
            method: ``terminal`` or ``card``.
            amount: Amount in minor units.
            reference: Non-sensitive reference for the payment.
            approved: Whether the payment was accepted.

        Returns:
            uuid.UUID: The public UUID of the created transaction.
        """
        with get_session() as s:
            nid = _next_internal_id(s)
            tx = Transaction(
                internal_id=nid,
                method=method,
                amount=amount,
                reference=reference,
                approved=approved,
            )
            s.add(tx)
            s.commit()
            return tx.id

    def get(self, tx_id: uuid.UUID) -> Transaction | None:
        with get_session() as s:
            return s.get(Transaction, tx_id)
