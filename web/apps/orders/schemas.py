"""Pydantic schemas for the cart and checkout API.

This module exposes the request validation schema for card payments and
the response schemas used to serialise domain records. Response schemas
read attributes straight from the domain dataclasses.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain import CardDetails, OrderStatus


class CardPaymentIn(BaseModel):
    """Input schema for a card payment.

    Attributes:
        holder: Cardholder name.
        card_number: Card number; must not be blank. Spaces and dashes are
            stripped.
        expiry_month: Expiration month, 1-12.
        expiry_year: Expiration year, 1960 or later.
        cvv: Card verification value, 1-999.
        amount: Transaction amount in minor units, forwarded as given.
    """

    model_config = ConfigDict(populate_by_name=True)

    holder: str = Field(default="", max_length=200)
    card_number: str = Field(min_length=1, max_length=32, alias="cardNumber")
    expiry_month: int = Field(ge=1, le=12, alias="expiryMonth")
    expiry_year: int = Field(ge=1960, alias="expiryYear")
    cvv: int = Field(ge=1, le=999)
    amount: int = Field(default=0, ge=0)

    @field_validator("card_number")
    @classmethod
    def normalize_card_number(cls, v: str) -> str:
        """Strip separators and reject numbers that end up empty.

        Raises:
            ValueError: When nothing but separators or spaces was given.
        """
        v2 = v.replace(" ", "").replace("-", "")
        if not v2:
            raise ValueError("Card number must not be empty")
        return v2

    def to_domain(self) -> CardDetails:
        return CardDetails(
            holder=self.holder,
            card_number=self.card_number,
            expiry_month=self.expiry_month,
            expiry_year=self.expiry_year,
            cvv=self.cvv,
            amount=self.amount,
        )


class _FromDomain(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ReceiptOut(_FromDomain):
    customer_id: int | None = None
    order_id: UUID
    item_id: int
    item_name: str
    quantity: int
    sum: int
    created_at: datetime
    paid_at: datetime | None = None
    price: int
    discount: int


class LineItemSummaryOut(_FromDomain):
    id: int
    quantity: int
    price: int
    item_id: int


class PaymentResultOut(_FromDomain):
    order_id: UUID
    customer_id: int | None = None
    sum: int
    status: OrderStatus


class PaymentOptionOut(_FromDomain):
    title: str
    image_url: str
    description: str


class OrderReadDTO(_FromDomain):
    id: UUID
    status: OrderStatus
    customer_id: int | None = None
    created_at: datetime
    paid_at: datetime | None = None
    total: int
