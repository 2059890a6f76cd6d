"""POS transaction and customer payloads."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import ConfigDict, Field

from loyalty_relay.schemas.common import CamelModel, to_camel


class _CamelModel(CamelModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="allow")


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    VOIDED = "voided"
    REFUNDED = "refunded"


class PosModifier(_CamelModel):
    modifier_id: str
    modifier_name: str
    price: Decimal = Decimal("0")


class PosLineItem(_CamelModel):
    item_id: str
    item_name: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    total_price: Decimal = Decimal("0")
    category_id: str | None = None
    category_name: str | None = None
    modifiers: list[PosModifier] = Field(default_factory=list)


class PosTransaction(_CamelModel):
    """A completed, voided or refunded sale as pushed by the POS.

    Only ``status`` ever changes after the POS emits a transaction.
    """

    transaction_id: str = Field(..., min_length=1)
    store_id: str = Field(..., min_length=1)
    total_amount: Decimal
    status: TransactionStatus
    terminal_id: str | None = None
    timestamp: str | None = None
    customer_id: str | None = None
    customer_phone: str | None = None
    customer_email: str | None = None
    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    tip: Decimal | None = None
    discount: Decimal | None = None
    payment_method: str | None = None
    items: list[PosLineItem] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PosVoidNotice(_CamelModel):
    """Void event body; the POS only guarantees the transaction id."""

    transaction_id: str = Field(..., min_length=1)
    store_id: str | None = None
    total_amount: Decimal | None = None
    status: TransactionStatus | None = None
    customer_id: str | None = None
    customer_phone: str | None = None
    customer_email: str | None = None

    @property
    def needs_hydration(self) -> bool:
        return self.total_amount is None or not (self.customer_phone or self.customer_email)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PosCustomer(_CamelModel):
    customer_id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    loyalty_number: str | None = None


__all__ = [
    "PosCustomer",
    "PosLineItem",
    "PosModifier",
    "PosTransaction",
    "PosVoidNotice",
    "TransactionStatus",
]
