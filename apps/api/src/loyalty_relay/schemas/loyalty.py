"""Loyalty-side value objects shared by services and the checkout API."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from loyalty_relay.schemas.common import CamelModel as _CamelModel


class MemberLookupKind(str, Enum):
    PHONE = "phone"
    EMAIL = "email"
    NUMBER = "number"


class LoyaltyMember(_CamelModel):
    member_id: str
    membership_number: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    points_balance: Decimal = Decimal("0")
    tier: str | None = None
    status: str = "Active"


class MemberLookupResult(_CamelModel):
    found: bool
    member: LoyaltyMember | None = None
    error: str | None = None


class PointsCalculation(_CamelModel):
    transaction_amount: Decimal
    base_points: int
    bonus_points: int | None = None
    total_points: int


class LedgerPostingResult(_CamelModel):
    success: bool
    journal_id: str | None = None
    points: int = 0
    new_balance: Decimal | None = None
    duplicate: bool = False
    error: str | None = None
    error_code: str | None = None


class LedgerPosting(_CamelModel):
    """A journal already written for an external transaction reference."""

    journal_id: str
    external_ref: str
    points: int | None = None

    @property
    def has_ledger_line(self) -> bool:
        return self.points is not None


class Voucher(_CamelModel):
    id: str
    voucher_code: str | None = None
    voucher_definition_id: str | None = None
    status: str | None = None
    effective_date: str | None = None
    expiration_date: str | None = None
    face_value: Decimal | None = None
    discount_percent: Decimal | None = None
    type: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Voucher":
        return cls(
            id=record.get("Id"),
            voucher_code=record.get("VoucherCode"),
            voucher_definition_id=record.get("VoucherDefinitionId"),
            status=record.get("Status"),
            effective_date=record.get("EffectiveDate"),
            expiration_date=record.get("ExpirationDate"),
            face_value=record.get("FaceValue"),
            discount_percent=record.get("DiscountPercent"),
            type=record.get("Type"),
        )


class CalculatePointsRequest(BaseModel):
    amount: Decimal = Field(..., ge=0)


class CalculatePointsResponse(BaseModel):
    success: bool = True
    calculation: PointsCalculation


class VoucherListResponse(BaseModel):
    success: bool = True
    vouchers: list[Voucher]


class RedeemVoucherRequest(_CamelModel):
    voucher_id: str = Field(..., min_length=1)
    transaction_id: str = Field(..., min_length=1)


class RedeemVoucherResponse(BaseModel):
    success: bool
    message: str


__all__ = [
    "CalculatePointsRequest",
    "CalculatePointsResponse",
    "LedgerPosting",
    "LedgerPostingResult",
    "LoyaltyMember",
    "MemberLookupKind",
    "MemberLookupResult",
    "PointsCalculation",
    "RedeemVoucherRequest",
    "RedeemVoucherResponse",
    "Voucher",
    "VoucherListResponse",
]
