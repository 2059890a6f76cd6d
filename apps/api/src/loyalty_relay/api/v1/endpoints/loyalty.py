"""Synchronous loyalty lookups for checkout clients."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from loyalty_relay.api.dependencies.relay import get_member_resolver, get_voucher_service
from loyalty_relay.schemas.loyalty import (
    CalculatePointsRequest,
    CalculatePointsResponse,
    MemberLookupResult,
    RedeemVoucherRequest,
    RedeemVoucherResponse,
    VoucherListResponse,
)
from loyalty_relay.services.errors import RelayValidationError
from loyalty_relay.services.loyalty.member_resolver import MemberResolver
from loyalty_relay.services.loyalty.points import calculate_points
from loyalty_relay.services.loyalty.vouchers import VoucherService

router = APIRouter(prefix="/loyalty", tags=["loyalty"])


@router.get("/member/lookup", response_model=MemberLookupResult)
async def lookup_member(
    phone: str | None = Query(default=None),
    email: str | None = Query(default=None),
    member_number: str | None = Query(default=None, alias="memberNumber"),
    resolver: MemberResolver = Depends(get_member_resolver),
) -> MemberLookupResult:
    """Membership number wins over phone, phone over email."""

    if member_number:
        return await resolver.lookup_by_number(member_number)
    if phone:
        return await resolver.lookup_by_phone(phone)
    if email:
        return await resolver.lookup_by_email(email)
    raise RelayValidationError(
        "Please provide phone, email, or memberNumber",
        fields={"query": "one of phone, email or memberNumber is required"},
    )


@router.get("/member/{member_id}/vouchers", response_model=VoucherListResponse)
async def list_vouchers(
    member_id: str,
    vouchers: VoucherService = Depends(get_voucher_service),
) -> VoucherListResponse:
    return VoucherListResponse(vouchers=await vouchers.list_available(member_id))


@router.post("/member/redeem-voucher", response_model=RedeemVoucherResponse)
async def redeem_voucher(
    payload: RedeemVoucherRequest,
    vouchers: VoucherService = Depends(get_voucher_service),
) -> RedeemVoucherResponse:
    success = await vouchers.redeem(payload.voucher_id, payload.transaction_id)
    return RedeemVoucherResponse(
        success=success,
        message="Voucher redeemed successfully" if success else "Failed to redeem voucher",
    )


@router.post("/calculate-points", response_model=CalculatePointsResponse)
async def calculate(payload: CalculatePointsRequest) -> CalculatePointsResponse:
    return CalculatePointsResponse(calculation=calculate_points(payload.amount))
