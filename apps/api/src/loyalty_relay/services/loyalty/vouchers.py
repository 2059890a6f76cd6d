"""Issued-voucher listing and redemption for checkout clients."""

from __future__ import annotations

from loguru import logger

from loyalty_relay.schemas.loyalty import Voucher
from loyalty_relay.services.errors import RelayError
from loyalty_relay.services.loyalty.salesforce_client import SalesforceClient, soql_literal


class VoucherService:
    def __init__(self, client: SalesforceClient) -> None:
        self._client = client

    async def list_available(self, member_id: str) -> list[Voucher]:
        """Vouchers currently usable by the member; empty on backend failure."""

        try:
            records = await self._client.query(
                "SELECT Id, VoucherCode, VoucherDefinitionId, Status, "
                "EffectiveDate, ExpirationDate, FaceValue, DiscountPercent, Type "
                "FROM Voucher "
                f"WHERE LoyaltyProgramMemberId = {soql_literal(member_id)} "
                "AND Status = 'Issued' "
                "AND EffectiveDate <= TODAY "
                "AND (ExpirationDate = NULL OR ExpirationDate >= TODAY)"
            )
        except RelayError as exc:
            logger.error("Error fetching available vouchers", member_id=member_id, error=str(exc))
            return []
        return [Voucher.from_record(record) for record in records]

    async def redeem(self, voucher_id: str, transaction_id: str) -> bool:
        try:
            await self._client.update("Voucher", voucher_id, {"Status": "Redeemed"})
        except RelayError as exc:
            logger.error(
                "Error redeeming voucher",
                voucher_id=voucher_id,
                transaction_id=transaction_id,
                error=str(exc),
            )
            return False
        logger.info("Voucher redeemed", voucher_id=voucher_id, transaction_id=transaction_id)
        return True


__all__ = ["VoucherService"]
