from __future__ import annotations

from decimal import Decimal

from loyalty_relay.services.loyalty.salesforce_client import SalesforceClient, soql_literal


async def fetch_points_balance(client: SalesforceClient, member_id: str) -> Decimal:
    """Sum the member's non-expired ledger lines.

    Read-time aggregation: the balance is never cached, so it cannot drift from
    the ledger. Backend failures propagate as ``ExternalServiceError``.
    """

    records = await client.query(
        "SELECT SUM(Points) balance FROM LoyaltyLedger "
        f"WHERE LoyaltyProgramMemberId = {soql_literal(member_id)} "
        "AND (ExpirationDate = NULL OR ExpirationDate > TODAY)"
    )
    if not records:
        return Decimal("0")
    value = records[0].get("balance")
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


__all__ = ["fetch_points_balance"]
