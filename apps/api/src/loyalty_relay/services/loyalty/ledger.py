"""Accrual and redemption postings against the loyalty ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal

from loguru import logger

from loyalty_relay.schemas.loyalty import LedgerPosting, LedgerPostingResult
from loyalty_relay.services.errors import RelayError
from loyalty_relay.services.loyalty.balance import fetch_points_balance
from loyalty_relay.services.loyalty.program import LoyaltyProgram
from loyalty_relay.services.loyalty.salesforce_client import SalesforceClient, soql_literal

INSUFFICIENT_BALANCE = "insufficient_balance"

JournalType = Literal["Accrual", "Redemption"]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class LedgerPoster:
    """Writes journal + ledger-line pairs and re-reads balances.

    The backend offers no cross-object transactions, so a posting is two
    sequential writes. Both operations check the external reference first: a
    journal that already has a line makes the call a no-op, and a journal left
    without its line by an earlier failure only gets the missing line.
    """

    def __init__(self, client: SalesforceClient, program: LoyaltyProgram) -> None:
        self._client = client
        self._program = program

    async def get_points_balance(self, member_id: str) -> Decimal:
        return await fetch_points_balance(self._client, member_id)

    async def find_posting(self, external_ref: str) -> LedgerPosting | None:
        program_id = await self._program.get_id()
        journals = await self._client.query(
            "SELECT Id, ExternalTransactionNumber FROM TransactionJournal "
            f"WHERE ExternalTransactionNumber = {soql_literal(external_ref)} "
            f"AND LoyaltyProgramId = {soql_literal(program_id)} "
            "ORDER BY CreatedDate ASC LIMIT 1"
        )
        if not journals:
            return None
        journal_id = str(journals[0]["Id"])
        lines = await self._client.query(
            "SELECT Id, Points FROM LoyaltyLedger "
            f"WHERE TransactionJournalId = {soql_literal(journal_id)} LIMIT 1"
        )
        points = None
        if lines and lines[0].get("Points") is not None:
            points = abs(int(Decimal(str(lines[0]["Points"]))))
        return LedgerPosting(journal_id=journal_id, external_ref=external_ref, points=points)

    async def award_points(
        self,
        member_id: str,
        points: int,
        transaction_amount: Decimal,
        external_ref: str,
    ) -> LedgerPostingResult:
        existing = await self.find_posting(external_ref)
        if existing is not None and existing.has_ledger_line:
            logger.info(
                "Accrual already posted, skipping",
                member_id=member_id,
                external_ref=external_ref,
                journal_id=existing.journal_id,
            )
            return LedgerPostingResult(
                success=True,
                journal_id=existing.journal_id,
                points=existing.points or 0,
                new_balance=await self.get_points_balance(member_id),
                duplicate=True,
            )

        journal_id = await self._post(
            member_id=member_id,
            journal_type="Accrual",
            event_type="Credit",
            points=points,
            external_ref=external_ref,
            transaction_amount=transaction_amount,
            journal_id=existing.journal_id if existing else None,
        )
        new_balance = await self.get_points_balance(member_id)
        logger.info(
            "Points awarded",
            member_id=member_id,
            points=points,
            transaction_amount=str(transaction_amount),
            external_ref=external_ref,
            new_balance=str(new_balance),
        )
        return LedgerPostingResult(success=True, journal_id=journal_id, points=points, new_balance=new_balance)

    async def redeem_points(self, member_id: str, points: int, external_ref: str) -> LedgerPostingResult:
        existing = await self.find_posting(external_ref)
        if existing is not None and existing.has_ledger_line:
            logger.info(
                "Redemption already posted, skipping",
                member_id=member_id,
                external_ref=external_ref,
                journal_id=existing.journal_id,
            )
            return LedgerPostingResult(
                success=True,
                journal_id=existing.journal_id,
                points=existing.points or 0,
                new_balance=await self.get_points_balance(member_id),
                duplicate=True,
            )

        current_balance = await self.get_points_balance(member_id)
        if current_balance < points:
            logger.warning(
                "Insufficient points balance for redemption",
                member_id=member_id,
                points=points,
                balance=str(current_balance),
                external_ref=external_ref,
            )
            return LedgerPostingResult(
                success=False,
                points=points,
                new_balance=current_balance,
                error="Insufficient points balance",
                error_code=INSUFFICIENT_BALANCE,
            )

        journal_id = await self._post(
            member_id=member_id,
            journal_type="Redemption",
            event_type="Debit",
            points=-points,
            external_ref=external_ref,
            journal_id=existing.journal_id if existing else None,
        )
        new_balance = await self.get_points_balance(member_id)
        logger.info(
            "Points redeemed",
            member_id=member_id,
            points=points,
            external_ref=external_ref,
            new_balance=str(new_balance),
        )
        return LedgerPostingResult(success=True, journal_id=journal_id, points=points, new_balance=new_balance)

    async def _post(
        self,
        *,
        member_id: str,
        journal_type: JournalType,
        event_type: Literal["Credit", "Debit"],
        points: int,
        external_ref: str,
        transaction_amount: Decimal | None = None,
        journal_id: str | None = None,
    ) -> str:
        program_id = await self._program.get_id()
        activity_date = _utc_timestamp()

        if journal_id is None:
            journal = {
                "ActivityDate": activity_date,
                "JournalDate": activity_date,
                "JournalType": journal_type,
                "MemberId": member_id,
                "LoyaltyProgramId": program_id,
                "Status": "Processed",
                "ExternalTransactionNumber": external_ref,
            }
            if transaction_amount is not None:
                journal["TransactionAmount"] = float(transaction_amount)
            journal_id = await self._client.create("TransactionJournal", journal)
        else:
            logger.warning(
                "Completing orphaned journal",
                journal_id=journal_id,
                external_ref=external_ref,
            )

        try:
            await self._client.create(
                "LoyaltyLedger",
                {
                    "LoyaltyProgramMemberId": member_id,
                    "TransactionJournalId": journal_id,
                    "ActivityDate": activity_date,
                    "EventType": event_type,
                    "Points": points,
                },
            )
        except RelayError:
            logger.error(
                "Ledger line write failed after journal creation; journal left orphaned",
                journal_id=journal_id,
                member_id=member_id,
                external_ref=external_ref,
            )
            raise
        return journal_id


__all__ = ["INSUFFICIENT_BALANCE", "LedgerPoster"]
