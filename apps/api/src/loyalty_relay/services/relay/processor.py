"""Turns POS transactions into loyalty ledger postings.

The processor is the only place that decides what a transaction is worth and
to whom. It never retries on its own: backend failures propagate as
:class:`ExternalServiceError` so the job queue can apply its retry policy,
while business outcomes (rejections, unknown members) are returned as a
:class:`ProcessingOutcome` and settle the job.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable

from loguru import logger

from loyalty_relay.core.settings import settings
from loyalty_relay.observability.relay import RelayObservabilityStore, get_relay_store
from loyalty_relay.schemas.loyalty import MemberLookupResult
from loyalty_relay.schemas.pos import PosTransaction, PosVoidNotice, TransactionStatus
from loyalty_relay.services.errors import ExternalServiceError, InsufficientBalanceError, PermanentJobError
from loyalty_relay.services.loyalty.ledger import INSUFFICIENT_BALANCE, LedgerPoster
from loyalty_relay.services.loyalty.member_resolver import MemberResolver
from loyalty_relay.services.loyalty.points import calculate_points
from loyalty_relay.services.pos.client import PosClient

VOID_REF_PREFIX = "VOID-"

Sleep = Callable[[float], Awaitable[Any]]


class OutcomeStatus(str, Enum):
    REJECTED = "rejected"
    MEMBER_NOT_FOUND = "member-not-found"
    POINTS_AWARDED = "points-awarded"
    POINTS_REVERSED = "points-reversed"


class SideEffectStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class SideEffectOutcome:
    name: str
    status: SideEffectStatus
    detail: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "status": self.status.value, "detail": self.detail}


@dataclass
class ProcessingOutcome:
    transaction_id: str
    status: OutcomeStatus
    message: str | None = None
    member_id: str | None = None
    points: int = 0
    new_balance: Decimal | None = None
    journal_id: str | None = None
    duplicate: bool = False
    side_effects: list[SideEffectOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status in (OutcomeStatus.POINTS_AWARDED, OutcomeStatus.POINTS_REVERSED)

    def as_dict(self) -> dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "status": self.status.value,
            "success": self.success,
            "message": self.message,
            "memberId": self.member_id,
            "points": self.points,
            "newBalance": str(self.new_balance) if self.new_balance is not None else None,
            "journalId": self.journal_id,
            "duplicate": self.duplicate,
            "sideEffects": [effect.as_dict() for effect in self.side_effects],
        }


@dataclass
class HistoricalSyncSummary:
    start_date: str
    end_date: str
    total: int = 0
    awarded: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class TransactionProcessor:
    def __init__(
        self,
        *,
        pos_client: PosClient,
        member_resolver: MemberResolver,
        ledger: LedgerPoster,
        points_per_dollar: int | None = None,
        minimum_amount: Decimal | None = None,
        item_delay_seconds: float | None = None,
        sleep: Sleep = asyncio.sleep,
        observability: RelayObservabilityStore | None = None,
    ) -> None:
        self._pos = pos_client
        self._resolver = member_resolver
        self._ledger = ledger
        self._points_per_dollar = points_per_dollar or settings.points_per_dollar
        self._minimum_amount = (
            settings.minimum_transaction_for_points if minimum_amount is None else minimum_amount
        )
        self._item_delay = (
            settings.historical_sync_item_delay_seconds if item_delay_seconds is None else item_delay_seconds
        )
        self._sleep = sleep
        self._observability = observability or get_relay_store()

    async def process_transaction(self, txn: PosTransaction) -> ProcessingOutcome:
        logger.info(
            "Processing transaction for loyalty",
            transaction_id=txn.transaction_id,
            amount=str(txn.total_amount),
        )

        if txn.status != TransactionStatus.COMPLETED:
            logger.warning(
                "Transaction not completed, skipping",
                transaction_id=txn.transaction_id,
                status=txn.status.value,
            )
            return self._settle(
                ProcessingOutcome(txn.transaction_id, OutcomeStatus.REJECTED, "Transaction not completed")
            )

        if txn.total_amount < self._minimum_amount:
            logger.info(
                "Transaction below minimum for points",
                transaction_id=txn.transaction_id,
                amount=str(txn.total_amount),
                minimum=str(self._minimum_amount),
            )
            return self._settle(
                ProcessingOutcome(txn.transaction_id, OutcomeStatus.REJECTED, "Transaction below minimum amount")
            )

        lookup = await self._resolve_for_transaction(txn)
        if not lookup.found or lookup.member is None:
            logger.warning("Loyalty member not found for transaction", transaction_id=txn.transaction_id)
            return self._settle(
                ProcessingOutcome(txn.transaction_id, OutcomeStatus.MEMBER_NOT_FOUND, "Loyalty member not found")
            )

        member = lookup.member
        calculation = calculate_points(txn.total_amount, self._points_per_dollar)
        posting = await self._ledger.award_points(
            member.member_id,
            calculation.total_points,
            txn.total_amount,
            txn.transaction_id,
        )

        outcome = ProcessingOutcome(
            txn.transaction_id,
            OutcomeStatus.POINTS_AWARDED,
            member_id=member.member_id,
            points=posting.points,
            new_balance=posting.new_balance,
            journal_id=posting.journal_id,
            duplicate=posting.duplicate,
        )
        outcome.side_effects.append(await self._write_back_loyalty_number(txn.customer_id, member.membership_number))

        logger.info(
            "Transaction processed successfully",
            transaction_id=txn.transaction_id,
            member_id=member.member_id,
            points_awarded=posting.points,
            new_balance=str(posting.new_balance) if posting.new_balance is not None else None,
            duplicate=posting.duplicate,
        )
        return self._settle(outcome)

    async def handle_void(self, notice: PosVoidNotice) -> ProcessingOutcome:
        logger.info("Handling voided transaction", transaction_id=notice.transaction_id)
        if notice.needs_hydration:
            notice = await self._hydrate_void(notice)

        if notice.customer_phone:
            lookup = await self._resolver.lookup_by_phone(notice.customer_phone)
        elif notice.customer_email:
            lookup = await self._resolver.lookup_by_email(notice.customer_email)
        else:
            lookup = MemberLookupResult(found=False)
        self._raise_on_lookup_error(lookup, notice.transaction_id)

        if not lookup.found or lookup.member is None:
            logger.warning("Member not found for voided transaction", transaction_id=notice.transaction_id)
            return self._settle(
                ProcessingOutcome(notice.transaction_id, OutcomeStatus.MEMBER_NOT_FOUND, "Loyalty member not found")
            )

        member = lookup.member
        points = await self._reversal_points(notice)
        external_ref = f"{VOID_REF_PREFIX}{notice.transaction_id}"
        posting = await self._ledger.redeem_points(member.member_id, points, external_ref)
        if not posting.success:
            if posting.error_code == INSUFFICIENT_BALANCE:
                raise InsufficientBalanceError(
                    member.member_id,
                    requested=points,
                    balance=posting.new_balance,
                )
            raise ExternalServiceError("Loyalty", posting.error or "redemption failed")

        logger.info(
            "Voided transaction processed, points reversed",
            transaction_id=notice.transaction_id,
            member_id=member.member_id,
            points_reversed=points,
            duplicate=posting.duplicate,
        )
        return self._settle(
            ProcessingOutcome(
                notice.transaction_id,
                OutcomeStatus.POINTS_REVERSED,
                member_id=member.member_id,
                points=posting.points,
                new_balance=posting.new_balance,
                journal_id=posting.journal_id,
                duplicate=posting.duplicate,
            )
        )

    async def sync_historical(self, start_date: date, end_date: date) -> HistoricalSyncSummary:
        logger.info(
            "Starting historical transaction sync",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
        )
        transactions = await self._pos.get_transactions_by_date_range(start_date, end_date)
        summary = HistoricalSyncSummary(
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            total=len(transactions),
        )
        logger.info("Found transactions to sync", total=summary.total)

        for index, txn in enumerate(transactions):
            try:
                outcome = await self.process_transaction(txn)
            except Exception as exc:
                summary.failed += 1
                logger.exception(
                    "Historical sync item failed",
                    transaction_id=txn.transaction_id,
                    error=str(exc),
                )
            else:
                if outcome.success:
                    summary.awarded += 1
                else:
                    summary.skipped += 1
            if self._item_delay and index < len(transactions) - 1:
                await self._sleep(self._item_delay)

        logger.info("Historical sync completed", **summary.as_dict())
        return summary

    async def _resolve_for_transaction(self, txn: PosTransaction) -> MemberLookupResult:
        if txn.customer_phone:
            lookup = await self._resolver.lookup_by_phone(txn.customer_phone)
        elif txn.customer_email:
            lookup = await self._resolver.lookup_by_email(txn.customer_email)
        elif txn.customer_id:
            customer = await self._pos.get_customer(txn.customer_id)
            if customer is not None and customer.phone:
                lookup = await self._resolver.lookup_by_phone(customer.phone)
            elif customer is not None and customer.email:
                lookup = await self._resolver.lookup_by_email(customer.email)
            else:
                lookup = MemberLookupResult(found=False)
        else:
            lookup = MemberLookupResult(found=False)
        self._raise_on_lookup_error(lookup, txn.transaction_id)
        return lookup

    @staticmethod
    def _raise_on_lookup_error(lookup: MemberLookupResult, transaction_id: str) -> None:
        # A failed lookup is not the same as "no such member": retry it.
        if lookup.error:
            logger.warning("Member lookup failed", transaction_id=transaction_id, error=lookup.error)
            raise ExternalServiceError("Loyalty", f"member lookup failed: {lookup.error}")

    async def _hydrate_void(self, notice: PosVoidNotice) -> PosVoidNotice:
        original = await self._pos.get_transaction(notice.transaction_id)
        if original is None:
            logger.warning("Voided transaction not found in POS", transaction_id=notice.transaction_id)
            return notice
        merged = original.model_dump(include=set(PosVoidNotice.model_fields))
        merged.update(notice.model_dump(include=set(PosVoidNotice.model_fields), exclude_none=True))
        return PosVoidNotice.model_validate(merged)

    async def _reversal_points(self, notice: PosVoidNotice) -> int:
        original = await self._ledger.find_posting(notice.transaction_id)
        if original is not None and original.points is not None:
            return original.points
        if notice.total_amount is None:
            raise PermanentJobError(
                f"Cannot reverse transaction {notice.transaction_id}: no original posting and no amount"
            )
        return calculate_points(notice.total_amount, self._points_per_dollar).total_points

    async def _write_back_loyalty_number(
        self,
        customer_id: str | None,
        membership_number: str | None,
    ) -> SideEffectOutcome:
        name = "pos-loyalty-number"
        if not customer_id or not membership_number:
            return SideEffectOutcome(name, SideEffectStatus.SKIPPED)
        try:
            await self._pos.update_customer_loyalty_number(customer_id, membership_number)
        except Exception as exc:
            # Points are already posted; a write-back failure of any kind is only recorded.
            error = str(exc) or exc.__class__.__name__
            logger.warning(
                "Failed to update customer loyalty number in POS",
                customer_id=customer_id,
                error=error,
            )
            return SideEffectOutcome(name, SideEffectStatus.FAILED, error)
        return SideEffectOutcome(name, SideEffectStatus.SUCCEEDED)

    def _settle(self, outcome: ProcessingOutcome) -> ProcessingOutcome:
        self._observability.record_outcome(outcome.status.value)
        return outcome


__all__ = [
    "HistoricalSyncSummary",
    "OutcomeStatus",
    "ProcessingOutcome",
    "SideEffectOutcome",
    "SideEffectStatus",
    "TransactionProcessor",
    "VOID_REF_PREFIX",
]
