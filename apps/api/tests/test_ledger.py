from decimal import Decimal

import pytest

from loyalty_relay.services.errors import ExternalServiceError
from loyalty_relay.services.loyalty.ledger import INSUFFICIENT_BALANCE, LedgerPoster
from loyalty_relay.services.loyalty.program import LoyaltyProgram
from loyalty_relay.services.loyalty.vouchers import VoucherService


@pytest.fixture
def ledger(salesforce_org) -> LedgerPoster:
    return LedgerPoster(salesforce_org, LoyaltyProgram(salesforce_org, "Rewards Program"))


@pytest.mark.asyncio
async def test_award_points_writes_journal_and_ledger_line(ledger, salesforce_org) -> None:
    salesforce_org.add_member("member-1", balance=100)

    result = await ledger.award_points("member-1", 325, Decimal("30.00"), "txn-1")

    assert result.success is True
    assert result.duplicate is False
    assert result.points == 325
    assert result.new_balance == Decimal("425")
    assert len(salesforce_org.journals) == 1
    journal = salesforce_org.journals[0]
    assert journal["JournalType"] == "Accrual"
    assert journal["ExternalTransactionNumber"] == "txn-1"
    assert journal["TransactionAmount"] == 30.0
    assert result.journal_id == journal["Id"]


@pytest.mark.asyncio
async def test_award_points_is_idempotent_per_external_reference(ledger, salesforce_org) -> None:
    salesforce_org.add_member("member-1")

    first = await ledger.award_points("member-1", 100, Decimal("10"), "txn-1")
    second = await ledger.award_points("member-1", 100, Decimal("10"), "txn-1")

    assert second.duplicate is True
    assert second.journal_id == first.journal_id
    assert second.points == 100
    assert len(salesforce_org.journals) == 1
    assert salesforce_org.balance("member-1") == 100


@pytest.mark.asyncio
async def test_orphaned_journal_only_gets_the_missing_line(ledger, salesforce_org) -> None:
    salesforce_org.add_member("member-1")
    salesforce_org.fail_creates.add("LoyaltyLedger")

    with pytest.raises(ExternalServiceError):
        await ledger.award_points("member-1", 100, Decimal("10"), "txn-1")
    assert len(salesforce_org.journals) == 1
    assert salesforce_org.balance("member-1") == 0

    salesforce_org.fail_creates.clear()
    result = await ledger.award_points("member-1", 100, Decimal("10"), "txn-1")

    assert result.duplicate is False
    assert result.journal_id == salesforce_org.journals[0]["Id"]
    assert len(salesforce_org.journals) == 1
    assert salesforce_org.balance("member-1") == 100


@pytest.mark.asyncio
async def test_redeem_with_insufficient_balance_writes_nothing(ledger, salesforce_org) -> None:
    salesforce_org.add_member("member-1", balance=50)

    result = await ledger.redeem_points("member-1", 80, "VOID-txn-1")

    assert result.success is False
    assert result.error_code == INSUFFICIENT_BALANCE
    assert result.new_balance == Decimal("50")
    assert salesforce_org.journals == []
    assert salesforce_org.balance("member-1") == 50


@pytest.mark.asyncio
async def test_redeem_debits_balance_and_finds_posting(ledger, salesforce_org) -> None:
    salesforce_org.add_member("member-1", balance=500)

    result = await ledger.redeem_points("member-1", 200, "VOID-txn-1")
    posting = await ledger.find_posting("VOID-txn-1")

    assert result.success is True
    assert result.new_balance == Decimal("300")
    assert salesforce_org.journals[0]["JournalType"] == "Redemption"
    assert posting is not None
    assert posting.points == 200
    assert posting.has_ledger_line


@pytest.mark.asyncio
async def test_find_posting_returns_none_for_unknown_reference(ledger) -> None:
    assert await ledger.find_posting("never-posted") is None


@pytest.mark.asyncio
async def test_vouchers_list_and_redeem(salesforce_org) -> None:
    salesforce_org.vouchers.append(
        {"Id": "v-1", "VoucherCode": "FREECOFFEE", "Status": "Issued", "LoyaltyProgramMemberId": "member-1"}
    )
    service = VoucherService(salesforce_org)

    vouchers = await service.list_available("member-1")
    redeemed = await service.redeem("v-1", "txn-9")
    missing = await service.redeem("v-404", "txn-9")

    assert [voucher.voucher_code for voucher in vouchers] == ["FREECOFFEE"]
    assert redeemed is True
    assert missing is False
    assert salesforce_org.vouchers[0]["Status"] == "Redeemed"


@pytest.mark.asyncio
async def test_voucher_listing_failure_returns_empty(salesforce_org) -> None:
    salesforce_org.fail_queries = 1

    assert await VoucherService(salesforce_org).list_available("member-1") == []
