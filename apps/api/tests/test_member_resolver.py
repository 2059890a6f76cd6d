from decimal import Decimal

import pytest

from loyalty_relay.schemas.loyalty import MemberLookupKind
from loyalty_relay.services.loyalty.member_resolver import MemberResolver, normalize_phone
from loyalty_relay.services.loyalty.program import LoyaltyProgram, LoyaltyProgramNotFoundError


@pytest.fixture
def resolver(salesforce_org) -> MemberResolver:
    program = LoyaltyProgram(salesforce_org, "Rewards Program")
    return MemberResolver(salesforce_org, program)


def test_normalize_phone_strips_formatting() -> None:
    assert normalize_phone("(555) 123-4567") == "5551234567"
    assert normalize_phone("+1 555.123.4567") == "15551234567"


@pytest.mark.asyncio
async def test_lookup_by_phone_ignores_formatting_and_reports_balance(resolver, salesforce_org) -> None:
    salesforce_org.add_member("member-1", phone="555-123-4567", number="M-1", balance=420)

    result = await resolver.lookup_by_phone("(555) 123-4567")

    assert result.found is True
    assert result.error is None
    assert result.member is not None
    assert result.member.member_id == "member-1"
    assert result.member.membership_number == "M-1"
    assert result.member.points_balance == Decimal("420")
    assert any("LIKE '%5551234567%'" in soql for soql in salesforce_org.queries)


@pytest.mark.asyncio
async def test_lookup_by_email_and_number(resolver, salesforce_org) -> None:
    salesforce_org.add_member("member-1", email="ada@example.com", number="M-77")

    by_email = await resolver.lookup_by_email("ada@example.com")
    by_number = await resolver.resolve("M-77", "number")

    assert by_email.member is not None and by_email.member.member_id == "member-1"
    assert by_number.member is not None and by_number.member.member_id == "member-1"


@pytest.mark.asyncio
async def test_inactive_members_are_not_resolved(resolver, salesforce_org) -> None:
    salesforce_org.add_member("member-1", email="gone@example.com", status="Inactive")

    result = await resolver.lookup_by_email("gone@example.com")

    assert result.found is False
    assert result.member is None
    assert result.error is None


@pytest.mark.asyncio
async def test_blank_identifier_is_not_found_without_querying(resolver, salesforce_org) -> None:
    result = await resolver.resolve("  ", MemberLookupKind.EMAIL)

    assert result.found is False
    assert salesforce_org.queries == []


@pytest.mark.asyncio
async def test_backend_failure_is_captured_in_result(resolver, salesforce_org) -> None:
    salesforce_org.fail_queries = 1

    result = await resolver.lookup_by_number("M-1")

    assert result.found is False
    assert result.error is not None
    assert "UNAVAILABLE" in result.error


@pytest.mark.asyncio
async def test_unknown_lookup_kind_is_rejected(resolver) -> None:
    with pytest.raises(ValueError):
        await resolver.resolve("someone", "loyalty-card")


@pytest.mark.asyncio
async def test_program_id_is_cached(salesforce_org) -> None:
    program = LoyaltyProgram(salesforce_org, "Rewards Program")

    assert await program.get_id() == "prog-1"
    assert await program.get_id() == "prog-1"
    assert sum("FROM LoyaltyProgram " in soql for soql in salesforce_org.queries) == 1


@pytest.mark.asyncio
async def test_missing_program_raises(salesforce_org) -> None:
    program = LoyaltyProgram(salesforce_org, "Unknown Program")

    with pytest.raises(LoyaltyProgramNotFoundError):
        await program.get_id()
