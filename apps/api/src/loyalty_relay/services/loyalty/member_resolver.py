"""Loyalty member lookup by phone, email or membership number."""

from __future__ import annotations

import re
from typing import Any

from loguru import logger

from loyalty_relay.schemas.loyalty import LoyaltyMember, MemberLookupKind, MemberLookupResult
from loyalty_relay.services.errors import RelayError
from loyalty_relay.services.loyalty.balance import fetch_points_balance
from loyalty_relay.services.loyalty.program import LoyaltyProgram
from loyalty_relay.services.loyalty.salesforce_client import SalesforceClient, soql_literal

_NON_DIGITS = re.compile(r"\D")

_MEMBER_FIELDS = (
    "Id, MembershipNumber, ContactId, MemberStatus, MemberType, "
    "Contact.FirstName, Contact.LastName, Contact.Email, Contact.Phone"
)


def normalize_phone(phone: str) -> str:
    return _NON_DIGITS.sub("", phone)


class MemberResolver:
    """Finds at most one active member of the configured loyalty program."""

    def __init__(self, client: SalesforceClient, program: LoyaltyProgram) -> None:
        self._client = client
        self._program = program

    async def resolve(self, identifier: str, kind: MemberLookupKind | str) -> MemberLookupResult:
        lookup_kind = MemberLookupKind(kind)
        identifier = (identifier or "").strip()
        if lookup_kind == MemberLookupKind.PHONE:
            identifier = normalize_phone(identifier)
        if not identifier:
            return MemberLookupResult(found=False)

        try:
            record = await self._find_member(identifier, lookup_kind)
            if record is None:
                return MemberLookupResult(found=False)
            balance = await fetch_points_balance(self._client, str(record["Id"]))
        except RelayError as exc:
            logger.error(
                "Error looking up loyalty member",
                kind=lookup_kind.value,
                error=str(exc),
            )
            return MemberLookupResult(found=False, error=str(exc))

        return MemberLookupResult(found=True, member=self._to_member(record, balance))

    async def lookup_by_phone(self, phone: str) -> MemberLookupResult:
        return await self.resolve(phone, MemberLookupKind.PHONE)

    async def lookup_by_email(self, email: str) -> MemberLookupResult:
        return await self.resolve(email, MemberLookupKind.EMAIL)

    async def lookup_by_number(self, membership_number: str) -> MemberLookupResult:
        return await self.resolve(membership_number, MemberLookupKind.NUMBER)

    async def _find_member(self, identifier: str, kind: MemberLookupKind) -> dict[str, Any] | None:
        if kind == MemberLookupKind.PHONE:
            condition = f"Contact.Phone LIKE {soql_literal(f'%{identifier}%')}"
        elif kind == MemberLookupKind.EMAIL:
            condition = f"Contact.Email = {soql_literal(identifier)}"
        else:
            condition = f"MembershipNumber = {soql_literal(identifier)}"

        program_id = await self._program.get_id()
        records = await self._client.query(
            f"SELECT {_MEMBER_FIELDS} FROM LoyaltyProgramMember "
            f"WHERE {condition} "
            f"AND LoyaltyProgramId = {soql_literal(program_id)} "
            "AND MemberStatus = 'Active' "
            "LIMIT 1"
        )
        return records[0] if records else None

    @staticmethod
    def _to_member(record: dict[str, Any], balance: Any) -> LoyaltyMember:
        contact = record.get("Contact") or {}
        return LoyaltyMember(
            member_id=str(record["Id"]),
            membership_number=record.get("MembershipNumber"),
            first_name=contact.get("FirstName"),
            last_name=contact.get("LastName"),
            email=contact.get("Email"),
            points_balance=balance,
            tier=record.get("MemberType"),
            status=record.get("MemberStatus") or "Active",
        )


__all__ = ["MemberResolver", "normalize_phone"]
