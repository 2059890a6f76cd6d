import re
from decimal import Decimal
from itertools import count
from typing import Any, Mapping

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from loyalty_relay.app import create_app
from loyalty_relay.db.base import Base
from loyalty_relay.models import RelayJob  # noqa: F401
from loyalty_relay.observability.relay import get_relay_store
from loyalty_relay.schemas.pos import PosCustomer, PosTransaction
from loyalty_relay.services.errors import ExternalServiceError
from loyalty_relay.services.queue.policy import RetryPolicy
from loyalty_relay.services.relay.runtime import RelayRuntime

_LITERAL = r"'((?:[^'\\]|\\.)*)'"


def _unescape(value: str) -> str:
    return value.replace("\\'", "'").replace("\\\\", "\\")


def _match(pattern: str, soql: str) -> str | None:
    found = re.search(pattern.replace("{lit}", _LITERAL), soql)
    return _unescape(found.group(1)) if found else None


class FakeSalesforceOrg:
    """In-memory stand-in for the Salesforce REST client.

    Understands exactly the SOQL shapes the relay issues and keeps journals and
    ledger lines so balances and idempotency checks behave like the real org.
    """

    def __init__(self, program_name: str = "Rewards Program") -> None:
        self.programs: list[dict[str, Any]] = [{"Id": "prog-1", "Name": program_name}]
        self.members: list[dict[str, Any]] = []
        self.journals: list[dict[str, Any]] = []
        self.ledger_lines: list[dict[str, Any]] = []
        self.vouchers: list[dict[str, Any]] = []
        self.queries: list[str] = []
        self.fail_creates: set[str] = set()
        self.fail_queries: int = 0
        self.closed = False
        self._ids = count(1)

    def add_member(
        self,
        member_id: str,
        *,
        phone: str | None = None,
        email: str | None = None,
        number: str | None = None,
        balance: int = 0,
        status: str = "Active",
    ) -> None:
        self.members.append(
            {
                "Id": member_id,
                "MembershipNumber": number,
                "MemberStatus": status,
                "MemberType": "Individual",
                "LoyaltyProgramId": "prog-1",
                "Contact": {"FirstName": "Test", "LastName": "Member", "Email": email, "Phone": phone},
            }
        )
        if balance:
            self.ledger_lines.append(
                {"Id": f"seed-{member_id}", "LoyaltyProgramMemberId": member_id, "TransactionJournalId": None, "Points": balance}
            )

    def balance(self, member_id: str) -> int:
        return sum(int(line["Points"]) for line in self.ledger_lines if line["LoyaltyProgramMemberId"] == member_id)

    async def query(self, soql: str) -> list[dict[str, Any]]:
        self.queries.append(soql)
        if self.fail_queries:
            self.fail_queries -= 1
            raise ExternalServiceError("Salesforce", "query failed: UNAVAILABLE", status_code=503)

        if "FROM LoyaltyProgramMember" in soql:
            return self._query_members(soql)
        if "FROM LoyaltyProgram " in soql:
            name = _match(r"Name = {lit}", soql)
            return [program for program in self.programs if program["Name"] == name]
        if "SUM(Points)" in soql:
            member_id = _match(r"LoyaltyProgramMemberId = {lit}", soql)
            return [{"balance": self.balance(member_id or "")}]
        if "FROM TransactionJournal" in soql:
            ref = _match(r"ExternalTransactionNumber = {lit}", soql)
            return [dict(journal) for journal in self.journals if journal["ExternalTransactionNumber"] == ref][:1]
        if "FROM LoyaltyLedger" in soql:
            journal_id = _match(r"TransactionJournalId = {lit}", soql)
            return [dict(line) for line in self.ledger_lines if line["TransactionJournalId"] == journal_id][:1]
        if "FROM Voucher" in soql:
            member_id = _match(r"LoyaltyProgramMemberId = {lit}", soql)
            return [
                dict(voucher)
                for voucher in self.vouchers
                if voucher["LoyaltyProgramMemberId"] == member_id and voucher["Status"] == "Issued"
            ]
        raise AssertionError(f"Unexpected SOQL: {soql}")

    def _query_members(self, soql: str) -> list[dict[str, Any]]:
        phone = _match(r"Contact\.Phone LIKE {lit}", soql)
        email = _match(r"Contact\.Email = {lit}", soql)
        number = _match(r"MembershipNumber = {lit}", soql)
        matches = []
        for member in self.members:
            if member["MemberStatus"] != "Active":
                continue
            contact = member["Contact"]
            if phone is not None and phone.strip("%") not in re.sub(r"\D", "", contact.get("Phone") or ""):
                continue
            if email is not None and contact.get("Email") != email:
                continue
            if number is not None and member.get("MembershipNumber") != number:
                continue
            matches.append(member)
        return matches[:1]

    async def create(self, sobject: str, fields: Mapping[str, Any]) -> str:
        if sobject in self.fail_creates:
            raise ExternalServiceError("Salesforce", f"failed to create {sobject}", status_code=500)
        record_id = f"{sobject}-{next(self._ids)}"
        record = {"Id": record_id, **fields}
        if sobject == "TransactionJournal":
            self.journals.append(record)
        elif sobject == "LoyaltyLedger":
            self.ledger_lines.append(record)
        else:
            raise AssertionError(f"Unexpected create: {sobject}")
        return record_id

    async def update(self, sobject: str, record_id: str, fields: Mapping[str, Any]) -> None:
        assert sobject == "Voucher"
        for voucher in self.vouchers:
            if voucher["Id"] == record_id:
                voucher.update(fields)
                return
        raise ExternalServiceError("Salesforce", f"PATCH Voucher/{record_id} failed: NOT_FOUND", status_code=404)

    async def aclose(self) -> None:
        self.closed = True


class FakePosClient:
    def __init__(self) -> None:
        self.transactions: dict[str, PosTransaction] = {}
        self.customers: dict[str, PosCustomer] = {}
        self.loyalty_updates: list[tuple[str, str]] = []
        self.fail_updates = False
        self.closed = False

    async def get_transaction(self, transaction_id: str) -> PosTransaction | None:
        return self.transactions.get(transaction_id)

    async def get_transactions_by_date_range(self, start_date, end_date) -> list[PosTransaction]:
        return list(self.transactions.values())

    async def get_customer(self, customer_id: str) -> PosCustomer | None:
        return self.customers.get(customer_id)

    async def update_customer_loyalty_number(self, customer_id: str, loyalty_number: str) -> None:
        if self.fail_updates:
            raise ExternalServiceError("POS", f"PATCH /customers/{customer_id} returned 500", status_code=500)
        self.loyalty_updates.append((customer_id, loyalty_number))

    async def aclose(self) -> None:
        self.closed = True


def make_transaction(transaction_id: str = "txn-1", amount: str = "30.00", **overrides: Any) -> PosTransaction:
    payload: dict[str, Any] = {
        "transactionId": transaction_id,
        "storeId": "store-1",
        "terminalId": "term-1",
        "timestamp": "2026-10-19T12:00:00Z",
        "totalAmount": Decimal(amount),
        "status": "completed",
        "customerPhone": "(555) 123-4567",
    }
    payload.update(overrides)
    return PosTransaction.model_validate(payload)


@pytest.fixture(autouse=True)
def reset_relay_store():
    get_relay_store().reset()
    yield
    get_relay_store().reset()


@pytest.fixture
def salesforce_org() -> FakeSalesforceOrg:
    return FakeSalesforceOrg()


@pytest.fixture
def pos_client() -> FakePosClient:
    return FakePosClient()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Sessions on a database file, each with its own connection."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def relay_runtime(session_factory, salesforce_org, pos_client):
    runtime = RelayRuntime(
        session_factory=session_factory,
        salesforce=salesforce_org,  # type: ignore[arg-type]
        pos=pos_client,  # type: ignore[arg-type]
        retry_policy=RetryPolicy(max_attempts=3, base_delay_seconds=0, multiplier=2),
        worker_concurrency=1,
        poll_interval_seconds=0.01,
        item_delay_seconds=0,
    )
    try:
        yield runtime
    finally:
        await runtime.shutdown()


@pytest_asyncio.fixture
async def app_with_runtime(relay_runtime):
    app = create_app()
    app.state.relay_runtime = relay_runtime

    try:
        yield app, relay_runtime
    finally:
        app.dependency_overrides.clear()
