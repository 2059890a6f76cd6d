from __future__ import annotations

from loguru import logger

from loyalty_relay.services.errors import PermanentJobError
from loyalty_relay.services.loyalty.salesforce_client import SalesforceClient, soql_literal


class LoyaltyProgramNotFoundError(PermanentJobError):
    """Raised when the configured loyalty program does not exist in the org."""


class LoyaltyProgram:
    """Resolves and caches the id of the configured loyalty program."""

    def __init__(self, client: SalesforceClient, name: str) -> None:
        self._client = client
        self.name = name
        self._program_id: str | None = None

    async def get_id(self) -> str:
        if self._program_id is None:
            await self.load()
        assert self._program_id is not None
        return self._program_id

    async def load(self) -> str:
        records = await self._client.query(
            f"SELECT Id, Name FROM LoyaltyProgram WHERE Name = {soql_literal(self.name)} LIMIT 1"
        )
        if not records:
            raise LoyaltyProgramNotFoundError(f"Loyalty program not found: {self.name}")
        self._program_id = str(records[0]["Id"])
        logger.info("Loyalty program found", program_id=self._program_id, program_name=self.name)
        return self._program_id


__all__ = ["LoyaltyProgram", "LoyaltyProgramNotFoundError"]
