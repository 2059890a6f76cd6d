"""REST client for the point-of-sale backend."""

from __future__ import annotations

from datetime import date
from typing import Any, Mapping

import httpx
from loguru import logger
from pydantic import ValidationError

from loyalty_relay.core.settings import settings
from loyalty_relay.schemas.pos import PosCustomer, PosTransaction
from loyalty_relay.services.errors import ExternalServiceError

SERVICE_NAME = "POS"


class PosClient:
    """Reads transactions and customers, writes loyalty numbers back."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        store_id: str = "",
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._store_id = store_id
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @classmethod
    def from_settings(cls, *, http_client: httpx.AsyncClient | None = None) -> "PosClient":
        return cls(
            base_url=settings.pos_api_base_url,
            api_key=settings.pos_api_key,
            store_id=settings.pos_store_id,
            timeout_seconds=settings.pos_timeout_seconds,
            http_client=http_client,
        )

    async def get_transaction(self, transaction_id: str) -> PosTransaction | None:
        payload = await self._request(
            "GET",
            f"/transactions/{transaction_id}",
            params={"storeId": self._store_id},
            allow_not_found=True,
        )
        if payload is None:
            logger.warning("POS transaction not found", transaction_id=transaction_id)
            return None
        return PosTransaction.model_validate(payload)

    async def get_transactions_by_date_range(self, start_date: date, end_date: date) -> list[PosTransaction]:
        payload = await self._request(
            "GET",
            "/transactions",
            params={
                "storeId": self._store_id,
                "startDate": start_date.isoformat(),
                "endDate": end_date.isoformat(),
                "status": "completed",
            },
        )
        transactions: list[PosTransaction] = []
        for raw in (payload or {}).get("transactions") or []:
            try:
                transactions.append(PosTransaction.model_validate(raw))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed POS transaction",
                    transaction_id=raw.get("transactionId") if isinstance(raw, Mapping) else None,
                    error=str(exc),
                )
        return transactions

    async def get_customer(self, customer_id: str) -> PosCustomer | None:
        payload = await self._request("GET", f"/customers/{customer_id}", allow_not_found=True)
        if payload is None:
            logger.warning("POS customer not found", customer_id=customer_id)
            return None
        return PosCustomer.model_validate(payload)

    async def update_customer_loyalty_number(self, customer_id: str, loyalty_number: str) -> None:
        # Only the status matters; some POS builds answer the PATCH with plain text.
        await self._request(
            "PATCH",
            f"/customers/{customer_id}",
            json={"loyaltyNumber": loyalty_number},
            parse_body=False,
        )
        logger.info("Updated POS customer loyalty number", customer_id=customer_id, loyalty_number=loyalty_number)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Mapping[str, Any] | None = None,
        allow_not_found: bool = False,
        parse_body: bool = True,
    ) -> Any:
        logger.debug("POS API request", method=method, path=path)
        try:
            response = await self._http_client.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json,
                headers=self._headers,
            )
        except httpx.HTTPError as exc:
            raise ExternalServiceError(SERVICE_NAME, f"{method} {path} failed: {exc}") from exc

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code >= 400:
            logger.error(
                "POS API error response",
                method=method,
                path=path,
                status=response.status_code,
                body=response.text[:512],
            )
            raise ExternalServiceError(
                SERVICE_NAME,
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content or not parse_body:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
            ) from exc


__all__ = ["PosClient", "SERVICE_NAME"]
