"""Thin async client for the Salesforce REST surface used by the relay.

Only the generic record-store operations are covered: SOQL query, sObject
create and sObject update. Loyalty semantics live in the resolver and ledger
modules on top of this client.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

import httpx
from loguru import logger

from loyalty_relay.core.settings import settings
from loyalty_relay.services.errors import ExternalServiceError

SERVICE_NAME = "Salesforce"


def soql_literal(value: str) -> str:
    """Quote a value for inclusion in a SOQL string literal."""

    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:512] or f"HTTP {response.status_code}"
    if isinstance(payload, list) and payload:
        first = payload[0]
        if isinstance(first, Mapping):
            code = first.get("errorCode")
            message = first.get("message")
            return f"{code}: {message}" if code else str(message)
    if isinstance(payload, Mapping):
        return str(payload.get("error_description") or payload.get("error") or payload)
    return str(payload)


class SalesforceClient:
    """OAuth password-flow session against a Salesforce org."""

    def __init__(
        self,
        *,
        login_url: str,
        username: str,
        password: str,
        security_token: str = "",
        client_id: str,
        client_secret: str,
        api_version: str = "59.0",
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._login_url = login_url.rstrip("/")
        self._username = username
        self._password = password
        self._security_token = security_token
        self._client_id = client_id
        self._client_secret = client_secret
        self._api_version = api_version
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None
        self._access_token: str | None = None
        self._instance_url: str | None = None
        self._auth_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, *, http_client: httpx.AsyncClient | None = None) -> "SalesforceClient":
        return cls(
            login_url=settings.salesforce_login_url,
            username=settings.salesforce_username,
            password=settings.salesforce_password,
            security_token=settings.salesforce_security_token,
            client_id=settings.salesforce_client_id,
            client_secret=settings.salesforce_client_secret,
            api_version=settings.salesforce_api_version,
            timeout_seconds=settings.salesforce_timeout_seconds,
            http_client=http_client,
        )

    @property
    def is_authenticated(self) -> bool:
        return self._access_token is not None

    async def authenticate(self) -> None:
        try:
            response = await self._http_client.post(
                f"{self._login_url}/services/oauth2/token",
                data={
                    "grant_type": "password",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "username": self._username,
                    "password": f"{self._password}{self._security_token}",
                },
            )
        except httpx.HTTPError as exc:
            raise ExternalServiceError(SERVICE_NAME, f"login failed: {exc}") from exc

        if response.status_code != 200:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"login failed: {_error_message(response)}",
                status_code=response.status_code,
            )

        payload = response.json()
        self._access_token = payload["access_token"]
        self._instance_url = str(payload["instance_url"]).rstrip("/")
        logger.info("Connected to Salesforce", instance_url=self._instance_url)

    async def query(self, soql: str) -> list[dict[str, Any]]:
        """Run a SOQL query and return every record, following pagination."""

        payload = await self._request("GET", self._data_path("query"), params={"q": soql})
        records = list(payload.get("records") or [])
        next_url = payload.get("nextRecordsUrl")
        while next_url:
            page = await self._request("GET", next_url)
            records.extend(page.get("records") or [])
            next_url = page.get("nextRecordsUrl")
        return records

    async def create(self, sobject: str, fields: Mapping[str, Any]) -> str:
        payload = await self._request("POST", self._data_path(f"sobjects/{sobject}/"), json=dict(fields))
        if not payload.get("success", False) or not payload.get("id"):
            raise ExternalServiceError(SERVICE_NAME, f"failed to create {sobject}: {payload.get('errors')}")
        return str(payload["id"])

    async def update(self, sobject: str, record_id: str, fields: Mapping[str, Any]) -> None:
        await self._request("PATCH", self._data_path(f"sobjects/{sobject}/{record_id}"), json=dict(fields))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    async def _ensure_session(self, stale_token: str | None = None) -> None:
        async with self._auth_lock:
            # Another request may have logged in while this one waited.
            if self._access_token is not None and self._access_token != stale_token:
                return
            await self.authenticate()

    def _data_path(self, suffix: str) -> str:
        return f"/services/data/v{self._api_version}/{suffix}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self.is_authenticated:
            await self._ensure_session()

        token = self._access_token
        response = await self._send(method, path, params=params, json=json)
        if response.status_code == 401:
            # Session expired; log in again once before giving up.
            logger.info("Salesforce session expired, re-authenticating")
            await self._ensure_session(stale_token=token)
            response = await self._send(method, path, params=params, json=json)

        if response.status_code >= 400:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"{method} {path} failed: {_error_message(response)}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None,
        json: Mapping[str, Any] | None,
    ) -> httpx.Response:
        try:
            return await self._http_client.request(
                method,
                f"{self._instance_url}{path}",
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {self._access_token}"},
            )
        except httpx.HTTPError as exc:
            raise ExternalServiceError(SERVICE_NAME, f"{method} {path} failed: {exc}") from exc


__all__ = ["SERVICE_NAME", "SalesforceClient", "soql_literal"]
