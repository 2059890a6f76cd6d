"""Shared-secret guard for operator routes."""

from __future__ import annotations

import secrets

from fastapi import Header, HTTPException, status
from loguru import logger

from loyalty_relay.core.settings import settings

ADMIN_API_KEY_HEADER = "X-API-Key"


async def require_admin_api_key(
    api_key: str | None = Header(default=None, alias=ADMIN_API_KEY_HEADER),
) -> None:
    """Reject the request unless it carries ``ADMIN_API_KEY``; open when no key is configured."""

    expected = settings.admin_api_key
    if not expected:
        return

    if api_key is None or not secrets.compare_digest(api_key.encode(), expected.encode()):
        logger.warning("Rejected admin request", api_key_present=api_key is not None)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )


__all__ = ["ADMIN_API_KEY_HEADER", "require_admin_api_key"]
