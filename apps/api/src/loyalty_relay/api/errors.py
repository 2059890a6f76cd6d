"""Uniform ``{success: false, error}`` bodies for rejected requests."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from loyalty_relay.services.errors import ExternalServiceError, RelayValidationError


def _field_path(location: tuple | list) -> str:
    # Drop the leading "body"/"query" marker FastAPI adds to every location.
    parts = [str(part) for part in location]
    if len(parts) > 1 and parts[0] in {"body", "query", "path"}:
        parts = parts[1:]
    return ".".join(parts)


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    fields = {_field_path(error.get("loc", ())): str(error.get("msg", "invalid")) for error in errors}
    first = errors[0] if errors else {}
    message = f"{_field_path(first.get('loc', ()))}: {first.get('msg', 'invalid request')}" if first else "Invalid request"
    logger.warning("Rejected invalid request", path=request.url.path, fields=fields)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": message, "fields": fields},
    )


async def handle_relay_validation_error(request: Request, exc: RelayValidationError) -> JSONResponse:
    logger.warning("Rejected invalid request", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": str(exc), "fields": exc.fields},
    )


async def handle_external_service_error(request: Request, exc: ExternalServiceError) -> JSONResponse:
    logger.error("Upstream service error", path=request.url.path, service=exc.service, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"success": False, "error": str(exc)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(RelayValidationError, handle_relay_validation_error)
    app.add_exception_handler(ExternalServiceError, handle_external_service_error)


__all__ = ["register_exception_handlers"]
