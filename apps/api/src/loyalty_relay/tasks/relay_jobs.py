"""Relay job handlers.

These helpers let the in-process worker pool, Celery, or CLI runners execute a
claimed job through the same processor.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Awaitable, Callable, Mapping

from loguru import logger
from pydantic import ValidationError

from loyalty_relay.models.relay_job import RelayJobTypeEnum
from loyalty_relay.schemas.pos import PosTransaction, PosVoidNotice
from loyalty_relay.services.errors import PermanentJobError
from loyalty_relay.services.queue.job_queue import JobRecord
from loyalty_relay.services.relay.processor import TransactionProcessor

JobHandler = Callable[[TransactionProcessor, Mapping[str, Any]], Awaitable[dict[str, Any]]]


async def handle_process_transaction(processor: TransactionProcessor, payload: Mapping[str, Any]) -> dict[str, Any]:
    try:
        txn = PosTransaction.model_validate(payload.get("transaction") or {})
    except ValidationError as exc:
        raise PermanentJobError(f"Invalid transaction payload: {exc.error_count()} error(s)") from exc
    outcome = await processor.process_transaction(txn)
    return outcome.as_dict()


async def handle_void_transaction(processor: TransactionProcessor, payload: Mapping[str, Any]) -> dict[str, Any]:
    try:
        notice = PosVoidNotice.model_validate(payload.get("transaction") or {})
    except ValidationError as exc:
        raise PermanentJobError(f"Invalid void payload: {exc.error_count()} error(s)") from exc
    outcome = await processor.handle_void(notice)
    return outcome.as_dict()


async def handle_historical_sync(processor: TransactionProcessor, payload: Mapping[str, Any]) -> dict[str, Any]:
    try:
        start_date = date.fromisoformat(str(payload["startDate"]))
        end_date = date.fromisoformat(str(payload["endDate"]))
    except (KeyError, ValueError) as exc:
        raise PermanentJobError(f"Invalid historical sync range: {exc}") from exc
    summary = await processor.sync_historical(start_date, end_date)
    return summary.as_dict()


JOB_HANDLERS: dict[RelayJobTypeEnum, JobHandler] = {
    RelayJobTypeEnum.PROCESS_TRANSACTION: handle_process_transaction,
    RelayJobTypeEnum.VOID_TRANSACTION: handle_void_transaction,
    RelayJobTypeEnum.HISTORICAL_SYNC: handle_historical_sync,
}


async def execute_job(job: JobRecord, processor: TransactionProcessor) -> dict[str, Any]:
    """Run the handler registered for ``job.job_type`` and return its result payload."""

    handler = JOB_HANDLERS.get(job.job_type)
    if handler is None:
        raise PermanentJobError(f"No handler registered for job type {job.job_type}")
    logger.info(
        "Relay job started",
        job_id=job.id,
        job_type=job.job_type.value,
        attempt=job.attempts,
        max_attempts=job.max_attempts,
    )
    return await handler(processor, job.payload)


__all__ = [
    "JOB_HANDLERS",
    "execute_job",
    "handle_historical_sync",
    "handle_process_transaction",
    "handle_void_transaction",
]
