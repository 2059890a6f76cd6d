"""Webhook endpoints receiving POS transaction events."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from loguru import logger

from loyalty_relay.api.dependencies.relay import get_job_queue
from loyalty_relay.models.relay_job import RelayJobTypeEnum
from loyalty_relay.schemas.relay import TransactionWebhook, VoidWebhook, WebhookAccepted
from loyalty_relay.services.queue.job_queue import JobQueue

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _dedupe_key(job_type: RelayJobTypeEnum, transaction_id: str) -> str:
    # One live job per sale: the POS may redeliver a sale under a fresh eventId.
    return f"{job_type.value}:{transaction_id}"


@router.post("/transaction", status_code=status.HTTP_202_ACCEPTED, response_model=WebhookAccepted)
async def transaction_webhook(
    event: TransactionWebhook,
    queue: JobQueue = Depends(get_job_queue),
) -> WebhookAccepted:
    """Queue a POS sale for points processing; the POS is acknowledged before any ledger work."""

    logger.info(
        "Received POS transaction webhook",
        event_id=event.event_id,
        event_type=event.event_type,
        transaction_id=event.data.transaction_id,
    )
    job = await queue.enqueue_transaction(
        event.data,
        dedupe_key=_dedupe_key(RelayJobTypeEnum.PROCESS_TRANSACTION, event.data.transaction_id),
    )
    return WebhookAccepted(
        message="Transaction queued for processing",
        jobId=str(job.id),
        duplicate=job.duplicate,
    )


@router.post("/void", status_code=status.HTTP_202_ACCEPTED, response_model=WebhookAccepted)
async def void_webhook(
    event: VoidWebhook,
    queue: JobQueue = Depends(get_job_queue),
) -> WebhookAccepted:
    logger.info(
        "Received POS void webhook",
        event_id=event.event_id,
        event_type=event.event_type,
        transaction_id=event.data.transaction_id,
    )
    job = await queue.enqueue_void(
        event.data,
        dedupe_key=_dedupe_key(RelayJobTypeEnum.VOID_TRANSACTION, event.data.transaction_id),
    )
    return WebhookAccepted(
        message="Void transaction queued for processing",
        jobId=str(job.id),
        duplicate=job.duplicate,
    )
