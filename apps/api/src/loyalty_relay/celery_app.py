"""Celery wiring for draining the relay queue out of process.

Enqueue kicks ``relay.drain_queue`` straight away; beat re-runs it on an
interval so retries whose backoff has elapsed are picked up even when no new
webhook arrives.
"""

from __future__ import annotations

from celery import Celery

from loyalty_relay.core.settings import settings


def _broker_url() -> str:
    return settings.celery_broker_url or settings.redis_url


celery_app = Celery(
    "loyalty_relay",
    broker=_broker_url(),
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_default_queue=settings.celery_default_queue,
    task_ignore_result=True,
    # A drain that dies mid-pass is redelivered; the queue's locks keep it from double-processing.
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    timezone="UTC",
    broker_connection_retry_on_startup=True,
    beat_schedule={
        "relay-drain-due-jobs": {
            "task": "relay.drain_queue",
            "schedule": settings.celery_drain_interval_seconds,
        },
    },
)

celery_app.autodiscover_tasks(["loyalty_relay.celery_tasks"])

__all__ = ["celery_app"]
