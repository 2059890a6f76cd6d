from __future__ import annotations

import asyncio

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from loyalty_relay.celery_app import celery_app
from loyalty_relay.core.settings import settings
from loyalty_relay.services.relay.runtime import RelayRuntime


async def _drain(max_jobs: int | None) -> int:
    # Each task run gets its own event loop, so pooled connections cannot be shared.
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    runtime = RelayRuntime.from_settings(session_factory, notify_celery=False)
    try:
        return await runtime.worker_pool.drain(max_jobs=max_jobs)
    finally:
        await runtime.shutdown()
        await engine.dispose()


@celery_app.task(name="relay.drain_queue", queue=settings.celery_default_queue)
def drain_queue(max_jobs: int | None = None) -> dict[str, int]:
    """Celery entrypoint that processes due relay jobs until the queue is idle."""

    try:
        processed = asyncio.run(_drain(max_jobs))
    except Exception as exc:  # pragma: no cover - Celery handles retries/logging
        logger.exception("Relay queue drain failed")
        raise exc
    logger.info("Relay queue drained", processed=processed)
    return {"processed": processed}
