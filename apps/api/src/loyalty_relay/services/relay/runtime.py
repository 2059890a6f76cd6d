"""Construction and lifecycle of the relay services.

One :class:`RelayRuntime` owns the backend clients, the loyalty services built
on them, the job queue and the worker pool. The API lifespan creates it,
stores it on ``app.state.relay_runtime`` and shuts it down on exit; the
Celery drain task builds its own short-lived instance.
"""

from __future__ import annotations

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty_relay.core.settings import settings
from loyalty_relay.models.relay_job import RelayJobTypeEnum
from loyalty_relay.services.loyalty.ledger import LedgerPoster
from loyalty_relay.services.loyalty.member_resolver import MemberResolver
from loyalty_relay.services.loyalty.program import LoyaltyProgram
from loyalty_relay.services.loyalty.salesforce_client import SalesforceClient
from loyalty_relay.services.loyalty.vouchers import VoucherService
from loyalty_relay.services.pos.client import PosClient
from loyalty_relay.services.queue.job_queue import EnqueueHook, JobQueue
from loyalty_relay.services.queue.policy import RetryPolicy
from loyalty_relay.services.relay.processor import TransactionProcessor
from loyalty_relay.workers.relay_worker import RelayWorkerPool


def _kick_celery_drain(job_id: int, job_type: RelayJobTypeEnum) -> None:
    from loyalty_relay.celery_tasks.relay import drain_queue

    # Fail fast when the broker is down; the beat schedule picks the job up later.
    drain_queue.apply_async(retry=False)
    logger.debug("Celery drain requested", job_id=job_id, job_type=job_type.value)


class RelayRuntime:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        salesforce: SalesforceClient,
        pos: PosClient,
        program_name: str | None = None,
        retry_policy: RetryPolicy | None = None,
        on_enqueued: EnqueueHook | None = None,
        worker_concurrency: int | None = None,
        poll_interval_seconds: float | None = None,
        item_delay_seconds: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.salesforce = salesforce
        self.pos = pos
        self.program = LoyaltyProgram(salesforce, program_name or settings.loyalty_program_name)
        self.member_resolver = MemberResolver(salesforce, self.program)
        self.ledger = LedgerPoster(salesforce, self.program)
        self.vouchers = VoucherService(salesforce)
        self.processor = TransactionProcessor(
            pos_client=pos,
            member_resolver=self.member_resolver,
            ledger=self.ledger,
            item_delay_seconds=item_delay_seconds,
        )
        self.queue = JobQueue(session_factory, retry_policy or RetryPolicy.from_settings(), on_enqueued=on_enqueued)
        self.worker_pool = RelayWorkerPool(
            self.queue,
            self.processor,
            concurrency=worker_concurrency,
            poll_interval_seconds=poll_interval_seconds,
        )
        self._workers_started = False

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        notify_celery: bool | None = None,
    ) -> "RelayRuntime":
        if notify_celery is None:
            notify_celery = bool(settings.celery_broker_url)
        return cls(
            session_factory=session_factory,
            salesforce=SalesforceClient.from_settings(),
            pos=PosClient.from_settings(),
            on_enqueued=_kick_celery_drain if notify_celery else None,
        )

    @property
    def workers_started(self) -> bool:
        return self._workers_started

    def start_workers(self) -> None:
        self.worker_pool.start()
        self._workers_started = True

    async def shutdown(self) -> None:
        if self._workers_started:
            await self.worker_pool.stop()
            self._workers_started = False
        await self.salesforce.aclose()
        await self.pos.aclose()
        logger.info("Relay runtime shut down")


__all__ = ["RelayRuntime"]
