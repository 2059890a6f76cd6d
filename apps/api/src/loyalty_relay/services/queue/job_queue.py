"""Durable priority job queue on top of the ``relay_jobs`` table.

Dispatch order is ``(priority, id)``: lower priority values first, arrival
order within a priority. A job is claimed with a conditional update on its
``waiting`` state, so two consumers racing for the same row cannot both win.
On PostgreSQL the candidate select also takes ``FOR UPDATE SKIP LOCKED`` so
concurrent workers fan out over different rows instead of colliding.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Mapping

from loguru import logger
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty_relay.core.settings import settings
from loyalty_relay.models.relay_job import RelayJob, RelayJobStateEnum, RelayJobTypeEnum
from loyalty_relay.observability.relay import RelayObservabilityStore, get_relay_store
from loyalty_relay.schemas.pos import PosTransaction, PosVoidNotice
from loyalty_relay.services.errors import RelayError
from loyalty_relay.services.queue.policy import RetryPolicy

PRIORITY_HIGH = 1
PRIORITY_NORMAL = 5
PRIORITY_BACKFILL = 10
HIGH_VALUE_THRESHOLD = Decimal("100")

EnqueueHook = Callable[[int, RelayJobTypeEnum], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def priority_for_transaction(total_amount: Decimal) -> int:
    return PRIORITY_HIGH if total_amount >= HIGH_VALUE_THRESHOLD else PRIORITY_NORMAL


def _held_by(job_id: int, worker_id: str) -> tuple:
    return (
        RelayJob.id == job_id,
        RelayJob.state == RelayJobStateEnum.ACTIVE,
        RelayJob.locked_by == worker_id,
    )


class JobStateError(RelayError):
    """Raised when an operator action does not fit the job's current state."""


@dataclass(frozen=True)
class JobRecord:
    id: int
    job_type: RelayJobTypeEnum
    payload: dict[str, Any]
    priority: int
    state: RelayJobStateEnum
    attempts: int
    max_attempts: int
    timeout_seconds: int
    last_error: str | None = None
    result: Any = None
    dedupe_key: str | None = None
    created_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_model(cls, job: RelayJob) -> "JobRecord":
        return cls(
            id=job.id,
            job_type=RelayJobTypeEnum(job.job_type),
            payload=dict(job.payload or {}),
            priority=job.priority,
            state=RelayJobStateEnum(job.state),
            attempts=job.attempts or 0,
            max_attempts=job.max_attempts,
            timeout_seconds=job.timeout_seconds,
            last_error=job.last_error,
            result=job.result,
            dedupe_key=job.dedupe_key,
            created_at=job.created_at,
            finished_at=job.finished_at,
        )


@dataclass(frozen=True)
class EnqueuedJob:
    id: int
    job_type: RelayJobTypeEnum
    priority: int
    duplicate: bool = False


@dataclass(frozen=True)
class FailureDecision:
    job_id: int
    will_retry: bool
    delay_seconds: float | None
    state: RelayJobStateEnum


class JobQueue:
    """Enqueue, claim and settle relay jobs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retry_policy: RetryPolicy | None = None,
        *,
        remove_on_complete: bool | None = None,
        default_timeout_seconds: int | None = None,
        stalled_grace_seconds: int | None = None,
        on_enqueued: EnqueueHook | None = None,
        observability: RelayObservabilityStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self._remove_on_complete = (
            settings.relay_remove_on_complete if remove_on_complete is None else remove_on_complete
        )
        self._default_timeout = default_timeout_seconds or settings.relay_default_job_timeout_seconds
        self._stalled_grace = (
            settings.relay_stalled_grace_seconds if stalled_grace_seconds is None else stalled_grace_seconds
        )
        self._on_enqueued = on_enqueued
        self._observability = observability or get_relay_store()

    async def enqueue(
        self,
        job_type: RelayJobTypeEnum,
        payload: Mapping[str, Any],
        *,
        priority: int = PRIORITY_NORMAL,
        timeout_seconds: int | None = None,
        dedupe_key: str | None = None,
    ) -> EnqueuedJob:
        if dedupe_key:
            existing = await self._find_by_dedupe_key(dedupe_key)
            if existing is not None:
                return self._duplicate(existing)

        job = RelayJob(
            job_type=job_type,
            payload=dict(payload),
            priority=priority,
            state=RelayJobStateEnum.WAITING,
            attempts=0,
            max_attempts=self.retry_policy.max_attempts,
            timeout_seconds=timeout_seconds or self._default_timeout,
            dedupe_key=dedupe_key,
        )
        async with self._session_factory() as session:
            session.add(job)
            try:
                await session.flush()
                job_id = job.id
                await session.commit()
            except IntegrityError:
                # Lost a race with a concurrent delivery of the same event.
                await session.rollback()
                if dedupe_key is None:
                    raise
                existing = await self._find_by_dedupe_key(dedupe_key)
                if existing is None:
                    raise
                return self._duplicate(existing)

        self._observability.record_enqueued(job_type.value)
        logger.info(
            "Relay job enqueued",
            job_id=job_id,
            job_type=job_type.value,
            priority=priority,
            dedupe_key=dedupe_key,
        )
        if self._on_enqueued is not None:
            try:
                # Broker publishes block; run them on a worker thread.
                await asyncio.to_thread(self._on_enqueued, job_id, job_type)
            except Exception as exc:
                logger.warning("Relay enqueue notification failed", job_id=job_id, error=str(exc))
        return EnqueuedJob(id=job_id, job_type=job_type, priority=priority)

    async def enqueue_transaction(self, txn: PosTransaction, *, dedupe_key: str | None = None) -> EnqueuedJob:
        return await self.enqueue(
            RelayJobTypeEnum.PROCESS_TRANSACTION,
            {"transaction": txn.to_payload()},
            priority=priority_for_transaction(txn.total_amount),
            dedupe_key=dedupe_key,
        )

    async def enqueue_void(self, notice: PosVoidNotice, *, dedupe_key: str | None = None) -> EnqueuedJob:
        return await self.enqueue(
            RelayJobTypeEnum.VOID_TRANSACTION,
            {"transaction": notice.to_payload()},
            priority=PRIORITY_HIGH,
            dedupe_key=dedupe_key,
        )

    async def enqueue_historical_sync(self, start_date: date, end_date: date) -> EnqueuedJob:
        return await self.enqueue(
            RelayJobTypeEnum.HISTORICAL_SYNC,
            {"startDate": start_date.isoformat(), "endDate": end_date.isoformat()},
            priority=PRIORITY_BACKFILL,
            timeout_seconds=settings.historical_sync_timeout_seconds,
        )

    async def claim_next(self, worker_id: str) -> JobRecord | None:
        """Atomically move the next due job to ``active`` and return it."""

        async with self._session_factory() as session:
            now = _utcnow()
            await self._promote_delayed(session, now)
            await self._recover_stalled(session, now)
            await session.commit()

            while True:
                candidate = (
                    await session.execute(
                        select(RelayJob.id, RelayJob.timeout_seconds)
                        .where(RelayJob.state == RelayJobStateEnum.WAITING)
                        .order_by(RelayJob.priority.asc(), RelayJob.id.asc())
                        .limit(1)
                        .with_for_update(skip_locked=True)
                    )
                ).first()
                if candidate is None:
                    await session.rollback()
                    return None

                job_id, timeout_seconds = candidate
                lock_expires_at = now + timedelta(seconds=(timeout_seconds or self._default_timeout) + self._stalled_grace)
                claimed = await session.execute(
                    update(RelayJob)
                    .where(RelayJob.id == job_id, RelayJob.state == RelayJobStateEnum.WAITING)
                    .values(
                        state=RelayJobStateEnum.ACTIVE,
                        attempts=RelayJob.attempts + 1,
                        locked_by=worker_id,
                        lock_expires_at=lock_expires_at,
                        started_at=now,
                        available_at=None,
                    )
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    await session.rollback()
                    continue

                await session.commit()
                job = await session.get(RelayJob, job_id, populate_existing=True)
                assert job is not None
                record = JobRecord.from_model(job)
                logger.debug(
                    "Relay job claimed",
                    job_id=record.id,
                    job_type=record.job_type.value,
                    worker_id=worker_id,
                    attempt=record.attempts,
                )
                return record

    async def complete(self, job_id: int, worker_id: str, result: Any = None) -> bool:
        """Settle a job held by ``worker_id``; ``False`` if its lock was lost meanwhile."""

        async with self._session_factory() as session:
            held = _held_by(job_id, worker_id)
            if self._remove_on_complete:
                statement = delete(RelayJob).where(*held)
            else:
                statement = (
                    update(RelayJob)
                    .where(*held)
                    .values(
                        state=RelayJobStateEnum.COMPLETED,
                        result=result,
                        finished_at=_utcnow(),
                        locked_by=None,
                        lock_expires_at=None,
                    )
                )
            settled = await session.execute(
                statement.returning(RelayJob.job_type).execution_options(synchronize_session=False)
            )
            settled_type = settled.scalar_one_or_none()
            await session.commit()

        if settled_type is None:
            logger.warning("Ignoring completion for job not held by this worker", job_id=job_id, worker_id=worker_id)
            return False
        job_type = RelayJobTypeEnum(settled_type).value
        self._observability.record_completed(job_type)
        logger.info("Relay job completed", job_id=job_id, job_type=job_type)
        return True

    async def fail(
        self,
        job_id: int,
        worker_id: str,
        error: str,
        *,
        retryable: bool = True,
    ) -> FailureDecision | None:
        """Record a failed execution and decide between ``delayed`` and ``failed``."""

        async with self._session_factory() as session:
            job = await session.get(RelayJob, job_id)
            if job is None or job.state != RelayJobStateEnum.ACTIVE or job.locked_by != worker_id:
                logger.warning(
                    "Ignoring failure for job not held by this worker",
                    job_id=job_id,
                    worker_id=worker_id,
                    error=error,
                )
                return None

            now = _utcnow()
            attempts = job.attempts or 0
            job_type = RelayJobTypeEnum(job.job_type).value
            will_retry = retryable and attempts < (job.max_attempts or self.retry_policy.max_attempts)
            delay = self.retry_policy.delay_for(attempts) if will_retry else None
            if delay is not None:
                outcome = {"state": RelayJobStateEnum.DELAYED, "available_at": now + timedelta(seconds=delay)}
            else:
                outcome = {"state": RelayJobStateEnum.FAILED, "finished_at": now}

            settled = await session.execute(
                update(RelayJob)
                .where(*_held_by(job_id, worker_id))
                .values(last_error=error, locked_by=None, lock_expires_at=None, **outcome)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if settled.rowcount != 1:
            logger.warning("Job lock lost before failure was recorded", job_id=job_id, worker_id=worker_id)
            return None

        if delay is not None:
            self._observability.record_retry(job_type, delay)
            logger.warning(
                "Relay job failed, retry scheduled",
                job_id=job_id,
                job_type=job_type,
                attempt=attempts,
                delay_seconds=delay,
                error=error,
            )
            return FailureDecision(job_id, True, delay, RelayJobStateEnum.DELAYED)

        self._observability.record_failed(job_type)
        logger.error(
            "Relay job failed permanently",
            job_id=job_id,
            job_type=job_type,
            attempts=attempts,
            retryable=retryable,
            error=error,
        )
        return FailureDecision(job_id, False, None, RelayJobStateEnum.FAILED)

    async def retry_job(self, job_id: int) -> JobRecord:
        """Re-queue a failed job with a fresh attempt budget."""

        async with self._session_factory() as session:
            job = await session.get(RelayJob, job_id)
            if job is None:
                raise LookupError(f"Job {job_id} not found")
            if job.state != RelayJobStateEnum.FAILED:
                raise JobStateError(f"Job {job_id} is {RelayJobStateEnum(job.state).value}, only failed jobs can be retried")
            job.state = RelayJobStateEnum.WAITING
            job.attempts = 0
            job.available_at = None
            job.finished_at = None
            await session.commit()
            await session.refresh(job)
            record = JobRecord.from_model(job)

        logger.info("Relay job re-queued by operator", job_id=job_id, job_type=record.job_type.value)
        return record

    async def get_job(self, job_id: int) -> JobRecord | None:
        async with self._session_factory() as session:
            job = await session.get(RelayJob, job_id)
            return JobRecord.from_model(job) if job is not None else None

    async def get_stats(self) -> dict[str, int]:
        async with self._session_factory() as session:
            rows = await session.execute(select(RelayJob.state, func.count(RelayJob.id)).group_by(RelayJob.state))
            counts = {state.value: 0 for state in RelayJobStateEnum}
            for state, count in rows:
                counts[RelayJobStateEnum(state).value] = int(count)
        counts["total"] = sum(counts.values())
        return counts

    async def _find_by_dedupe_key(self, dedupe_key: str) -> RelayJob | None:
        async with self._session_factory() as session:
            result = await session.execute(select(RelayJob).where(RelayJob.dedupe_key == dedupe_key))
            return result.scalar_one_or_none()

    def _duplicate(self, job: RelayJob) -> EnqueuedJob:
        job_type = RelayJobTypeEnum(job.job_type)
        self._observability.record_duplicate(job_type.value)
        logger.info("Duplicate delivery, returning existing job", job_id=job.id, dedupe_key=job.dedupe_key)
        return EnqueuedJob(id=job.id, job_type=job_type, priority=job.priority, duplicate=True)

    async def _promote_delayed(self, session: AsyncSession, now: datetime) -> None:
        await session.execute(
            update(RelayJob)
            .where(RelayJob.state == RelayJobStateEnum.DELAYED, RelayJob.available_at <= now)
            .values(state=RelayJobStateEnum.WAITING)
            .execution_options(synchronize_session=False)
        )

    async def _recover_stalled(self, session: AsyncSession, now: datetime) -> None:
        stalled = await session.execute(
            update(RelayJob)
            .where(
                RelayJob.state == RelayJobStateEnum.ACTIVE,
                RelayJob.lock_expires_at < now,
                RelayJob.attempts < RelayJob.max_attempts,
            )
            .values(state=RelayJobStateEnum.WAITING, locked_by=None, lock_expires_at=None, last_error="job stalled")
            .execution_options(synchronize_session=False)
        )
        exhausted = await session.execute(
            update(RelayJob)
            .where(
                RelayJob.state == RelayJobStateEnum.ACTIVE,
                RelayJob.lock_expires_at < now,
                RelayJob.attempts >= RelayJob.max_attempts,
            )
            .values(
                state=RelayJobStateEnum.FAILED,
                locked_by=None,
                lock_expires_at=None,
                finished_at=now,
                last_error="job stalled more than allowable limit",
            )
            .execution_options(synchronize_session=False)
        )
        if stalled.rowcount or exhausted.rowcount:
            logger.warning(
                "Recovered stalled relay jobs",
                requeued=stalled.rowcount,
                failed=exhausted.rowcount,
            )


__all__ = [
    "EnqueuedJob",
    "FailureDecision",
    "HIGH_VALUE_THRESHOLD",
    "JobQueue",
    "JobRecord",
    "JobStateError",
    "PRIORITY_BACKFILL",
    "PRIORITY_HIGH",
    "PRIORITY_NORMAL",
    "priority_for_transaction",
]
