"""In-process worker pool draining the relay job queue."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from loyalty_relay.core.settings import settings
from loyalty_relay.observability.tracing import job_span
from loyalty_relay.services.errors import PermanentJobError
from loyalty_relay.services.queue.job_queue import JobQueue, JobRecord
from loyalty_relay.services.relay.processor import TransactionProcessor
from loyalty_relay.tasks.relay_jobs import execute_job


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RelayWorkerMetrics:
    """Simple in-memory metrics for monitoring the pool."""

    jobs_processed: int = 0
    jobs_completed: int = 0
    jobs_failed: int = 0
    loop_errors: int = 0
    last_job_finished_at: datetime | None = None
    last_error: str | None = None
    last_error_at: datetime | None = None

    def snapshot(self) -> dict[str, Any]:
        return {
            "jobs_processed": self.jobs_processed,
            "jobs_completed": self.jobs_completed,
            "jobs_failed": self.jobs_failed,
            "loop_errors": self.loop_errors,
            "last_job_finished_at": self.last_job_finished_at.isoformat() if self.last_job_finished_at else None,
            "last_error": self.last_error,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
        }


class RelayWorkerPool:
    """Runs ``concurrency`` claim/execute loops against the job queue.

    Each loop holds at most one job at a time. ``stop`` stops claiming, waits
    for in-flight jobs up to the shutdown timeout and cancels what is left; a
    cancelled job keeps its lock until it expires and is then recovered by the
    queue as stalled.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: TransactionProcessor,
        *,
        concurrency: int | None = None,
        poll_interval_seconds: float | None = None,
        shutdown_timeout_seconds: float | None = None,
        name: str | None = None,
    ) -> None:
        self._queue = queue
        self._processor = processor
        self.concurrency = concurrency or settings.relay_worker_concurrency
        self.poll_interval_seconds = (
            settings.relay_poll_interval_seconds if poll_interval_seconds is None else poll_interval_seconds
        )
        self._shutdown_timeout = (
            settings.relay_shutdown_timeout_seconds if shutdown_timeout_seconds is None else shutdown_timeout_seconds
        )
        self._name = name or f"relay-{os.getpid()}"
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._metrics = RelayWorkerMetrics()
        self.is_running: bool = False

    @property
    def metrics(self) -> RelayWorkerMetrics:
        return self._metrics

    def start(self) -> None:
        if self._tasks and any(not task.done() for task in self._tasks):
            return
        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(self._run_loop(f"{self._name}-{index}"), name=f"{self._name}-{index}")
            for index in range(self.concurrency)
        ]
        self.is_running = True
        logger.info(
            "Relay worker pool started",
            concurrency=self.concurrency,
            poll_interval_seconds=self.poll_interval_seconds,
        )

    async def stop(self) -> None:
        if not self._tasks:
            return
        self._stop_event.set()
        done, pending = await asyncio.wait(self._tasks, timeout=self._shutdown_timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelling relay jobs still running at shutdown", cancelled=len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
        self.is_running = False
        logger.info("Relay worker pool stopped", finished=len(done), cancelled=len(pending))

    async def run_once(self, worker_id: str | None = None) -> bool:
        """Claim and execute a single job; returns ``False`` when the queue is idle."""

        worker_id = worker_id or f"{self._name}-once"
        job = await self._queue.claim_next(worker_id)
        if job is None:
            return False
        await self._execute(job, worker_id)
        return True

    async def drain(self, max_jobs: int | None = None) -> int:
        """Process due jobs until the queue is idle or ``max_jobs`` is reached."""

        processed = 0
        while max_jobs is None or processed < max_jobs:
            if not await self.run_once():
                break
            processed += 1
        return processed

    def health_snapshot(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "concurrency": self.concurrency,
            "poll_interval_seconds": self.poll_interval_seconds,
            "metrics": self._metrics.snapshot(),
        }

    async def _run_loop(self, worker_id: str) -> None:
        while not self._stop_event.is_set():
            try:
                processed = await self.run_once(worker_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - defensive logging
                self._metrics.loop_errors += 1
                self._metrics.last_error = str(exc)
                self._metrics.last_error_at = _utcnow()
                logger.exception("Relay worker iteration failed", worker_id=worker_id, error=str(exc))
                processed = False
            if processed:
                continue
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _execute(self, job: JobRecord, worker_id: str) -> None:
        self._metrics.jobs_processed += 1
        with job_span(job.id, job.job_type.value, job.attempts):
            try:
                result = await asyncio.wait_for(execute_job(job, self._processor), timeout=job.timeout_seconds)
            except PermanentJobError as exc:
                self._record_failure(str(exc))
                await self._queue.fail(job.id, worker_id, str(exc), retryable=False)
            except asyncio.TimeoutError:
                message = f"job timed out after {job.timeout_seconds}s"
                self._record_failure(message)
                await self._queue.fail(job.id, worker_id, message)
            except Exception as exc:
                message = str(exc) or exc.__class__.__name__
                self._record_failure(message)
                logger.exception(
                    "Relay job raised",
                    job_id=job.id,
                    job_type=job.job_type.value,
                    worker_id=worker_id,
                    attempt=job.attempts,
                )
                await self._queue.fail(job.id, worker_id, message)
            else:
                self._metrics.jobs_completed += 1
                await self._queue.complete(job.id, worker_id, result)
            finally:
                self._metrics.last_job_finished_at = _utcnow()

    def _record_failure(self, message: str) -> None:
        self._metrics.jobs_failed += 1
        self._metrics.last_error = message
        self._metrics.last_error_at = _utcnow()


__all__ = ["RelayWorkerMetrics", "RelayWorkerPool"]
