"""Durable relay job queue."""

from .job_queue import (  # noqa: F401
    EnqueuedJob,
    FailureDecision,
    JobQueue,
    JobRecord,
    JobStateError,
    priority_for_transaction,
)
from .policy import RetryPolicy  # noqa: F401
