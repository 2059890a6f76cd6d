"""Durable relay job records backing the priority queue."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum as SqlEnum,
    Index,
    Integer,
    String,
    Text,
    func,
)

from loyalty_relay.db.base import Base


class RelayJobTypeEnum(str, Enum):
    PROCESS_TRANSACTION = "process-transaction"
    VOID_TRANSACTION = "void-transaction"
    HISTORICAL_SYNC = "historical-sync"


class RelayJobStateEnum(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


class RelayJob(Base):
    """A unit of queued relay work.

    ``id`` is monotonically increasing and doubles as the arrival order used to
    break ties between jobs of equal priority.
    """

    __tablename__ = "relay_jobs"
    __table_args__ = (
        Index("ix_relay_jobs_dispatch", "state", "priority", "id"),
        Index("ix_relay_jobs_available_at", "state", "available_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_type = Column(
        SqlEnum(
            RelayJobTypeEnum,
            name="relay_job_type_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    payload = Column(JSON, nullable=False)
    priority = Column(Integer, nullable=False, default=5)
    state = Column(
        SqlEnum(
            RelayJobStateEnum,
            name="relay_job_state_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=RelayJobStateEnum.WAITING,
    )
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    timeout_seconds = Column(Integer, nullable=False, default=120)
    dedupe_key = Column(String(255), nullable=True, unique=True)
    last_error = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)
    locked_by = Column(String(64), nullable=True)
    lock_expires_at = Column(DateTime(timezone=True), nullable=True)
    available_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


__all__ = ["RelayJob", "RelayJobStateEnum", "RelayJobTypeEnum"]
