"""SQLAlchemy models registered on the shared metadata."""

from .relay_job import RelayJob, RelayJobStateEnum, RelayJobTypeEnum  # noqa: F401

__all__ = ["RelayJob", "RelayJobStateEnum", "RelayJobTypeEnum"]
