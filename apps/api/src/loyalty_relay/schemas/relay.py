"""Webhook envelopes, admin requests and job status payloads."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from loyalty_relay.schemas.pos import PosTransaction, PosVoidNotice


class _WebhookEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    event_type: str = Field(..., alias="eventType", min_length=1)
    event_id: str = Field(..., alias="eventId", min_length=1)
    timestamp: str = Field(..., min_length=1)


class TransactionWebhook(_WebhookEnvelope):
    data: PosTransaction


class VoidWebhook(_WebhookEnvelope):
    data: PosVoidNotice


class WebhookAccepted(BaseModel):
    success: bool = True
    message: str
    jobId: str
    duplicate: bool = False


class HistoricalSyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: date = Field(..., alias="startDate")
    end_date: date = Field(..., alias="endDate")

    @model_validator(mode="after")
    def _check_range(self) -> "HistoricalSyncRequest":
        if self.start_date > self.end_date:
            raise ValueError("startDate must be on or before endDate")
        return self


class HistoricalSyncAccepted(BaseModel):
    success: bool = True
    message: str = "Historical sync job created"
    jobId: str


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    total: int = 0


class QueueStatsResponse(BaseModel):
    success: bool = True
    stats: QueueStats
    metrics: dict[str, Any] = Field(default_factory=dict)


class JobStatus(BaseModel):
    jobId: str
    type: str
    state: str
    priority: int
    attempts: int
    maxAttempts: int
    lastError: str | None = None
    result: Any | None = None
    data: dict[str, Any] | None = None
    createdAt: datetime | None = None
    finishedAt: datetime | None = None


class JobStatusResponse(BaseModel):
    success: bool = True
    job: JobStatus


__all__ = [
    "HistoricalSyncAccepted",
    "HistoricalSyncRequest",
    "JobStatus",
    "JobStatusResponse",
    "QueueStats",
    "QueueStatsResponse",
    "TransactionWebhook",
    "VoidWebhook",
    "WebhookAccepted",
]
