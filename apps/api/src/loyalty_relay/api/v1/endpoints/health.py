from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from loyalty_relay.api.dependencies.relay import get_worker_pool
from loyalty_relay.core.settings import settings
from loyalty_relay.workers.relay_worker import RelayWorkerPool

router = APIRouter(prefix="/health")


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]
    queue: Dict[str, int] | None = None


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    pool: RelayWorkerPool | None = Depends(get_worker_pool),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    if pool is not None:
        metrics = pool.metrics
        components["relay_workers"] = ComponentStatus(
            status="ready" if pool.is_running else "starting",
            detail=None if pool.is_running else "Relay worker pool not running",
            last_error_at=metrics.last_error_at.isoformat() if metrics.last_error_at else None,
        )
        if not pool.is_running:
            status = "degraded"
    elif settings.celery_broker_url:
        components["relay_workers"] = ComponentStatus(status="ready", detail="Managed by Celery")
    else:
        components["relay_workers"] = ComponentStatus(
            status="disabled",
            detail="Relay worker disabled via settings",
        )

    queue_counts: Dict[str, int] | None = None
    runtime = getattr(request.app.state, "relay_runtime", None)
    if runtime is None:
        components["job_queue"] = ComponentStatus(status="error", detail="Relay runtime not initialised")
        status = "error"
    else:
        try:
            queue_counts = await runtime.queue.get_stats()
        except SQLAlchemyError as exc:
            logger.exception("Readiness check could not reach the job store")
            components["job_queue"] = ComponentStatus(status="error", detail=f"Job store unreachable ({exc})")
            status = "error"
        else:
            components["job_queue"] = ComponentStatus(status="ready")

    return ReadinessPayload(status=status, components=components, queue=queue_counts)
