"""Dependencies exposing the relay runtime's services to route handlers."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from loyalty_relay.services.loyalty.member_resolver import MemberResolver
from loyalty_relay.services.loyalty.vouchers import VoucherService
from loyalty_relay.services.queue.job_queue import JobQueue
from loyalty_relay.services.relay.runtime import RelayRuntime
from loyalty_relay.workers.relay_worker import RelayWorkerPool


def get_relay_runtime(request: Request) -> RelayRuntime:
    runtime = getattr(request.app.state, "relay_runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay runtime not initialised",
        )
    return runtime


def get_job_queue(runtime: RelayRuntime = Depends(get_relay_runtime)) -> JobQueue:
    return runtime.queue


def get_member_resolver(runtime: RelayRuntime = Depends(get_relay_runtime)) -> MemberResolver:
    return runtime.member_resolver


def get_voucher_service(runtime: RelayRuntime = Depends(get_relay_runtime)) -> VoucherService:
    return runtime.vouchers


def get_worker_pool(request: Request) -> RelayWorkerPool | None:
    runtime = getattr(request.app.state, "relay_runtime", None)
    if runtime is None or not runtime.workers_started:
        return None
    return runtime.worker_pool
