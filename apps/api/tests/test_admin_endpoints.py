import pytest
from httpx import ASGITransport, AsyncClient

from conftest import make_transaction
from loyalty_relay.core.settings import settings
from loyalty_relay.models.relay_job import RelayJobTypeEnum


@pytest.mark.asyncio
async def test_queue_stats_reports_counts_and_metrics(app_with_runtime) -> None:
    app, runtime = app_with_runtime
    await runtime.queue.enqueue_transaction(make_transaction("txn-1"))
    await runtime.queue.enqueue_transaction(make_transaction("txn-2"))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/admin/queue/stats")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["stats"]["waiting"] == 2
    assert body["stats"]["total"] == 2
    assert body["metrics"]["jobs"]["enqueued"] == 2


@pytest.mark.asyncio
async def test_job_status_returns_job_and_404_for_unknown(app_with_runtime) -> None:
    app, runtime = app_with_runtime
    job = await runtime.queue.enqueue_transaction(make_transaction())

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        found = await client.get(f"/api/v1/admin/queue/job/{job.id}")
        missing = await client.get("/api/v1/admin/queue/job/999")

    assert found.status_code == 200
    status = found.json()["job"]
    assert status["jobId"] == str(job.id)
    assert status["type"] == "process-transaction"
    assert status["state"] == "waiting"
    assert status["attempts"] == 0
    assert status["maxAttempts"] == 3
    assert status["data"]["transaction"]["transactionId"] == "txn-1"
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Job not found"


@pytest.mark.asyncio
async def test_historical_sync_is_enqueued_as_backfill(app_with_runtime) -> None:
    app, runtime = app_with_runtime

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/admin/sync/historical",
            json={"startDate": "2026-10-01", "endDate": "2026-10-18"},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Historical sync job created"
    job = await runtime.queue.get_job(int(body["jobId"]))
    assert job is not None
    assert job.job_type == RelayJobTypeEnum.HISTORICAL_SYNC
    assert job.priority == 10
    assert job.payload == {"startDate": "2026-10-01", "endDate": "2026-10-18"}
    assert job.timeout_seconds == settings.historical_sync_timeout_seconds


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"startDate": "2026-10-18", "endDate": "2026-10-01"},
        {"startDate": "not-a-date", "endDate": "2026-10-01"},
        {"endDate": "2026-10-01"},
    ],
)
async def test_historical_sync_rejects_bad_ranges(app_with_runtime, payload) -> None:
    app, runtime = app_with_runtime

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/admin/sync/historical", json=payload)

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert (await runtime.queue.get_stats())["total"] == 0


@pytest.mark.asyncio
async def test_retry_endpoint_requeues_failed_job(app_with_runtime) -> None:
    app, runtime = app_with_runtime
    enqueued = await runtime.queue.enqueue_transaction(make_transaction())
    job = await runtime.queue.claim_next("worker-1")
    assert job is not None
    await runtime.queue.fail(job.id, "worker-1", "Insufficient points balance", retryable=False)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        retried = await client.post(f"/api/v1/admin/queue/job/{enqueued.id}/retry")
        conflict = await client.post(f"/api/v1/admin/queue/job/{enqueued.id}/retry")
        missing = await client.post("/api/v1/admin/queue/job/999/retry")

    assert retried.status_code == 200
    assert retried.json()["job"]["state"] == "waiting"
    assert retried.json()["job"]["attempts"] == 0
    assert conflict.status_code == 409
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_admin_routes_require_configured_api_key(app_with_runtime, monkeypatch) -> None:
    app, _ = app_with_runtime
    monkeypatch.setattr(settings, "admin_api_key", "s3cret")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        anonymous = await client.get("/api/v1/admin/queue/stats")
        wrong = await client.get("/api/v1/admin/queue/stats", headers={"X-API-Key": "nope"})
        allowed = await client.get("/api/v1/admin/queue/stats", headers={"X-API-Key": "s3cret"})

    assert anonymous.status_code == 401
    assert wrong.status_code == 401
    assert wrong.json()["detail"] == "Invalid API key"
    assert allowed.status_code == 200
