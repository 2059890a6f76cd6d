import pytest
from httpx import ASGITransport, AsyncClient

from loyalty_relay.models.relay_job import RelayJobStateEnum, RelayJobTypeEnum


def _transaction_event(event_id: str = "evt-1", **data_overrides) -> dict:
    data = {
        "transactionId": "txn-1",
        "storeId": "store-1",
        "terminalId": "term-1",
        "timestamp": "2026-10-19T12:00:00Z",
        "totalAmount": 42.5,
        "subtotal": 40,
        "tax": 2.5,
        "status": "completed",
        "customerPhone": "555-123-4567",
        "items": [],
    }
    data.update(data_overrides)
    return {
        "eventType": "transaction.completed",
        "eventId": event_id,
        "timestamp": "2026-10-19T12:00:01Z",
        "data": data,
    }


@pytest.mark.asyncio
async def test_transaction_webhook_queues_job(app_with_runtime) -> None:
    app, runtime = app_with_runtime

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/webhooks/transaction", json=_transaction_event())

    assert response.status_code == 202
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Transaction queued for processing"
    assert body["duplicate"] is False

    job = await runtime.queue.get_job(int(body["jobId"]))
    assert job is not None
    assert job.job_type == RelayJobTypeEnum.PROCESS_TRANSACTION
    assert job.state == RelayJobStateEnum.WAITING
    assert job.priority == 5
    assert job.payload["transaction"]["transactionId"] == "txn-1"
    assert job.dedupe_key == "process-transaction:txn-1"


@pytest.mark.asyncio
async def test_high_value_transaction_gets_high_priority(app_with_runtime) -> None:
    app, runtime = app_with_runtime

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/webhooks/transaction", json=_transaction_event(totalAmount=250))

    job = await runtime.queue.get_job(int(response.json()["jobId"]))
    assert job is not None and job.priority == 1


@pytest.mark.asyncio
async def test_redelivered_event_is_acknowledged_once(app_with_runtime) -> None:
    app, runtime = app_with_runtime

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        first = await client.post("/api/v1/webhooks/transaction", json=_transaction_event("evt-7"))
        second = await client.post("/api/v1/webhooks/transaction", json=_transaction_event("evt-7"))

    assert first.status_code == second.status_code == 202
    assert second.json()["duplicate"] is True
    assert second.json()["jobId"] == first.json()["jobId"]
    assert (await runtime.queue.get_stats())["total"] == 1


@pytest.mark.asyncio
async def test_same_sale_under_new_event_id_is_not_queued_twice(app_with_runtime) -> None:
    app, runtime = app_with_runtime

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        first = await client.post("/api/v1/webhooks/transaction", json=_transaction_event("evt-8"))
        second = await client.post("/api/v1/webhooks/transaction", json=_transaction_event("evt-9"))
        other = await client.post(
            "/api/v1/webhooks/transaction",
            json=_transaction_event("evt-10", transactionId="txn-2"),
        )

    assert second.json()["duplicate"] is True
    assert second.json()["jobId"] == first.json()["jobId"]
    assert other.json()["duplicate"] is False
    assert (await runtime.queue.get_stats())["total"] == 2


@pytest.mark.asyncio
async def test_malformed_transaction_is_rejected_without_enqueue(app_with_runtime) -> None:
    app, runtime = app_with_runtime
    event = _transaction_event()
    del event["data"]["transactionId"]

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/webhooks/transaction", json=event)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"].startswith("data.transactionId")
    assert "data.transactionId" in body["fields"]
    assert (await runtime.queue.get_stats())["total"] == 0


@pytest.mark.asyncio
async def test_missing_envelope_fields_are_reported(app_with_runtime) -> None:
    app, _ = app_with_runtime

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/webhooks/transaction", json={"data": {}})

    assert response.status_code == 400
    fields = response.json()["fields"]
    assert {"eventType", "eventId", "timestamp"} <= set(fields)


@pytest.mark.asyncio
async def test_void_webhook_accepts_minimal_payload(app_with_runtime) -> None:
    app, runtime = app_with_runtime
    event = {
        "eventType": "transaction.voided",
        "eventId": "evt-void-1",
        "timestamp": "2026-10-19T13:00:00Z",
        "data": {"transactionId": "txn-1"},
    }

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/webhooks/void", json=event)

    assert response.status_code == 202
    assert response.json()["message"] == "Void transaction queued for processing"
    job = await runtime.queue.get_job(int(response.json()["jobId"]))
    assert job is not None
    assert job.job_type == RelayJobTypeEnum.VOID_TRANSACTION
    assert job.priority == 1
    assert job.payload == {"transaction": {"transactionId": "txn-1"}}


@pytest.mark.asyncio
async def test_webhooks_unavailable_without_runtime(app_with_runtime) -> None:
    app, _ = app_with_runtime
    app.state.relay_runtime = None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/webhooks/transaction", json=_transaction_event())

    assert response.status_code == 503
