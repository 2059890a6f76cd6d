from __future__ import annotations

import json

import pytest
from loguru import logger
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from loyalty_relay.core.logging import configure_logging
from loyalty_relay.observability import tracing
from loyalty_relay.observability.relay import RelayObservabilityStore


def test_relay_store_counts_events_per_job_type() -> None:
    store = RelayObservabilityStore()
    store.record_enqueued("process-transaction")
    store.record_enqueued("void-transaction")
    store.record_duplicate("process-transaction")
    store.record_retry("process-transaction", 2.0)
    store.record_failed("void-transaction")
    store.record_outcome("points-awarded")

    snapshot = store.snapshot().as_dict()

    assert snapshot["jobs"] == {"enqueued": 2, "duplicates": 1, "retried": 1, "failed": 1}
    assert snapshot["by_type"]["process-transaction"] == {"enqueued": 1, "duplicates": 1, "retried": 1}
    assert snapshot["outcomes"] == {"points-awarded": 1}
    assert snapshot["last_retry_delay_seconds"] == 2.0

    store.reset()
    assert store.snapshot().jobs == {}


@pytest.fixture
def span_exporter(monkeypatch) -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    monkeypatch.setattr(tracing.trace, "get_tracer", lambda name: provider.get_tracer(name))
    return exporter


def test_job_span_records_attributes(span_exporter) -> None:
    with tracing.job_span(12, "process-transaction", 2):
        pass

    (span,) = span_exporter.get_finished_spans()
    assert span.name == "relay.job.process-transaction"
    assert span.attributes["relay.job_id"] == 12
    assert span.attributes["relay.attempt"] == 2
    assert span.status.status_code != StatusCode.ERROR


def test_job_span_marks_errors(span_exporter) -> None:
    with pytest.raises(RuntimeError):
        with tracing.job_span(3, "void-transaction", 1):
            raise RuntimeError("ledger unavailable")

    (span,) = span_exporter.get_finished_spans()
    assert span.status.status_code == StatusCode.ERROR
    assert span.status.description == "ledger unavailable"


def test_structured_logs_carry_keyword_context(capsys) -> None:
    configure_logging(service_name="loyalty-relay", environment="development", version="test")

    logger.info("Relay job enqueued", job_id=41, job_type="process-transaction")

    line = capsys.readouterr().out.strip().splitlines()[-1]
    payload = json.loads(line)
    assert payload["message"] == "Relay job enqueued"
    assert payload["service"] == "loyalty-relay"
    assert payload["job_id"] == 41
    assert payload["job_type"] == "process-transaction"
    assert payload["level"] == "info"
