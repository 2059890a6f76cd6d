from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class RelaySnapshot:
    jobs: Dict[str, int]
    by_type: Dict[str, Dict[str, int]]
    outcomes: Dict[str, int]
    last_retry_delay_seconds: float | None

    def as_dict(self) -> Dict[str, object]:
        return {
            "jobs": dict(self.jobs),
            "by_type": {key: dict(value) for key, value in self.by_type.items()},
            "outcomes": dict(self.outcomes),
            "last_retry_delay_seconds": self.last_retry_delay_seconds,
        }


class RelayObservabilityStore:
    """Collect relay queue and processor telemetry for the admin surface."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: Dict[str, int] = defaultdict(int)
        self._by_type: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._outcomes: Dict[str, int] = defaultdict(int)
        self._last_retry_delay: float | None = None

    def _record(self, event: str, job_type: str) -> None:
        self._jobs[event] += 1
        self._by_type[job_type][event] += 1

    def record_enqueued(self, job_type: str) -> None:
        with self._lock:
            self._record("enqueued", job_type)

    def record_duplicate(self, job_type: str) -> None:
        with self._lock:
            self._record("duplicates", job_type)

    def record_completed(self, job_type: str) -> None:
        with self._lock:
            self._record("completed", job_type)

    def record_retry(self, job_type: str, delay_seconds: float) -> None:
        with self._lock:
            self._record("retried", job_type)
            self._last_retry_delay = delay_seconds

    def record_failed(self, job_type: str) -> None:
        with self._lock:
            self._record("failed", job_type)

    def record_outcome(self, status: str) -> None:
        with self._lock:
            self._outcomes[status] += 1

    def snapshot(self) -> RelaySnapshot:
        with self._lock:
            return RelaySnapshot(
                jobs=dict(self._jobs),
                by_type={key: dict(value) for key, value in self._by_type.items()},
                outcomes=dict(self._outcomes),
                last_retry_delay_seconds=self._last_retry_delay,
            )

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()
            self._by_type.clear()
            self._outcomes.clear()
            self._last_retry_delay = None


_STORE = RelayObservabilityStore()


def get_relay_store() -> RelayObservabilityStore:
    return _STORE


__all__ = ["get_relay_store", "RelayObservabilityStore", "RelaySnapshot"]
