"""Background workers supporting async relay processing."""

from .relay_worker import RelayWorkerMetrics, RelayWorkerPool

__all__ = [
    "RelayWorkerMetrics",
    "RelayWorkerPool",
]
