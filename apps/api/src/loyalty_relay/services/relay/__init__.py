"""Relay pipeline: transaction processing and runtime wiring."""

from .processor import (  # noqa: F401
    HistoricalSyncSummary,
    OutcomeStatus,
    ProcessingOutcome,
    SideEffectOutcome,
    SideEffectStatus,
    TransactionProcessor,
)
