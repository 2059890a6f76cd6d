"""Error taxonomy shared by the relay pipeline.

Retry semantics are carried by the exception type: the job queue retries
anything that is not a :class:`PermanentJobError`.
"""

from __future__ import annotations


class RelayError(RuntimeError):
    """Base class for relay failures."""


class RelayValidationError(RelayError):
    """Raised when an inbound payload is malformed; never enqueued."""

    def __init__(self, message: str, *, fields: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or {}


class ExternalServiceError(RelayError):
    """Raised when the loyalty or POS backend is unreachable or erroring."""

    def __init__(self, service: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{service} error: {message}")
        self.service = service
        self.status_code = status_code


class PermanentJobError(RelayError):
    """A failure that retrying cannot fix; the job is failed immediately."""


class InsufficientBalanceError(PermanentJobError):
    def __init__(self, member_id: str, *, requested: int, balance: object) -> None:
        super().__init__(
            f"Insufficient points balance for member {member_id}: requested {requested}, available {balance}"
        )
        self.member_id = member_id
        self.requested = requested
        self.balance = balance


__all__ = [
    "ExternalServiceError",
    "InsufficientBalanceError",
    "PermanentJobError",
    "RelayError",
    "RelayValidationError",
]
