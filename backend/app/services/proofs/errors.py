"""
Proof submission error taxonomy.

AuthorizationError, RateLimitExceeded, ValidationError and InvalidTransition
are recovered at the gateway boundary. AttachmentFailure aborts the unit of
work and propagates. ConsistencyViolation is a report record, never raised.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class ProofSubmissionError(Exception):
    """Base class for proof submission errors."""


class AuthorizationError(ProofSubmissionError):
    """Wrong proof type, wrong owner, or disallowed current status."""


class RateLimitExceeded(ProofSubmissionError):
    """Throttle tripped for (action, method, actor)."""

    def __init__(self, action: str, method: str, limit: int, period_hours: int):
        self.action = action
        self.method = method
        self.limit = limit
        self.period_hours = period_hours
        super().__init__(
            f"Rate limit exceeded for {action} ({method}): "
            f"maximum {limit} submissions per {period_hours} hour(s)"
        )


class ValidationError(ProofSubmissionError):
    """Malformed, missing or oversized attachment."""

    def __init__(self, error_type: str, message: str):
        self.error_type = error_type
        super().__init__(message)


class InvalidTransition(ProofSubmissionError):
    """Proof status transition not allowed for this actor/state."""


class AttachmentFailure(ProofSubmissionError):
    """Blob store or persistence failure inside the attachment unit of work."""


@dataclass(frozen=True)
class ConsistencyViolation:
    """Divergence between recorded proof status and attachment presence."""
    application_id: str
    proof_type: str
    divergence: str  # approved_without_attachment | stale_not_reviewed
    status: str
    attached: bool
    needs_review_since: Optional[datetime] = None

    def as_dict(self) -> dict:
        return {
            "application_id": self.application_id,
            "proof_type": self.proof_type,
            "divergence": self.divergence,
            "status": self.status,
            "attached": self.attached,
            "needs_review_since": self.needs_review_since.isoformat() if self.needs_review_since else None,
        }
