"""Proof Engine - Data Models"""
from .db_models import (
    # Enums
    UserRole, ApplicationStatus, ProofType, ProofStatus, SubmissionMethod,
    DeliveryStatus, InboundEmailStatus, ACTIVE_APPLICATION_STATUSES,
    # Tables
    UserDB, ApplicationDB, BlobDB, ProofAttachmentDB, ProofReviewDB,
    EventDB, ProofSubmissionAuditDB, NotificationDB, RateLimitCounterDB,
    PolicyDB, InboundEmailDB,
    ImmutableRecordError,
)
from .submission import (
    ClientMetadata, AttachmentContext, SubmissionRequest, Upload,
    OutcomeKind, SubmissionOutcome,
)

__all__ = [
    "UserRole", "ApplicationStatus", "ProofType", "ProofStatus", "SubmissionMethod",
    "DeliveryStatus", "InboundEmailStatus", "ACTIVE_APPLICATION_STATUSES",
    "UserDB", "ApplicationDB", "BlobDB", "ProofAttachmentDB", "ProofReviewDB",
    "EventDB", "ProofSubmissionAuditDB", "NotificationDB", "RateLimitCounterDB",
    "PolicyDB", "InboundEmailDB",
    "ImmutableRecordError",
    "ClientMetadata", "AttachmentContext", "SubmissionRequest", "Upload",
    "OutcomeKind", "SubmissionOutcome",
]
