"""
Proof Submission Services

Submission Gateway -> Rate Limiter -> Attachment Service -> Audit Recorder,
with review decisions flowing through the Rejection/Archival Policy.

- SubmissionGateway: channel authorization and transaction boundary
- ProofAttachmentService: the only writer of proof status
- ProofReviewService: staff approve/reject
- RejectionPolicy: rejection counting and archival
- ProofSubmissionMailbox: inbound email channel
"""

from .errors import (
    ProofSubmissionError,
    AuthorizationError,
    RateLimitExceeded,
    ValidationError,
    InvalidTransition,
    AttachmentFailure,
    ConsistencyViolation,
)
from .state_machine import ProofStateMachine, SlotState, Authority
from .rate_limit import RateLimiter
from .blob_store import BlobStore, DiskStorageService
from .validator import ProofAttachmentValidator, AttachmentCandidate
from .audit_recorder import AuditRecorder, get_system_user
from .attachment_service import ProofAttachmentService
from .rejection_policy import RejectionPolicy, RejectionDecision
from .review_service import ProofReviewService, ReviewOutcome
from .gateway import SubmissionGateway
from .inbound_email import ProofSubmissionMailbox, process_inbound_email

__all__ = [
    # Errors
    'ProofSubmissionError',
    'AuthorizationError',
    'RateLimitExceeded',
    'ValidationError',
    'InvalidTransition',
    'AttachmentFailure',
    'ConsistencyViolation',
    # Core
    'ProofStateMachine',
    'SlotState',
    'Authority',
    'RateLimiter',
    'BlobStore',
    'DiskStorageService',
    'ProofAttachmentValidator',
    'AttachmentCandidate',
    'AuditRecorder',
    'get_system_user',
    'ProofAttachmentService',
    # Decisions
    'RejectionPolicy',
    'RejectionDecision',
    'ProofReviewService',
    'ReviewOutcome',
    # Channels
    'SubmissionGateway',
    'ProofSubmissionMailbox',
    'process_inbound_email',
]
