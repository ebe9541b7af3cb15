"""
Proof Engine - Submission Models

Channel-neutral value objects passed between the gateway, the attachment
service and validators. Each ingress channel builds a SubmissionRequest
through its own constructor so shared logic never inspects channel-specific
parameter shapes.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .db_models import ProofType, ProofStatus, SubmissionMethod


@dataclass(frozen=True)
class ClientMetadata:
    """Requester details recorded on the compliance audit."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        data = {"ip_address": self.ip_address, "user_agent": self.user_agent}
        data.update(self.extra)
        return data


@dataclass(frozen=True)
class AttachmentContext:
    """
    Explicit execution context for one attachment unit of work.

    `resubmission` is True when the proof was rejected before this submission;
    validators read it instead of re-deriving it from status history.
    """
    channel: SubmissionMethod
    resubmission: bool = False
    staff_initiated: bool = False


@dataclass(frozen=True)
class Upload:
    """Raw bytes posted to the server; stored only once the request is authorized."""
    data: bytes
    filename: str
    content_type: Optional[str] = None


@dataclass(frozen=True)
class SubmissionRequest:
    """Canonical submission, one constructor per channel."""
    application_id: str
    proof_type: ProofType
    actor_id: str
    channel: SubmissionMethod
    blob_refs: Sequence[str] = ()
    uploads: Sequence[Upload] = ()
    target_status: ProofStatus = ProofStatus.NOT_REVIEWED
    client_metadata: ClientMetadata = field(default_factory=ClientMetadata)
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None

    @property
    def staff_initiated(self) -> bool:
        return self.channel == SubmissionMethod.PAPER

    @classmethod
    def for_web(cls, application_id: str, proof_type: str, actor_id: str,
                signed_blob_id: Optional[str] = None, ip_address: Optional[str] = None,
                user_agent: Optional[str] = None, upload: Optional[Upload] = None) -> "SubmissionRequest":
        return cls(
            application_id=application_id,
            proof_type=_coerce_proof_type(proof_type),
            actor_id=actor_id,
            channel=SubmissionMethod.WEB,
            blob_refs=(signed_blob_id,) if signed_blob_id else (),
            uploads=(upload,) if upload is not None and not signed_blob_id else (),
            client_metadata=ClientMetadata(ip_address=ip_address, user_agent=user_agent),
        )

    @classmethod
    def for_api(cls, application_id: str, proof_type: str, actor_id: str,
                signed_blob_id: str, ip_address: Optional[str] = None,
                user_agent: Optional[str] = None) -> "SubmissionRequest":
        return cls(
            application_id=application_id,
            proof_type=_coerce_proof_type(proof_type),
            actor_id=actor_id,
            channel=SubmissionMethod.API,
            blob_refs=(signed_blob_id,) if signed_blob_id else (),
            client_metadata=ClientMetadata(ip_address=ip_address, user_agent=user_agent),
        )

    @classmethod
    def for_paper(cls, application_id: str, proof_type: str, admin_id: str,
                  status: str, signed_blob_id: Optional[str] = None,
                  rejection_reason: Optional[str] = None, notes: Optional[str] = None,
                  ip_address: Optional[str] = None) -> "SubmissionRequest":
        return cls(
            application_id=application_id,
            proof_type=_coerce_proof_type(proof_type),
            actor_id=admin_id,
            channel=SubmissionMethod.PAPER,
            blob_refs=(signed_blob_id,) if signed_blob_id else (),
            target_status=ProofStatus(status),
            client_metadata=ClientMetadata(ip_address=ip_address),
            rejection_reason=rejection_reason,
            notes=notes,
        )

    @classmethod
    def for_email(cls, application_id: str, proof_type: str, actor_id: str,
                  uploads: Sequence[Upload], inbound_email_id: str,
                  sender: Optional[str] = None, subject: Optional[str] = None) -> "SubmissionRequest":
        return cls(
            application_id=application_id,
            proof_type=_coerce_proof_type(proof_type),
            actor_id=actor_id,
            channel=SubmissionMethod.EMAIL,
            uploads=tuple(uploads),
            client_metadata=ClientMetadata(
                ip_address="0.0.0.0",
                extra={
                    "inbound_email_id": inbound_email_id,
                    "email_from": sender,
                    "email_subject": subject,
                },
            ),
        )


def _coerce_proof_type(value) -> Optional[ProofType]:
    """Unknown proof types are kept as None so the gateway can refuse them."""
    try:
        return ProofType(value)
    except ValueError:
        return None


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    AUTHORIZATION_ERROR = "authorization_error"
    RATE_LIMITED = "rate_limited"
    VALIDATION_ERROR = "validation_error"
    INVALID_TRANSITION = "invalid_transition"


@dataclass
class SubmissionOutcome:
    """
    Result at the gateway boundary.

    The primary result is independent of best-effort side effects; failures of
    those (e.g. notification creation) are listed in side_effect_errors.
    """
    kind: OutcomeKind
    message: str
    attachment_ids: List[str] = field(default_factory=list)
    side_effect_errors: List[str] = field(default_factory=list)
    error_type: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS
