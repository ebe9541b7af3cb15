"""
Proof Review Service

Staff approve/reject decisions on submitted proofs. The status write goes
through ProofAttachmentService.record_review; rejections then run the
RejectionPolicy and approvals decide a proof_approved notification.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ...models.db_models import ApplicationDB, ProofStatus, ProofType, SubmissionMethod
from ..notifications import NotificationService
from .attachment_service import ProofAttachmentService
from .audit_recorder import AuditRecorder
from .errors import InvalidTransition, ValidationError
from .rejection_policy import RejectionDecision, RejectionPolicy


logger = logging.getLogger(__name__)

REVIEWABLE_STATUSES = (ProofStatus.APPROVED, ProofStatus.REJECTED)


@dataclass
class ReviewOutcome:
    success: bool
    message: str
    decision: Optional[RejectionDecision] = None
    review_id: Optional[str] = None
    error_type: Optional[str] = None
    side_effect_errors: List[str] = field(default_factory=list)


class ProofReviewService:
    """
    Owns the transaction for one review decision.

    Usage:
        outcome = ProofReviewService(db).review(application, admin.id, "income", "rejected", "Illegible")
    """

    def __init__(self, db: Session, attachment_service: Optional[ProofAttachmentService] = None):
        self.db = db
        self.attachments = attachment_service or ProofAttachmentService(db)
        self.notifications = NotificationService(db)
        self.audit = AuditRecorder(db)

    def review(
        self,
        application: ApplicationDB,
        admin_id: str,
        proof_type: str,
        status: str,
        rejection_reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ReviewOutcome:
        try:
            proof_type, status = self._validate(proof_type, status, rejection_reason)
            review = self.attachments.record_review(
                application, proof_type, status, admin_id,
                rejection_reason=rejection_reason, notes=notes,
            )
            decision, errors = self.after_decision(application, proof_type, status, admin_id, rejection_reason)
            self.db.commit()
        except (ValidationError, InvalidTransition) as e:
            self.db.rollback()
            logger.info(f"Review refused for application {application.id}: {e}")
            return ReviewOutcome(
                success=False,
                message=str(e),
                error_type=getattr(e, "error_type", "invalid_transition"),
            )
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Proof {proof_type.value} {status.value} for application {application.id} by {admin_id}")
        return ReviewOutcome(
            success=True,
            message=f"{proof_type.value.capitalize()} proof {status.value}",
            decision=decision,
            review_id=review.id,
            side_effect_errors=errors,
        )

    def after_decision(
        self,
        application: ApplicationDB,
        proof_type: ProofType,
        status: ProofStatus,
        admin_id: str,
        rejection_reason: Optional[str] = None,
        channel: Optional[SubmissionMethod] = None,
    ) -> Tuple[Optional[RejectionDecision], List[str]]:
        """
        Consequences of an approved/rejected decision (review or paper).

        Returns (rejection decision or None, side-effect errors)
        """
        if status == ProofStatus.REJECTED:
            decision = RejectionPolicy(self.db, self.notifications).apply(
                application, proof_type, admin_id, rejection_reason,
            )
            return decision, list(decision.side_effect_errors)

        if status != ProofStatus.APPROVED:
            return None, []

        errors = []
        _, error = self.notifications.notify(
            recipient_id=application.user_id,
            action="proof_approved",
            actor_id=admin_id,
            application_id=application.id,
            metadata={
                "proof_type": proof_type.value,
                "submission_method": channel.value if channel else None,
            },
        )
        if error:
            errors.append(error)

        if all(application.proof_status(pt) == ProofStatus.APPROVED for pt in ProofType):
            self.audit.record_event(
                actor_id=admin_id,
                action="all_proofs_approved",
                metadata={"application_id": application.id},
            )
        return None, errors

    @staticmethod
    def _validate(proof_type: str, status: str, rejection_reason: Optional[str]) -> Tuple[ProofType, ProofStatus]:
        try:
            proof_type = ProofType(proof_type)
        except ValueError:
            raise ValidationError("invalid_proof_type", f"Invalid proof type: {proof_type}")
        try:
            status = ProofStatus(status)
        except ValueError:
            raise ValidationError("invalid_status", f"Invalid status: {status}")
        if status not in REVIEWABLE_STATUSES:
            raise ValidationError("invalid_status", f"Review status must be approved or rejected, got {status.value}")
        if status == ProofStatus.REJECTED and not (rejection_reason or "").strip():
            raise ValidationError("missing_rejection_reason", "Rejection reason is required")
        return proof_type, status
