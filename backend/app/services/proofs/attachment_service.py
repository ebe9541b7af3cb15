"""
Proof Attachment Service

The single choke-point for proof state. Every channel (web, api, paper,
email), every staff review and every operator repair goes through this
service; nothing else writes income_proof_status / residency_proof_status.

Each operation runs as one unit of work inside a SAVEPOINT with the
application row locked:
1. Check the transition against the ProofStateMachine
2. Validate the blobs (pluggable validator, explicit AttachmentContext)
3. Detach the previous blobs and bind the new ones
4. Write the proof status and needs_review_since
5. Write the Event + ProofSubmissionAudit pair

Any failure rolls the savepoint back, so a bound blob with an unchanged
status (or the reverse) is never observable.
"""
import logging
import time
from datetime import datetime
from typing import List, Optional, Sequence, Union
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import (
    ApplicationDB,
    BlobDB,
    ProofAttachmentDB,
    ProofReviewDB,
    ProofStatus,
    ProofType,
    SubmissionMethod,
)
from ...models.submission import AttachmentContext, ClientMetadata
from .audit_recorder import AuditRecorder
from .blob_store import BlobStore
from .errors import AttachmentFailure, InvalidTransition, ProofSubmissionError, ValidationError
from .state_machine import Authority, ProofStateMachine
from .validator import AttachmentCandidate, ProofAttachmentValidator


logger = logging.getLogger(__name__)

BlobRef = Union[BlobDB, str]


class ProofAttachmentService:
    """
    Atomic proof transitions.

    Usage:
        service = ProofAttachmentService(db)
        service.attach(application, ProofType.INCOME, [signed_id], ...)
    """

    def __init__(
        self,
        db: Session,
        blob_store: Optional[BlobStore] = None,
        validator=None,
        audit: Optional[AuditRecorder] = None,
        state_machine: Optional[ProofStateMachine] = None,
    ):
        self.db = db
        self.blob_store = blob_store or BlobStore(db)
        self.validator = validator or ProofAttachmentValidator()
        self.audit = audit or AuditRecorder(db)
        self.state_machine = state_machine or ProofStateMachine()

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def attach(
        self,
        application: ApplicationDB,
        proof_type: ProofType,
        blobs: Sequence[BlobRef],
        actor_id: str,
        channel: SubmissionMethod,
        context: AttachmentContext,
        target_status: ProofStatus = ProofStatus.NOT_REVIEWED,
        client_metadata: Optional[ClientMetadata] = None,
        rejection_reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> List[ProofAttachmentDB]:
        """
        Bind blob(s) to a proof slot and set its status in one unit of work.

        Raises InvalidTransition, ValidationError or AttachmentFailure.
        """
        proof_type = ProofType(proof_type)
        target_status = ProofStatus(target_status)
        client_metadata = client_metadata or ClientMetadata()
        authority = Authority.STAFF_PAPER if context.staff_initiated else Authority.CONSTITUENT
        started = time.monotonic()

        try:
            with self.db.begin_nested():
                locked = self._lock(application.id)
                self.state_machine.assert_transition(locked, proof_type, target_status, authority)

                resolved = [self._resolve_blob(b) for b in blobs]
                self.validator.validate([self._candidate(b) for b in resolved], context)

                now = datetime.utcnow()
                for previous in locked.active_attachments(proof_type):
                    previous.detached_at = now

                attachments = []
                for blob in resolved:
                    attachment = ProofAttachmentDB(
                        id=str(uuid4()),
                        proof_type=proof_type,
                        blob_id=blob.id,
                        submission_method=channel,
                        attached_at=now,
                    )
                    locked.attachments.append(attachment)
                    attachments.append(attachment)

                locked.set_proof_status(proof_type, target_status)
                self._refresh_needs_review_since(locked)

                if context.staff_initiated and target_status != ProofStatus.NOT_REVIEWED:
                    self._add_review(locked, proof_type, target_status, actor_id, channel,
                                     rejection_reason, notes, now)

                self.audit.record_submission(
                    application_id=locked.id,
                    proof_type=proof_type,
                    actor_id=actor_id,
                    channel=channel,
                    client_metadata=client_metadata,
                    blob_count=len(attachments),
                    recorded_at=now,
                )
                self.db.flush()
                self._verify_persisted(locked, proof_type, attachments)

        except InvalidTransition:
            raise
        except (ValidationError, AttachmentFailure) as e:
            logger.warning(f"Proof {proof_type.value} attachment rejected for application {application.id}: {e}")
            self.audit.record_failure(application.id, proof_type, actor_id, channel, e)
            raise
        except Exception as e:
            logger.exception(f"Proof attachment error for application {application.id}: {e}")
            failure = AttachmentFailure(f"Failed to attach {proof_type.value} proof: {e}")
            self.audit.record_failure(application.id, proof_type, actor_id, channel, failure)
            raise failure from e

        duration_ms = round((time.monotonic() - started) * 1000, 1)
        logger.info(
            f"Proof {proof_type.value} {target_status.value} completed in {duration_ms}ms "
            f"(application={application.id}, channel={channel.value}, blobs={len(attachments)})"
        )
        return attachments

    # =========================================================================
    # STAFF DECISIONS
    # =========================================================================

    def record_review(
        self,
        application: ApplicationDB,
        proof_type: ProofType,
        status: ProofStatus,
        admin_id: str,
        rejection_reason: Optional[str] = None,
        notes: Optional[str] = None,
        channel: Optional[SubmissionMethod] = None,
    ) -> ProofReviewDB:
        """Decision on a submitted proof: not_reviewed -> approved/rejected."""
        proof_type = ProofType(proof_type)
        status = ProofStatus(status)

        def apply(locked: ApplicationDB, now: datetime) -> ProofReviewDB:
            self.state_machine.assert_transition(locked, proof_type, status, Authority.STAFF_REVIEW)
            if status == ProofStatus.APPROVED and not locked.proof_attached(proof_type):
                raise InvalidTransition(f"{proof_type.value.capitalize()} proof must be attached to approve")

            locked.set_proof_status(proof_type, status)
            self._refresh_needs_review_since(locked)
            review = self._add_review(locked, proof_type, status, admin_id, channel,
                                      rejection_reason, notes, now)
            self.audit.record_event(
                actor_id=admin_id,
                action="proof_reviewed",
                metadata={
                    "application_id": locked.id,
                    "proof_type": proof_type.value,
                    "status": status.value,
                    "rejection_reason": rejection_reason,
                    "review_id": review.id,
                },
                recorded_at=now,
            )
            return review

        return self._unit_of_work(application, proof_type, apply)

    def reject_without_attachment(
        self,
        application: ApplicationDB,
        proof_type: ProofType,
        admin_id: str,
        rejection_reason: str,
        notes: Optional[str] = None,
        channel: SubmissionMethod = SubmissionMethod.PAPER,
    ) -> ProofReviewDB:
        """Paper rejection when the constituent supplied no usable document."""
        proof_type = ProofType(proof_type)

        def apply(locked: ApplicationDB, now: datetime) -> ProofReviewDB:
            self.state_machine.assert_transition(locked, proof_type, ProofStatus.REJECTED, Authority.STAFF_PAPER)
            locked.set_proof_status(proof_type, ProofStatus.REJECTED)
            self._refresh_needs_review_since(locked)
            review = self._add_review(locked, proof_type, ProofStatus.REJECTED, admin_id, channel,
                                      rejection_reason, notes, now)
            self.audit.record_event(
                actor_id=admin_id,
                action="proof_rejected_without_attachment",
                metadata={
                    "application_id": locked.id,
                    "proof_type": proof_type.value,
                    "submission_method": channel.value,
                    "rejection_reason": rejection_reason,
                    "review_id": review.id,
                },
                recorded_at=now,
            )
            return review

        return self._unit_of_work(application, proof_type, apply)

    def reset_proof_status(
        self,
        application: ApplicationDB,
        proof_type: ProofType,
        operator_id: str,
        reason: str,
    ) -> None:
        """
        Operator repair for an approved proof with no attachment.

        The slot goes back to absent so the constituent can submit again.
        """
        proof_type = ProofType(proof_type)

        def apply(locked: ApplicationDB, now: datetime) -> None:
            self.state_machine.assert_transition(locked, proof_type, ProofStatus.NOT_REVIEWED, Authority.OPERATOR)
            if locked.proof_attached(proof_type):
                raise InvalidTransition(f"{proof_type.value.capitalize()} proof is attached; nothing to repair")

            locked.set_proof_status(proof_type, ProofStatus.NOT_REVIEWED)
            self._refresh_needs_review_since(locked)
            self.audit.record_event(
                actor_id=operator_id,
                action="proof_status_reset",
                metadata={
                    "application_id": locked.id,
                    "proof_type": proof_type.value,
                    "previous_status": ProofStatus.APPROVED.value,
                    "reason": reason,
                },
                recorded_at=now,
            )

        return self._unit_of_work(application, proof_type, apply)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _unit_of_work(self, application: ApplicationDB, proof_type: ProofType, apply):
        try:
            with self.db.begin_nested():
                locked = self._lock(application.id)
                result = apply(locked, datetime.utcnow())
                self.db.flush()
                return result
        except ProofSubmissionError:
            raise
        except Exception as e:
            logger.exception(f"Proof {proof_type.value} update failed for application {application.id}: {e}")
            raise AttachmentFailure(f"Failed to update {proof_type.value} proof: {e}") from e

    def _lock(self, application_id: str) -> ApplicationDB:
        """Row lock serializing concurrent transitions on one application."""
        application = (
            self.db.query(ApplicationDB)
            .filter(ApplicationDB.id == application_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if application is None:
            raise AttachmentFailure(f"Application {application_id} not found")
        return application

    def _resolve_blob(self, ref: BlobRef) -> BlobDB:
        if isinstance(ref, BlobDB):
            return ref
        return self.blob_store.find_signed(ref)

    def _candidate(self, blob: BlobDB) -> AttachmentCandidate:
        content = None
        if blob.content_type == "application/pdf":
            content = self.blob_store.read(blob)
        return AttachmentCandidate(
            filename=blob.filename,
            content_type=blob.content_type,
            byte_size=blob.byte_size,
            content=content,
        )

    @staticmethod
    def _refresh_needs_review_since(application: ApplicationDB) -> None:
        """Oldest attachment still awaiting review across both slots, or None."""
        awaiting = [
            since for since in (application.awaiting_review_since(pt) for pt in ProofType)
            if since is not None
        ]
        application.needs_review_since = min(awaiting) if awaiting else None

    def _add_review(self, application, proof_type, status, admin_id, channel,
                    rejection_reason, notes, now) -> ProofReviewDB:
        if status == ProofStatus.REJECTED and not rejection_reason:
            raise ValidationError("missing_rejection_reason", "Rejection reason is required")
        review = ProofReviewDB(
            id=str(uuid4()),
            admin_id=admin_id,
            proof_type=proof_type,
            status=status,
            submission_method=channel,
            rejection_reason=rejection_reason,
            notes=notes,
            reviewed_at=now,
        )
        application.reviews.append(review)
        return review

    def _verify_persisted(self, application: ApplicationDB, proof_type: ProofType,
                          attachments: List[ProofAttachmentDB]) -> None:
        if not attachments:
            return
        persisted = self.db.query(ProofAttachmentDB).filter(
            ProofAttachmentDB.application_id == application.id,
            ProofAttachmentDB.proof_type == proof_type,
            ProofAttachmentDB.detached_at.is_(None),
        ).count()
        if persisted != len(attachments):
            raise AttachmentFailure(
                f"Attachment failed to persist for {proof_type.value} proof on application {application.id}"
            )
