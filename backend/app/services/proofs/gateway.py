"""
Submission Gateway

Entry point for every proof submission channel. A channel builds a
SubmissionRequest (for_web / for_api / for_paper / for_email) and calls
`submit`. The gateway:

1. Authorizes the request for its channel
2. Applies the rate limiter (constituent channels only)
3. Stores any bytes posted to the server, then delegates to
   ProofAttachmentService, the only writer of proof status
4. Runs decision consequences for staff paper approvals/rejections
5. Commits, or rolls back, and returns a SubmissionOutcome

AuthorizationError, RateLimitExceeded, ValidationError and InvalidTransition
become outcomes. AttachmentFailure commits the failure event and propagates.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ...models.db_models import ApplicationDB, BlobDB, ProofStatus, SubmissionMethod, UserDB
from ...models.submission import (
    AttachmentContext,
    OutcomeKind,
    SubmissionOutcome,
    SubmissionRequest,
)
from .attachment_service import ProofAttachmentService
from .blob_store import BlobStore
from .errors import (
    AttachmentFailure,
    AuthorizationError,
    InvalidTransition,
    RateLimitExceeded,
    ValidationError,
)
from .rate_limit import RateLimiter
from .review_service import ProofReviewService
from .state_machine import ProofStateMachine, SlotState


logger = logging.getLogger(__name__)

RATE_LIMIT_ACTION = "proof_submission"

# Slot states a constituent may submit into, per channel
CONSTITUENT_SUBMITTABLE = {
    SubmissionMethod.WEB: (SlotState.REJECTED,),
    SubmissionMethod.API: (SlotState.REJECTED,),
    SubmissionMethod.EMAIL: (SlotState.ABSENT, SlotState.REJECTED),
}


class SubmissionGateway:
    """
    Channel-neutral submission pipeline.

    Usage:
        request = SubmissionRequest.for_web(app_id, "income", user.id, signed_id)
        outcome = SubmissionGateway(db).submit(request)
    """

    def __init__(
        self,
        db: Session,
        attachment_service: Optional[ProofAttachmentService] = None,
        rate_limiter: Optional[RateLimiter] = None,
        blob_store: Optional[BlobStore] = None,
    ):
        self.db = db
        self.blob_store = blob_store or BlobStore(db)
        self.attachments = attachment_service or ProofAttachmentService(db, blob_store=self.blob_store)
        self.rate_limiter = rate_limiter or RateLimiter(db)
        self.state_machine = ProofStateMachine()

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit(self, request: SubmissionRequest) -> SubmissionOutcome:
        stored_keys: List[str] = []
        try:
            application, context = self._authorize(request)
            if not request.staff_initiated:
                self.rate_limiter.check(RATE_LIMIT_ACTION, request.actor_id, request.channel.value)
            blob_refs = list(request.blob_refs) + self._store_uploads(request, stored_keys)
            attachment_ids, side_effect_errors = self._dispatch(application, request, context, blob_refs)
            self.db.commit()

        except AuthorizationError as e:
            self._rollback(stored_keys)
            logger.info(f"Unauthorized {request.channel.value} submission by {request.actor_id}: {e}")
            return SubmissionOutcome(OutcomeKind.AUTHORIZATION_ERROR, str(e), error_type="unauthorized")

        except RateLimitExceeded as e:
            self._rollback(stored_keys)
            return SubmissionOutcome(OutcomeKind.RATE_LIMITED, str(e), error_type="rate_limit_exceeded")

        except InvalidTransition as e:
            self._rollback(stored_keys)
            logger.info(f"Invalid proof transition for application {request.application_id}: {e}")
            return SubmissionOutcome(OutcomeKind.INVALID_TRANSITION, str(e), error_type="invalid_transition")

        except ValidationError as e:
            # Attachment unit already rolled back; keep the failure event
            self.db.commit()
            return SubmissionOutcome(OutcomeKind.VALIDATION_ERROR, str(e), error_type=e.error_type)

        except AttachmentFailure as e:
            logger.exception(f"Proof attachment failed for application {request.application_id}: {e}")
            self.db.commit()
            raise

        except Exception:
            self._rollback(stored_keys)
            raise

        proof_type = request.proof_type.value.capitalize()
        if request.staff_initiated:
            message = f"{proof_type} proof recorded as {request.target_status.value}"
        else:
            message = f"{proof_type} proof submitted successfully"

        return SubmissionOutcome(
            OutcomeKind.SUCCESS,
            message,
            attachment_ids=attachment_ids,
            side_effect_errors=side_effect_errors,
        )

    # =========================================================================
    # UPLOADS
    # =========================================================================

    def create_direct_upload(
        self,
        filename: str,
        byte_size: int,
        checksum: str,
        content_type: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Phase one of a direct upload. Returns the signed id and upload target."""
        blob = self.blob_store.create_before_direct_upload(filename, byte_size, checksum, content_type, metadata)
        target = self.blob_store.direct_upload_target(blob)
        self.db.commit()
        return {
            "signed_blob_id": self.blob_store.signed_id(blob),
            "upload_url": target["url"],
            "upload_headers": target["headers"],
        }

    def _store_uploads(self, request: SubmissionRequest, stored_keys: List[str]) -> List[BlobDB]:
        """Store server-received bytes; runs only after authorization and the rate limiter."""
        blobs = []
        for upload in request.uploads:
            blob = self.blob_store.create_and_upload(upload.data, upload.filename, upload.content_type)
            stored_keys.append(blob.key)
            blobs.append(blob)
        return blobs

    def _rollback(self, stored_keys: List[str]) -> None:
        self.db.rollback()
        for key in stored_keys:
            self.blob_store.discard(key)

    # =========================================================================
    # AUTHORIZATION
    # =========================================================================

    def _authorize(self, request: SubmissionRequest) -> Tuple[ApplicationDB, AttachmentContext]:
        if request.proof_type is None:
            raise AuthorizationError("Invalid proof type")

        application = self.db.query(ApplicationDB).filter(ApplicationDB.id == request.application_id).first()
        if application is None:
            raise AuthorizationError(f"Application {request.application_id} not found")

        slot = self.state_machine.slot_state(application, request.proof_type)
        context = AttachmentContext(
            channel=request.channel,
            resubmission=slot == SlotState.REJECTED,
            staff_initiated=request.staff_initiated,
        )

        if request.staff_initiated:
            actor = self.db.query(UserDB).filter(UserDB.id == request.actor_id).first()
            if actor is None or not actor.is_admin:
                raise AuthorizationError("Paper submissions require an administrator")
            return application, context

        if application.user_id != request.actor_id:
            raise AuthorizationError("Application does not belong to this user")

        if slot not in CONSTITUENT_SUBMITTABLE[request.channel]:
            raise AuthorizationError(
                f"{request.proof_type.value.capitalize()} proof cannot be submitted while {slot.value}"
            )
        return application, context

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def _dispatch(self, application: ApplicationDB, request: SubmissionRequest,
                  context: AttachmentContext, blob_refs: list) -> Tuple[List[str], List[str]]:
        """Returns (attachment ids, side-effect errors)."""
        if not request.staff_initiated:
            attachments = self.attachments.attach(
                application,
                request.proof_type,
                blob_refs,
                actor_id=request.actor_id,
                channel=request.channel,
                context=context,
                client_metadata=request.client_metadata,
            )
            return [a.id for a in attachments], []

        status = request.target_status
        if status == ProofStatus.REJECTED and not (request.rejection_reason or "").strip():
            raise ValidationError("missing_rejection_reason", "Rejection reason is required")

        attachment_ids = []
        if blob_refs:
            attachments = self.attachments.attach(
                application,
                request.proof_type,
                blob_refs,
                actor_id=request.actor_id,
                channel=request.channel,
                context=context,
                target_status=status,
                client_metadata=request.client_metadata,
                rejection_reason=request.rejection_reason,
                notes=request.notes,
            )
            attachment_ids = [a.id for a in attachments]
        elif status == ProofStatus.REJECTED:
            self.attachments.reject_without_attachment(
                application,
                request.proof_type,
                request.actor_id,
                request.rejection_reason,
                notes=request.notes,
            )
        else:
            raise ValidationError("no_attachment", f"A document is required to mark a proof {status.value}")

        _, side_effect_errors = ProofReviewService(self.db, self.attachments).after_decision(
            application, request.proof_type, status, request.actor_id,
            rejection_reason=request.rejection_reason, channel=request.channel,
        )
        return attachment_ids, side_effect_errors
