"""
Proof Engine - Admin Router
Staff proof actions: paper entry, review decisions, operator repair and the
audit trail of an application.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import (
    ApplicationDB, EventDB, ProofSubmissionAuditDB, ProofType, UserDB,
)
from ..models.submission import SubmissionRequest
from ..auth import require_admin
from ..services.notifications import deliver_pending_notifications
from ..services.proofs import (
    AttachmentFailure,
    InvalidTransition,
    ProofAttachmentService,
    ProofReviewService,
    SubmissionGateway,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class PaperSubmissionRequest(BaseModel):
    """Scanned/paper proof entered by staff."""
    status: str
    signed_blob_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None


class ReviewRequest(BaseModel):
    status: str  # approved | rejected
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None


class ResetRequest(BaseModel):
    reason: str


class ProofActionResponse(BaseModel):
    success: bool
    message: str
    error_type: Optional[str] = None
    income_proof_status: Optional[str] = None
    residency_proof_status: Optional[str] = None
    total_rejections: Optional[int] = None
    application_status: Optional[str] = None
    side_effect_errors: List[str] = []


class AuditEventItem(BaseModel):
    id: str
    action: str
    user_id: str
    created_at: str
    metadata: Optional[dict] = None


class SubmissionAuditItem(BaseModel):
    id: str
    proof_type: str
    submission_method: str
    user_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: str
    metadata: Optional[dict] = None


class AuditTrailResponse(BaseModel):
    application_id: str
    events: List[AuditEventItem]
    submission_audits: List[SubmissionAuditItem]


# =============================================================================
# HELPERS
# =============================================================================

def _get_application(db: Session, application_id: str) -> ApplicationDB:
    application = db.query(ApplicationDB).filter(ApplicationDB.id == application_id).first()
    if application is None:
        raise HTTPException(status_code=404, detail="Application not found")
    return application


def _proof_type_or_400(proof_type: str) -> ProofType:
    try:
        return ProofType(proof_type)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid proof type: {proof_type}")


def _response(db: Session, application_id: str, success: bool, message: str,
              error_type: Optional[str] = None, side_effect_errors: Optional[List[str]] = None) -> ProofActionResponse:
    application = _get_application(db, application_id)
    return ProofActionResponse(
        success=success,
        message=message,
        error_type=error_type,
        income_proof_status=application.income_proof_status.value,
        residency_proof_status=application.residency_proof_status.value,
        total_rejections=application.total_rejections,
        application_status=application.status.value,
        side_effect_errors=side_effect_errors or [],
    )


# =============================================================================
# PROOF ACTIONS
# =============================================================================

@router.post("/applications/{application_id}/proofs/{proof_type}", response_model=ProofActionResponse)
async def submit_paper_proof(
    application_id: str,
    proof_type: str,
    body: PaperSubmissionRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Record a scanned/paper proof with any target status."""
    _get_application(db, application_id)
    try:
        submission = SubmissionRequest.for_paper(
            application_id=application_id,
            proof_type=proof_type,
            admin_id=admin.id,
            status=body.status,
            signed_blob_id=body.signed_blob_id,
            rejection_reason=body.rejection_reason,
            notes=body.notes,
            ip_address=request.client.host if request.client else None,
        )
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid status: {body.status}")

    try:
        outcome = SubmissionGateway(db).submit(submission)
    except AttachmentFailure as e:
        raise HTTPException(status_code=500, detail=str(e))

    if outcome.success:
        background_tasks.add_task(deliver_pending_notifications)
    return _response(db, application_id, outcome.success, outcome.message,
                     outcome.error_type, outcome.side_effect_errors)


@router.post("/applications/{application_id}/proofs/{proof_type}/review", response_model=ProofActionResponse)
async def review_proof(
    application_id: str,
    proof_type: str,
    body: ReviewRequest,
    background_tasks: BackgroundTasks,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Approve or reject a submitted proof."""
    application = _get_application(db, application_id)
    try:
        outcome = ProofReviewService(db).review(
            application, admin.id, proof_type, body.status,
            rejection_reason=body.rejection_reason, notes=body.notes,
        )
    except AttachmentFailure as e:
        raise HTTPException(status_code=500, detail=str(e))

    if outcome.success:
        background_tasks.add_task(deliver_pending_notifications)
    return _response(db, application_id, outcome.success, outcome.message,
                     outcome.error_type, outcome.side_effect_errors)


@router.post("/applications/{application_id}/proofs/{proof_type}/reset", response_model=ProofActionResponse)
async def reset_proof(
    application_id: str,
    proof_type: str,
    body: ResetRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Operator repair: approved proof with no attachment goes back to absent."""
    application = _get_application(db, application_id)
    proof = _proof_type_or_400(proof_type)
    try:
        ProofAttachmentService(db).reset_proof_status(application, proof, admin.id, body.reason)
        db.commit()
    except InvalidTransition as e:
        db.rollback()
        return _response(db, application_id, False, str(e), "invalid_transition")
    except AttachmentFailure as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=str(e))

    logger.info(f"Proof {proof.value} reset on application {application_id} by {admin.id}: {body.reason}")
    return _response(db, application_id, True, f"{proof.value.capitalize()} proof status reset")


# =============================================================================
# AUDIT TRAIL
# =============================================================================

@router.get("/applications/{application_id}/audit", response_model=AuditTrailResponse)
async def get_audit_trail(
    application_id: str,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Events and submission audits for one application, oldest first."""
    _get_application(db, application_id)

    events = (
        db.query(EventDB)
        .filter(EventDB.event_metadata["application_id"].as_string() == application_id)
        .order_by(EventDB.created_at)
        .all()
    )
    audits = (
        db.query(ProofSubmissionAuditDB)
        .filter(ProofSubmissionAuditDB.application_id == application_id)
        .order_by(ProofSubmissionAuditDB.created_at)
        .all()
    )

    return AuditTrailResponse(
        application_id=application_id,
        events=[
            AuditEventItem(
                id=e.id,
                action=e.action,
                user_id=e.user_id,
                created_at=e.created_at.isoformat(),
                metadata=e.event_metadata,
            )
            for e in events
        ],
        submission_audits=[
            SubmissionAuditItem(
                id=a.id,
                proof_type=a.proof_type.value,
                submission_method=a.submission_method.value,
                user_id=a.user_id,
                ip_address=a.ip_address,
                user_agent=a.user_agent,
                created_at=a.created_at.isoformat(),
                metadata=a.audit_metadata,
            )
            for a in audits
        ],
    )
