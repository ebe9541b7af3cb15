"""
Constituent Proof Routes

Browser resubmission (form post, redirect with notice/alert) and the JSON
API channel. Both build a SubmissionRequest and go through the gateway.
"""
import logging
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import require_constituent
from ..database import get_db
from ..models.db_models import UserDB
from ..models.submission import OutcomeKind, SubmissionRequest, Upload
from ..services.notifications import deliver_pending_notifications
from ..services.proofs import AttachmentFailure, SubmissionGateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proofs"])

ALERTS = {
    OutcomeKind.RATE_LIMITED: "Please wait before submitting another proof",
    OutcomeKind.AUTHORIZATION_ERROR: "Invalid proof type or status",
    OutcomeKind.INVALID_TRANSITION: "Invalid proof type or status",
}


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ApiSubmissionRequest(BaseModel):
    signed_blob_id: str


class SubmissionResponse(BaseModel):
    success: bool
    kind: str
    message: str
    error_type: Optional[str] = None
    attachment_ids: List[str] = []
    side_effect_errors: List[str] = []


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _redirect(application_id: str, **params) -> RedirectResponse:
    return RedirectResponse(url=f"/applications/{application_id}?{urlencode(params)}", status_code=303)


# =============================================================================
# BROWSER RESUBMISSION
# =============================================================================

@router.post("/applications/{application_id}/proofs/{proof_type}/resubmit")
async def resubmit_proof(
    application_id: str,
    proof_type: str,
    request: Request,
    background_tasks: BackgroundTasks,
    signed_blob_id: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    current_user: UserDB = Depends(require_constituent),
    db: Session = Depends(get_db),
):
    """
    Resubmit a rejected proof.

    Accepts a signed blob id from a direct upload, or the file itself.
    """
    upload = None
    if not signed_blob_id and file is not None:
        upload = Upload(data=await file.read(), filename=file.filename, content_type=file.content_type)

    submission = SubmissionRequest.for_web(
        application_id=application_id,
        proof_type=proof_type,
        actor_id=current_user.id,
        signed_blob_id=signed_blob_id,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        upload=upload,
    )
    try:
        outcome = SubmissionGateway(db).submit(submission)
    except AttachmentFailure as e:
        raise HTTPException(status_code=500, detail=str(e))

    if outcome.success:
        background_tasks.add_task(deliver_pending_notifications)
        return _redirect(application_id, notice="Proof submitted successfully")

    return _redirect(application_id, alert=ALERTS.get(outcome.kind, outcome.message))


# =============================================================================
# API CHANNEL
# =============================================================================

@router.post("/api/applications/{application_id}/proofs/{proof_type}", response_model=SubmissionResponse)
async def submit_proof_api(
    application_id: str,
    proof_type: str,
    body: ApiSubmissionRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: UserDB = Depends(require_constituent),
    db: Session = Depends(get_db),
):
    submission = SubmissionRequest.for_api(
        application_id=application_id,
        proof_type=proof_type,
        actor_id=current_user.id,
        signed_blob_id=body.signed_blob_id,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    try:
        outcome = SubmissionGateway(db).submit(submission)
    except AttachmentFailure as e:
        raise HTTPException(status_code=500, detail=str(e))

    if outcome.success:
        background_tasks.add_task(deliver_pending_notifications)
    elif outcome.kind == OutcomeKind.RATE_LIMITED:
        raise HTTPException(status_code=429, detail=outcome.message)

    return SubmissionResponse(
        success=outcome.success,
        kind=outcome.kind.value,
        message=outcome.message,
        error_type=outcome.error_type,
        attachment_ids=outcome.attachment_ids,
        side_effect_errors=outcome.side_effect_errors,
    )
