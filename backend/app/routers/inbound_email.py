"""
Inbound Email Webhook

The mail provider posts the raw RFC 822 message. It is stored immediately
and processed after the response is sent.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..auth import verify_inbound_key
from ..database import get_db
from ..services.notifications import deliver_pending_notifications
from ..services.proofs import ProofSubmissionMailbox, process_inbound_email

router = APIRouter(prefix="/inbound", tags=["inbound-email"])


@router.post("/emails", status_code=202, response_model=dict)
async def receive_inbound_email(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_inbound_key),
):
    raw = await request.body()
    if not raw:
        raise HTTPException(status_code=400, detail="Empty message body")

    inbound = ProofSubmissionMailbox(db).receive(raw)

    background_tasks.add_task(process_inbound_email, inbound.id)
    background_tasks.add_task(deliver_pending_notifications)

    return {"inbound_email_id": inbound.id, "status": inbound.status.value}
