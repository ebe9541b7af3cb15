"""
Scheduler API Routes

Internal endpoints for system-automatic tasks, called by an external
scheduler with the X-Internal-Key header:
- proof consistency scan
- attachment failure-rate check
- pending notification delivery
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import verify_internal_key
from ..database import get_db
from ..services.monitoring import FailureRateMonitor, ProofConsistencyChecker
from ..services.notifications import NotificationDispatcher


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/proof-consistency-check", response_model=dict)
async def run_proof_consistency_check(
    batch_size: int = ProofConsistencyChecker.DEFAULT_BATCH_SIZE,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Scan every application's proof slots for status/attachment divergence.

    Read-only with respect to proof state; alerts admins outside quiet
    environments.
    """
    return ProofConsistencyChecker(db).run(batch_size=batch_size)


@router.post("/proof-failure-rate", response_model=dict)
async def run_proof_failure_rate(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Rolling 24h attachment success rate; alerts admins below threshold."""
    return FailureRateMonitor(db).run()


@router.post("/notifications/deliver", response_model=dict)
async def deliver_notifications(
    limit: int = 100,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Retry delivery of anything still pending."""
    return NotificationDispatcher(db).deliver_pending(limit=limit)
