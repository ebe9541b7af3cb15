"""
Rejection / Archival Policy

Counts rejections across both proof types. Reaching `max_proof_rejections`
archives the application exactly once and sets the reapply date; below the
threshold the constituent is told how many rejections remain.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from ...config import REAPPLY_WAIT_YEARS
from ...models.db_models import ApplicationDB, ApplicationStatus, ProofType
from ..notifications import NotificationService
from ..policy import Policy
from .audit_recorder import AuditRecorder


logger = logging.getLogger(__name__)

COUNTED = "counted"
ARCHIVED = "archived"
ALREADY_ARCHIVED = "already_archived"


@dataclass
class RejectionDecision:
    outcome: str
    total_rejections: int
    remaining_rejections: int = 0
    reapply_eligible_on: Optional[str] = None
    side_effect_errors: List[str] = field(default_factory=list)


class RejectionPolicy:
    """Applied after a proof is set to rejected, in the same transaction."""

    def __init__(self, db: Session, notifications: Optional[NotificationService] = None):
        self.db = db
        self.policy = Policy(db)
        self.audit = AuditRecorder(db)
        self.notifications = notifications or NotificationService(db)

    def max_rejections(self) -> int:
        return self.policy.get("max_proof_rejections")

    def apply(
        self,
        application: ApplicationDB,
        proof_type: ProofType,
        actor_id: str,
        rejection_reason: Optional[str] = None,
    ) -> RejectionDecision:
        locked = (
            self.db.query(ApplicationDB)
            .filter(ApplicationDB.id == application.id)
            .with_for_update()
            .populate_existing()
            .one()
        )
        if locked.archived:
            logger.info(f"Rejection on archived application {locked.id} ignored")
            return RejectionDecision(outcome=ALREADY_ARCHIVED, total_rejections=locked.total_rejections)

        self.db.query(ApplicationDB).filter(ApplicationDB.id == locked.id).update(
            {ApplicationDB.total_rejections: ApplicationDB.total_rejections + 1},
            synchronize_session=False,
        )
        self.db.refresh(locked)

        threshold = self.max_rejections()
        if locked.total_rejections >= threshold:
            return self._archive(locked, ProofType(proof_type), actor_id)

        remaining = threshold - locked.total_rejections
        decision = RejectionDecision(
            outcome=COUNTED,
            total_rejections=locked.total_rejections,
            remaining_rejections=remaining,
        )
        _, error = self.notifications.notify(
            recipient_id=locked.user_id,
            action="proof_rejected",
            actor_id=actor_id,
            application_id=locked.id,
            metadata={
                "proof_type": ProofType(proof_type).value,
                "rejection_reason": rejection_reason,
                "remaining_rejections": remaining,
            },
        )
        if error:
            decision.side_effect_errors.append(error)
        return decision

    def _archive(self, application: ApplicationDB, proof_type: ProofType, actor_id: str) -> RejectionDecision:
        now = datetime.utcnow()
        reapply_on = (now + relativedelta(years=REAPPLY_WAIT_YEARS)).date()

        application.status = ApplicationStatus.ARCHIVED
        application.archived_at = now
        application.reapply_eligible_on = reapply_on
        application.needs_review_since = None

        self.audit.record_event(
            actor_id=actor_id,
            action="application_archived",
            metadata={
                "application_id": application.id,
                "total_rejections": application.total_rejections,
                "trigger_proof_type": proof_type.value,
                "reapply_eligible_on": reapply_on.isoformat(),
            },
            recorded_at=now,
        )
        logger.info(
            f"Application {application.id} archived after {application.total_rejections} rejections; "
            f"reapply on {reapply_on.isoformat()}"
        )

        decision = RejectionDecision(
            outcome=ARCHIVED,
            total_rejections=application.total_rejections,
            reapply_eligible_on=reapply_on.isoformat(),
        )

        _, error = self.notifications.notify(
            recipient_id=application.user_id,
            action="max_rejections_reached",
            actor_id=actor_id,
            application_id=application.id,
            metadata={
                "total_rejections": application.total_rejections,
                "reapply_date": reapply_on.isoformat(),
            },
        )
        if error:
            decision.side_effect_errors.append(error)

        _, errors = self.notifications.notify_admins(
            action="max_rejections_warning",
            actor_id=actor_id,
            application_id=application.id,
            metadata={
                "total_rejections": application.total_rejections,
                "constituent_id": application.user_id,
            },
        )
        decision.side_effect_errors.extend(errors)
        return decision
