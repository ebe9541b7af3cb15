"""
Proof Consistency Checker

Periodic job that scans every application's proof slots for divergence
between recorded status and attachment presence.

Divergence classes:
- approved_without_attachment: integrity alarm, repaired only by the
  explicit operator reset (ProofAttachmentService.reset_proof_status)
- stale_not_reviewed: attached and not_reviewed, with the slot's active attachment
  older than STALE_REVIEW_DAYS, a review backlog signal

The checker never writes proof state. It writes a report, logs it and,
outside quiet environments, alerts administrators.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from ...config import APP_ENV, QUIET_ENVIRONMENTS, STALE_REVIEW_DAYS
from ...models.db_models import ApplicationDB, ProofStatus, ProofType
from ..notifications import NotificationService
from ..proofs.audit_recorder import get_system_user
from ..proofs.errors import ConsistencyViolation


logger = logging.getLogger(__name__)

APPROVED_WITHOUT_ATTACHMENT = "approved_without_attachment"
STALE_NOT_REVIEWED = "stale_not_reviewed"
DIVERGENCE_CLASSES = (APPROVED_WITHOUT_ATTACHMENT, STALE_NOT_REVIEWED)


class ProofConsistencyChecker:
    """
    Read-only scan over proof slots.

    Usage:
        report = ProofConsistencyChecker(db).run()
    """

    DEFAULT_BATCH_SIZE = 500

    def __init__(
        self,
        db: Session,
        stale_after_days: int = STALE_REVIEW_DAYS,
        environment: str = APP_ENV,
    ):
        self.db = db
        self.stale_after = timedelta(days=stale_after_days)
        self.environment = environment
        self.notifications = NotificationService(db)

    def run(self, batch_size: int = DEFAULT_BATCH_SIZE, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        stale_cutoff = now - self.stale_after

        violations: List[ConsistencyViolation] = []
        total_checked = 0
        last_id = None

        while True:
            query = (
                self.db.query(ApplicationDB)
                .options(selectinload(ApplicationDB.attachments))
                .order_by(ApplicationDB.id)
            )
            if last_id is not None:
                query = query.filter(ApplicationDB.id > last_id)
            batch = query.limit(batch_size).all()
            if not batch:
                break

            for application in batch:
                violations.extend(self.check_application(application, stale_cutoff))
            total_checked += len(batch)
            last_id = batch[-1].id

        report = self._build_report(violations, total_checked, now)
        self._log_report(report)

        if violations and self.environment not in QUIET_ENVIRONMENTS:
            report["side_effect_errors"] = self._alert_admins(report)
            self.db.commit()

        return report

    def check_application(self, application: ApplicationDB, stale_cutoff: datetime) -> List[ConsistencyViolation]:
        found = []
        for proof_type in ProofType:
            status = application.proof_status(proof_type)
            attached = application.proof_attached(proof_type)
            # Measured per slot; needs_review_since spans both slots
            waiting_since = application.awaiting_review_since(proof_type)

            divergence = None
            if status == ProofStatus.APPROVED and not attached:
                divergence = APPROVED_WITHOUT_ATTACHMENT
            elif waiting_since is not None and waiting_since < stale_cutoff:
                divergence = STALE_NOT_REVIEWED

            if divergence:
                found.append(ConsistencyViolation(
                    application_id=application.id,
                    proof_type=proof_type.value,
                    divergence=divergence,
                    status=status.value,
                    attached=attached,
                    needs_review_since=waiting_since or application.needs_review_since,
                ))
        return found

    # =========================================================================
    # REPORTING
    # =========================================================================

    @staticmethod
    def _build_report(violations: List[ConsistencyViolation], total_checked: int, now: datetime) -> Dict[str, Any]:
        counts = {
            divergence: {proof_type.value: 0 for proof_type in ProofType}
            for divergence in DIVERGENCE_CLASSES
        }
        for violation in violations:
            counts[violation.divergence][violation.proof_type] += 1

        return {
            "task": "proof_consistency_check",
            "run_at": now.isoformat(),
            "total_checked": total_checked,
            "violation_count": len(violations),
            "counts": counts,
            "violations": [v.as_dict() for v in violations],
            "alerts_sent": 0,
            "side_effect_errors": [],
        }

    @staticmethod
    def _log_report(report: Dict[str, Any]) -> None:
        if not report["violation_count"]:
            logger.info(f"Proof consistency check: {report['total_checked']} applications, no divergence")
            return

        logger.warning(
            f"Proof consistency check: {report['violation_count']} divergence(s) "
            f"across {report['total_checked']} applications: {report['counts']}"
        )
        for violation in report["violations"]:
            logger.warning(
                f"  {violation['divergence']}: application={violation['application_id']} "
                f"proof={violation['proof_type']} status={violation['status']}"
            )

    def _alert_admins(self, report: Dict[str, Any]) -> List[str]:
        system_user = get_system_user(self.db)
        created, errors = self.notifications.notify_admins(
            action="proof_consistency_alert",
            actor_id=system_user.id,
            metadata={
                "violation_count": report["violation_count"],
                "counts": report["counts"],
                "run_at": report["run_at"],
            },
        )
        report["alerts_sent"] = len(created)
        return errors
