"""
Proof Attachment Failure-Rate Monitor

Rolling-window analysis of submission outcome Events:
- proof_submitted          -> success
- proof_attachment_failed  -> failure

Alerts every administrator when the success rate drops below the threshold
with at least the minimum number of failures. Each run evaluates afresh.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ...config import (
    FAILURE_RATE_MIN_FAILURES,
    FAILURE_RATE_SUCCESS_THRESHOLD,
    FAILURE_RATE_WINDOW_HOURS,
)
from ...models.db_models import EventDB
from ..notifications import NotificationService
from ..proofs.audit_recorder import (
    PROOF_ATTACHMENT_FAILED,
    PROOF_SUBMITTED,
    AuditRecorder,
    get_system_user,
)


logger = logging.getLogger(__name__)


def success_rate(successful: int, total: int) -> float:
    if total == 0:
        return 100.0
    return round(successful / total * 100, 2)


class FailureRateMonitor:
    """
    Usage:
        report = FailureRateMonitor(db).run()
    """

    def __init__(
        self,
        db: Session,
        window_hours: int = FAILURE_RATE_WINDOW_HOURS,
        threshold: float = FAILURE_RATE_SUCCESS_THRESHOLD,
        min_failures: int = FAILURE_RATE_MIN_FAILURES,
    ):
        self.db = db
        self.window_hours = window_hours
        self.threshold = threshold
        self.min_failures = min_failures
        self.notifications = NotificationService(db)
        self.audit = AuditRecorder(db)

    def run(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        window_start = now - timedelta(hours=self.window_hours)

        events = (
            self.db.query(EventDB)
            .filter(
                EventDB.action.in_([PROOF_SUBMITTED, PROOF_ATTACHMENT_FAILED]),
                EventDB.created_at >= window_start,
                EventDB.created_at <= now,
            )
            .all()
        )

        report = self.analyze(events)
        report["task"] = "proof_failure_rate"
        report["run_at"] = now.isoformat()
        report["period"] = f"{self.window_hours}h"
        report["alerted"] = False
        report["alerts_sent"] = 0
        report["side_effect_errors"] = []

        logger.info(
            f"Proof attachment success rate {report['success_rate']}% "
            f"({report['failed']} failed of {report['total']}) over {report['period']}"
        )

        if report["success_rate"] < self.threshold and report["failed"] >= self.min_failures:
            report["alerted"] = True
            report["alerts_sent"], report["side_effect_errors"] = self._alert_admins(report)
            self.db.commit()

        return report

    def analyze(self, events: List[EventDB]) -> Dict[str, Any]:
        """Overall and per proof type / submission method tallies."""
        by_proof_type: Dict[str, Dict[str, int]] = {}
        by_method: Dict[str, Dict[str, int]] = {}
        successful = failed = 0

        for event in events:
            metadata = event.event_metadata or {}
            ok = event.action == PROOF_SUBMITTED
            if ok:
                successful += 1
            else:
                failed += 1
            for bucket, key in ((by_proof_type, metadata.get("proof_type")), (by_method, metadata.get("submission_method"))):
                tally = bucket.setdefault(str(key or "unknown"), {"total": 0, "failed": 0})
                tally["total"] += 1
                if not ok:
                    tally["failed"] += 1

        for bucket in (by_proof_type, by_method):
            for tally in bucket.values():
                tally["success_rate"] = success_rate(tally["total"] - tally["failed"], tally["total"])

        total = successful + failed
        return {
            "total": total,
            "successful": successful,
            "failed": failed,
            "success_rate": success_rate(successful, total),
            "by_proof_type": by_proof_type,
            "by_submission_method": by_method,
        }

    def _alert_admins(self, report: Dict[str, Any]):
        metadata = {
            "success_rate": report["success_rate"],
            "total": report["total"],
            "failed": report["failed"],
            "period": report["period"],
        }
        logger.warning(f"Proof attachment failure rate alert: {metadata}")

        system_user = get_system_user(self.db)
        sent, errors = 0, []
        for admin in self.notifications.admins():
            self.audit.record_event(
                actor_id=system_user.id,
                action="attachment_failure_warning",
                metadata={**metadata, "recipient_id": admin.id},
            )
            notification, error = self.notifications.notify(
                recipient_id=admin.id,
                action="attachment_failure_warning",
                actor_id=system_user.id,
                metadata=metadata,
            )
            if notification is not None:
                sent += 1
            if error:
                errors.append(error)
        return sent, errors
