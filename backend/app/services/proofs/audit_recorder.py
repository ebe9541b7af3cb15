"""
Audit Recorder

Append-only audit trail for proof submissions.

Every successful submission writes two complementary records in the caller's
unit of work:
1. Event - generic application audit log (action = proof_submitted)
2. ProofSubmissionAudit - compliance record (channel, IP, user agent)

Both share one timestamp. If either write fails the exception propagates and
the enclosing unit of work rolls back both.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import (
    EventDB,
    ProofSubmissionAuditDB,
    ProofType,
    SubmissionMethod,
    UserDB,
    UserRole,
)
from ...models.submission import ClientMetadata


logger = logging.getLogger(__name__)

PROOF_SUBMITTED = "proof_submitted"
PROOF_ATTACHMENT_FAILED = "proof_attachment_failed"

SYSTEM_USER_EMAIL = "system@proof-engine.local"


def get_system_user(db: Session) -> UserDB:
    """The actor for system-generated events. Created on first use."""
    user = db.query(UserDB).filter(UserDB.role == UserRole.SYSTEM).first()
    if user is None:
        user = UserDB(
            id=str(uuid4()),
            email=SYSTEM_USER_EMAIL,
            first_name="System",
            role=UserRole.SYSTEM,
        )
        db.add(user)
        db.flush()
    return user


class AuditRecorder:
    """Writes Events and ProofSubmissionAudits. Never updates or deletes."""

    def __init__(self, db: Session):
        self.db = db

    def record_submission(
        self,
        application_id: str,
        proof_type: ProofType,
        actor_id: str,
        channel: SubmissionMethod,
        client_metadata: ClientMetadata,
        blob_count: int,
        recorded_at: Optional[datetime] = None,
    ) -> Tuple[EventDB, ProofSubmissionAuditDB]:
        """
        Write the Event + ProofSubmissionAudit pair.

        Returns (event, audit)
        """
        recorded_at = recorded_at or datetime.utcnow()
        proof_type = ProofType(proof_type)

        audit = ProofSubmissionAuditDB(
            id=str(uuid4()),
            application_id=application_id,
            user_id=actor_id,
            proof_type=proof_type,
            submission_method=channel,
            ip_address=client_metadata.ip_address,
            user_agent=client_metadata.user_agent,
            audit_metadata=client_metadata.extra or {},
            created_at=recorded_at,
        )
        self.db.add(audit)

        event = EventDB(
            id=str(uuid4()),
            user_id=actor_id,
            action=PROOF_SUBMITTED,
            event_metadata={
                "application_id": application_id,
                "proof_type": proof_type.value,
                "submission_method": channel.value,
                "blob_count": blob_count,
                "audit_id": audit.id,
                "success": True,
            },
            created_at=recorded_at,
        )
        self.db.add(event)
        self.db.flush()

        return event, audit

    def record_event(
        self,
        actor_id: str,
        action: str,
        metadata: Optional[Dict[str, Any]] = None,
        recorded_at: Optional[datetime] = None,
    ) -> EventDB:
        """Generic audit event."""
        event = EventDB(
            id=str(uuid4()),
            user_id=actor_id,
            action=action,
            event_metadata=metadata or {},
            created_at=recorded_at or datetime.utcnow(),
        )
        self.db.add(event)
        self.db.flush()
        return event

    def record_failure(
        self,
        application_id: Optional[str],
        proof_type: Optional[ProofType],
        actor_id: Optional[str],
        channel: SubmissionMethod,
        error: Exception,
    ) -> Optional[EventDB]:
        """
        Failure outcome consumed by the failure-rate monitor.

        Runs after the failed unit of work was rolled back. Never raises.
        """
        try:
            with self.db.begin_nested():
                actor = actor_id or get_system_user(self.db).id
                return self.record_event(
                    actor_id=actor,
                    action=PROOF_ATTACHMENT_FAILED,
                    metadata={
                        "application_id": application_id,
                        "proof_type": ProofType(proof_type).value if proof_type else None,
                        "submission_method": channel.value,
                        "success": False,
                        "error_class": type(error).__name__,
                        "error_message": str(error),
                    },
                )
        except Exception as e:
            logger.error(f"Failed to record proof failure event: {e}")
            return None
