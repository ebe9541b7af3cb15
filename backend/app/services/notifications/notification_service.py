"""
Notification Service

Two halves:
- NotificationService.notify records the DECISION to notify as a pending
  row inside the caller's transaction. A failure here never aborts the
  caller; it comes back as a side-effect error string.
- NotificationDispatcher.deliver_pending runs after commit, hands each
  pending row to a pluggable delivery and retries with exponential backoff.
  Exhausted retries mark the row failed. Committed proof state is never
  touched by delivery.
"""
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from ...config import NOTIFICATION_BACKOFF_BASE_SECONDS, NOTIFICATION_MAX_ATTEMPTS
from ...models.db_models import DeliveryStatus, NotificationDB, UserDB, UserRole


logger = logging.getLogger(__name__)


class NotificationService:
    """Records notification decisions."""

    def __init__(self, db: Session):
        self.db = db

    def notify(
        self,
        recipient_id: str,
        action: str,
        actor_id: Optional[str] = None,
        application_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Optional[NotificationDB], Optional[str]]:
        """
        Record a pending notification.

        Returns (notification, None) or (None, error message).
        """
        try:
            with self.db.begin_nested():
                notification = NotificationDB(
                    id=str(uuid4()),
                    recipient_id=recipient_id,
                    actor_id=actor_id,
                    application_id=application_id,
                    action=action,
                    notification_metadata=metadata or {},
                    delivery_status=DeliveryStatus.PENDING,
                    delivery_attempts=0,
                )
                self.db.add(notification)
                self.db.flush()
            return notification, None
        except Exception as e:
            message = f"Failed to create {action} notification for {recipient_id}: {e}"
            logger.error(message)
            return None, message

    def notify_admins(
        self,
        action: str,
        actor_id: Optional[str] = None,
        application_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[List[NotificationDB], List[str]]:
        """One notification per administrator."""
        created, errors = [], []
        for admin in self.admins():
            notification, error = self.notify(admin.id, action, actor_id, application_id, metadata)
            if notification is not None:
                created.append(notification)
            if error:
                errors.append(error)
        return created, errors

    def admins(self) -> List[UserDB]:
        return self.db.query(UserDB).filter(UserDB.role == UserRole.ADMIN).order_by(UserDB.created_at).all()


# =============================================================================
# DELIVERY
# =============================================================================

class LoggingDelivery:
    """Default delivery: writes the notification to the log."""

    def deliver(self, notification: NotificationDB) -> None:
        logger.info(
            f"Notification {notification.action} -> {notification.recipient_id} "
            f"(application={notification.application_id}, metadata={notification.notification_metadata})"
        )


class NotificationDispatcher:
    """
    Delivers pending notifications after commit.

    Usage:
        NotificationDispatcher(db).deliver_pending()
    """

    def __init__(
        self,
        db: Session,
        delivery=None,
        max_attempts: int = NOTIFICATION_MAX_ATTEMPTS,
        backoff_base: float = NOTIFICATION_BACKOFF_BASE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.delivery = delivery or LoggingDelivery()
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.sleep = sleep

    def deliver_pending(self, limit: int = 100) -> Dict[str, int]:
        """Deliver up to `limit` pending notifications, oldest first."""
        pending = (
            self.db.query(NotificationDB)
            .filter(NotificationDB.delivery_status == DeliveryStatus.PENDING)
            .order_by(NotificationDB.created_at)
            .limit(limit)
            .all()
        )

        summary = {"attempted": len(pending), "delivered": 0, "failed": 0}
        for notification in pending:
            if self._deliver_with_retry(notification):
                summary["delivered"] += 1
            else:
                summary["failed"] += 1
            # Each row's outcome is committed on its own
            self.db.commit()

        if pending:
            logger.info(f"Notification delivery: {summary}")
        return summary

    def _deliver_with_retry(self, notification: NotificationDB) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            notification.delivery_attempts = (notification.delivery_attempts or 0) + 1
            try:
                self.delivery.deliver(notification)
                notification.delivery_status = DeliveryStatus.DELIVERED
                notification.delivered_at = datetime.utcnow()
                notification.last_error = None
                return True
            except Exception as e:
                backoff = self.backoff_base * (2 ** (attempt - 1))
                notification.last_error = str(e)
                logger.warning(
                    f"Notification {notification.id} attempt {attempt}/{self.max_attempts} "
                    f"failed: {e}. Backoff {backoff}s"
                )
                if attempt < self.max_attempts:
                    self.sleep(backoff)

        notification.delivery_status = DeliveryStatus.FAILED
        logger.error(f"Notification {notification.id} failed after {self.max_attempts} attempts")
        return False


def deliver_pending_notifications(session_factory=None, delivery=None) -> Dict[str, int]:
    """Background-task entry point: delivery in its own session."""
    if session_factory is None:
        from ...database import SessionLocal
        session_factory = SessionLocal

    db = session_factory()
    try:
        return NotificationDispatcher(db, delivery=delivery).deliver_pending()
    except Exception as e:
        db.rollback()
        logger.exception(f"Notification delivery run failed: {e}")
        raise
    finally:
        db.close()
