"""
Notification Services

- NotificationService: records notification decisions (pending rows)
- NotificationDispatcher: post-commit delivery with exponential backoff
"""

from .notification_service import (
    LoggingDelivery,
    NotificationDispatcher,
    NotificationService,
    deliver_pending_notifications,
)

__all__ = [
    'NotificationService',
    'NotificationDispatcher',
    'LoggingDelivery',
    'deliver_pending_notifications',
]
