"""
Rate Limiter

Fixed-window throttle per (action, method, actor). The counter row is
incremented with a single UPDATE so concurrent requests for the same key
cannot both pass the check. Windows reset only by time.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.db_models import RateLimitCounterDB
from ..policy import Policy
from .errors import RateLimitExceeded


logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1)


class RateLimiter:
    """
    Database-backed rate limiter.

    Usage:
        RateLimiter(db).check("proof_submission", user.id, "web")
    """

    def __init__(self, db: Session):
        self.db = db
        self.policy = Policy(db)

    def check(
        self,
        action: str,
        actor_id: str,
        method: str = "web",
        now: Optional[datetime] = None,
    ) -> int:
        """
        Count this attempt and raise RateLimitExceeded past the limit.

        Returns the attempt count within the current window.
        """
        limits = self.policy.rate_limit_for(action, method)
        if limits is None:
            raise ValueError(f"Unknown rate limit action: {action} ({method})")

        window_start = self.window_start(now or datetime.utcnow(), limits["period_hours"])
        count = self._increment(action, method, str(actor_id), window_start)

        if count > limits["max"]:
            logger.info(
                f"Rate limit tripped: action={action} method={method} actor={actor_id} "
                f"count={count} max={limits['max']}"
            )
            raise RateLimitExceeded(action, method, limits["max"], limits["period_hours"])

        return count

    def current_count(self, action: str, actor_id: str, method: str = "web",
                      now: Optional[datetime] = None) -> int:
        limits = self.policy.rate_limit_for(action, method)
        if limits is None:
            return 0
        window_start = self.window_start(now or datetime.utcnow(), limits["period_hours"])
        row = self._counter_query(action, method, str(actor_id), window_start).first()
        return row.count if row else 0

    @staticmethod
    def window_start(now: datetime, period_hours: int) -> datetime:
        """Start of the fixed window containing `now`."""
        period = timedelta(hours=period_hours)
        elapsed = now - _EPOCH
        return _EPOCH + period * (elapsed // period)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _counter_query(self, action, method, actor_id, window_start):
        return self.db.query(RateLimitCounterDB).filter(
            RateLimitCounterDB.action == action,
            RateLimitCounterDB.method == method,
            RateLimitCounterDB.actor_id == actor_id,
            RateLimitCounterDB.window_start == window_start,
        )

    def _increment(self, action, method, actor_id, window_start) -> int:
        updated = self._counter_query(action, method, actor_id, window_start).update(
            {RateLimitCounterDB.count: RateLimitCounterDB.count + 1},
            synchronize_session=False,
        )

        if updated == 0:
            try:
                with self.db.begin_nested():
                    self.db.add(RateLimitCounterDB(
                        id=str(uuid4()),
                        action=action,
                        method=method,
                        actor_id=actor_id,
                        window_start=window_start,
                        count=1,
                    ))
                return 1
            except IntegrityError:
                # Another request created the window row first
                self._counter_query(action, method, actor_id, window_start).update(
                    {RateLimitCounterDB.count: RateLimitCounterDB.count + 1},
                    synchronize_session=False,
                )

        row = self._counter_query(action, method, actor_id, window_start).populate_existing().one()
        return row.count
