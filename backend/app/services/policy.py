"""
Policy lookup.

Integer tunables stored in the `policies` table, falling back to
config.DEFAULT_POLICIES when no row exists.
"""
from typing import Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..config import DEFAULT_POLICIES
from ..models.db_models import PolicyDB


class Policy:
    """Read/write access to runtime policies."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str) -> Optional[int]:
        """Return the policy value, or None when neither a row nor a default exists."""
        row = self.db.query(PolicyDB).filter(PolicyDB.key == key).first()
        if row is not None:
            return row.value
        return DEFAULT_POLICIES.get(key)

    def set(self, key: str, value: int) -> PolicyDB:
        row = self.db.query(PolicyDB).filter(PolicyDB.key == key).first()
        if row is None:
            row = PolicyDB(id=str(uuid4()), key=key, value=value)
            self.db.add(row)
        else:
            row.value = value
        self.db.flush()
        return row

    def rate_limit_for(self, action: str, method: str) -> Optional[dict]:
        """{max, period_hours} for an action/channel, or None if unconfigured."""
        limit = self.get(f"{action}_rate_limit_{method}")
        period = self.get(f"{action}_rate_period")
        if limit is None or period is None:
            return None
        return {"max": limit, "period_hours": period}
