"""
tierguard/models/user_usage.py

UserUsage model: a user's plan plus per-resource quota counters.
"""

from datetime import datetime
from typing import Dict, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from tierguard.models.plan import PlanId, Resource, UNLIMITED

UNLIMITED_REMAINING = "unlimited"

Remaining = Union[int, str]


class UsageQuota(BaseModel):
    """
    A (used, limit) pair for one resource.

    `used` is never clamped against `limit`: it may equal or exceed it, and
    reaching the limit is what blocks further use. A limit of -1 is unlimited.
    """
    model_config = ConfigDict(frozen=True)

    used: int = Field(0, ge=0)
    limit: int = 0

    @property
    def is_unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def is_exhausted(self) -> bool:
        if self.is_unlimited:
            return False
        return self.used >= self.limit

    @property
    def remaining(self) -> Remaining:
        if self.is_unlimited:
            return UNLIMITED_REMAINING
        return max(0, self.limit - self.used)


class UserUsage(BaseModel):
    """
    Per-user usage record.

    Constraint: one record per user, created on first access and never
    deleted by the monetization core.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    plan_id: PlanId
    counters: Dict[Resource, UsageQuota]
    subscription_status: str = "active"
    next_reset_date: datetime
    last_reset_date: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def quota(self, resource: Resource) -> UsageQuota:
        return self.counters.get(resource, UsageQuota())


class UsageInfo(BaseModel):
    """Usage snapshot for one usage field, for dashboards."""
    used: int
    total: int
    remaining: Remaining
    percentage: float
    warning_level: Optional[str] = None
