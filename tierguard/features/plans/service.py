"""
tierguard/features/plans/service.py

Plan catalog service.

Handles:
- Plan hierarchy (free < creator < pro) and access comparison
- Default quota limits per plan
- Plan seeding and lookups against subscription_plans
"""

import logging
from typing import Dict, List, Optional, Union

from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError

from tierguard.core.database import SessionFactory, get_db_session, subscription_plans
from tierguard.core.errors import MonetizationServiceError
from tierguard.models.plan import PlanId, Resource, SubscriptionPlan, UNLIMITED, limit_column

logger = logging.getLogger(__name__)


PLAN_HIERARCHY: Dict[PlanId, int] = {
    PlanId.FREE: 0,
    PlanId.CREATOR: 1,
    PlanId.PRO: 2,
}

# Default plan configurations
DEFAULT_PLANS = {
    PlanId.FREE: {
        "name": "Free",
        "description": "Try the basics",
        "limits": {
            Resource.VIDEOS_GENERATED: 1,
            Resource.SOURCE_VIDEOS: 5,
            Resource.VOICE_CLONES: 0,
            Resource.ACCOUNT_ANALYSIS: 1,
            Resource.SCRIPT_CONVERSATIONS: 10,
        },
    },
    PlanId.CREATOR: {
        "name": "Creator",
        "description": "For regular publishers",
        "limits": {
            Resource.VIDEOS_GENERATED: 15,
            Resource.SOURCE_VIDEOS: 50,
            Resource.VOICE_CLONES: 1,
            Resource.ACCOUNT_ANALYSIS: 4,
            Resource.SCRIPT_CONVERSATIONS: 100,
        },
    },
    PlanId.PRO: {
        "name": "Pro",
        "description": "Everything, mostly unlimited",
        "limits": {
            Resource.VIDEOS_GENERATED: UNLIMITED,
            Resource.SOURCE_VIDEOS: UNLIMITED,
            Resource.VOICE_CLONES: 2,
            Resource.ACCOUNT_ANALYSIS: UNLIMITED,
            Resource.SCRIPT_CONVERSATIONS: UNLIMITED,
        },
    },
}

DEFAULT_PLAN_LIMITS: Dict[PlanId, Dict[Resource, int]] = {
    plan_id: dict(config["limits"]) for plan_id, config in DEFAULT_PLANS.items()
}


def coerce_plan_id(plan: Union[PlanId, str]) -> PlanId:
    """Normalize a plan id; raises ValueError for unknown plans."""
    if isinstance(plan, PlanId):
        return plan
    return PlanId(plan)


def rank(plan: Union[PlanId, str]) -> int:
    return PLAN_HIERARCHY[coerce_plan_id(plan)]


def has_access(user_plan: Union[PlanId, str], required_plan: Optional[Union[PlanId, str]]) -> bool:
    """
    Return True if user_plan satisfies required_plan.

    A missing requirement always passes; otherwise the user's rank must be at
    least the required rank.
    """
    if required_plan is None:
        return True
    return rank(user_plan) >= rank(required_plan)


def _row_to_plan(row) -> SubscriptionPlan:
    return SubscriptionPlan(
        id=PlanId(row.id),
        name=row.name,
        description=row.description,
        limits={resource: getattr(row, limit_column(resource)) for resource in Resource},
        is_active=bool(row.is_active),
    )


class PlanCatalog:
    """Read access to subscription_plans plus the static defaults."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory

    def seed_plans(self) -> int:
        """
        Seed default plans into database (idempotent).

        Existing rows are left untouched so operators can tune limits.

        Returns:
            Number of plans inserted
        """
        inserted = 0
        with get_db_session(self._session_factory) as session:
            for plan_id, config in DEFAULT_PLANS.items():
                existing = session.execute(
                    select(subscription_plans.c.id).where(subscription_plans.c.id == plan_id.value)
                ).first()
                if existing:
                    continue

                values = {
                    "id": plan_id.value,
                    "name": config["name"],
                    "description": config["description"],
                    "is_active": True,
                }
                for resource, limit in config["limits"].items():
                    values[limit_column(resource)] = limit
                session.execute(insert(subscription_plans).values(**values))
                inserted += 1

        if inserted:
            logger.info("[plans] seeded", extra={"count": inserted})
        return inserted

    def get_plan(self, plan_id: Union[PlanId, str]) -> Optional[SubscriptionPlan]:
        """Get a plan by id, or None if the catalog has no row for it."""
        pid = coerce_plan_id(plan_id)
        try:
            with get_db_session(self._session_factory) as session:
                row = session.execute(
                    select(subscription_plans).where(subscription_plans.c.id == pid.value)
                ).first()
        except SQLAlchemyError as exc:
            logger.error("[plans] lookup failed", extra={"plan_id": pid.value, "error": str(exc)})
            raise MonetizationServiceError(f"Failed to load plan {pid.value}") from exc

        if not row:
            return None
        return _row_to_plan(row)

    def list_plans(self) -> List[SubscriptionPlan]:
        with get_db_session(self._session_factory) as session:
            rows = session.execute(select(subscription_plans)).all()
        plans = [_row_to_plan(row) for row in rows]
        return sorted(plans, key=lambda p: PLAN_HIERARCHY[p.id])

    def get_plan_limits(self, plan_id: Union[PlanId, str]) -> Dict[Resource, int]:
        """
        Resolve quota limits for a plan.

        Falls back to DEFAULT_PLAN_LIMITS when the catalog row is missing, so a
        partially seeded store still produces usable records.
        """
        pid = coerce_plan_id(plan_id)
        plan = self.get_plan(pid)
        if plan is None:
            logger.warning("[plans] plan row missing, using defaults", extra={"plan_id": pid.value})
            return dict(DEFAULT_PLAN_LIMITS[pid])
        return dict(plan.limits)
