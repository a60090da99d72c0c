"""
tierguard/features/usage/service.py

Usage store: per-user quota counters.

Handles:
- Lazy creation of usage records (free plan unless told otherwise)
- Plan changes (limits resynced, counters untouched)
- Atomic increment / decrement of a single counter
- Quota checks (fail closed)
- Monthly reset and dashboard summaries

Reads are fronted by the shared TTL cache keyed by ("usage", user_id). Every
successful write invalidates all cache entries for the user.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Union

from sqlalchemy import case, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tierguard.core.cache import TTLCache
from tierguard.core.database import SessionFactory, get_db_session, user_usage
from tierguard.core.errors import MonetizationServiceError
from tierguard.features.monetization.mapping import UsageField, get_resource_for_field
from tierguard.features.plans.service import PlanCatalog, coerce_plan_id
from tierguard.models.plan import PlanId, Resource, limit_column, used_column
from tierguard.models.user_usage import UsageInfo, UsageQuota, UserUsage

logger = logging.getLogger(__name__)

USAGE_CACHE_KIND = "usage"
# Cache kinds keyed by user id; a write for a user drops all of them
USER_CACHE_KINDS = (USAGE_CACHE_KIND,)
DEFAULT_RESET_DAYS = 30

# Percent thresholds, highest first
USAGE_WARNING_THRESHOLDS = (
    (90, "critical"),
    (75, "high"),
    (50, "medium"),
    (25, "low"),
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_usage(row) -> UserUsage:
    counters = {
        resource: UsageQuota(
            used=getattr(row, used_column(resource)),
            limit=getattr(row, limit_column(resource)),
        )
        for resource in Resource
    }
    return UserUsage(
        user_id=row.user_id,
        plan_id=PlanId(row.current_plan_id),
        counters=counters,
        subscription_status=row.subscription_status,
        next_reset_date=row.next_reset_date,
        last_reset_date=row.last_reset_date,
        updated_at=row.updated_at,
    )


def warning_level(percentage: float) -> Optional[str]:
    for threshold, level in USAGE_WARNING_THRESHOLDS:
        if percentage >= threshold:
            return level
    return None


class UsageStore:
    """Authoritative owner of the user_usage counters."""

    def __init__(
        self,
        catalog: PlanCatalog,
        cache: TTLCache,
        session_factory: Optional[SessionFactory] = None,
        ttl_seconds: Optional[float] = None,
        reset_days: int = DEFAULT_RESET_DAYS,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._catalog = catalog
        self._cache = cache
        self._session_factory = session_factory
        self._ttl_seconds = ttl_seconds
        self._reset_days = reset_days
        self._clock = clock

    # ------------------------------------------------------------------ reads

    def _load(self, user_id: str) -> Optional[UserUsage]:
        try:
            with get_db_session(self._session_factory) as session:
                row = session.execute(
                    select(user_usage).where(user_usage.c.user_id == user_id)
                ).first()
        except SQLAlchemyError as exc:
            logger.error("[usage] store read failed", extra={"user_id": user_id, "error": str(exc)})
            raise MonetizationServiceError(f"Failed to load usage for {user_id}") from exc
        if row is None:
            return None
        try:
            return _row_to_usage(row)
        except ValueError as exc:
            # Unknown plan id or a counter the model rejects
            logger.error("[usage] corrupt usage row", extra={"user_id": user_id, "error": str(exc)})
            raise MonetizationServiceError(f"Unreadable usage record for {user_id}") from exc

    def _cached_load(self, user_id: str) -> Optional[UserUsage]:
        # Absent records are not cached; the next get() creates them
        return self._cache.get_or_fetch(
            (USAGE_CACHE_KIND, user_id),
            lambda: self._load(user_id),
            ttl_seconds=self._ttl_seconds,
        )

    def get(self, user_id: str) -> UserUsage:
        """
        Return the user's usage record, creating a free one on first access.

        Raises:
            MonetizationServiceError: The store could not be read or written
        """
        usage = self._cached_load(user_id)
        if usage is not None:
            return usage

        logger.info("[usage] no record, creating", extra={"user_id": user_id})
        return self.create(user_id)

    # ----------------------------------------------------------------- writes

    def create(self, user_id: str, plan: Union[PlanId, str] = PlanId.FREE) -> UserUsage:
        """Create a zeroed usage record with the plan's limits."""
        plan_id = coerce_plan_id(plan)
        limits = self._catalog.get_plan_limits(plan_id)
        now = self._clock()

        values = {
            "user_id": user_id,
            "current_plan_id": plan_id.value,
            "subscription_status": "active",
            "next_reset_date": now + timedelta(days=self._reset_days),
            "created_at": now,
            "updated_at": now,
        }
        for resource in Resource:
            values[used_column(resource)] = 0
            values[limit_column(resource)] = limits.get(resource, 0)

        try:
            with get_db_session(self._session_factory) as session:
                session.execute(insert(user_usage).values(**values))
        except IntegrityError:
            # Concurrent first access created it already
            logger.info("[usage] record already exists", extra={"user_id": user_id})
            existing = self._load(user_id)
            if existing is None:
                raise MonetizationServiceError(f"Failed to create usage for {user_id}")
            return existing
        except SQLAlchemyError as exc:
            logger.error("[usage] create failed", extra={"user_id": user_id, "error": str(exc)})
            raise MonetizationServiceError(f"Failed to create usage for {user_id}") from exc

        self.invalidate(user_id)
        logger.info("[usage] created", extra={"user_id": user_id, "plan_id": plan_id.value})
        usage = self._load(user_id)
        if usage is None:
            raise MonetizationServiceError(f"Usage for {user_id} missing after create")
        return usage

    def update_plan(self, user_id: str, new_plan: Union[PlanId, str]) -> UserUsage:
        """
        Move a user to a new plan.

        Only the plan id and limit columns change; counters are preserved.
        A user without a record gets one created on the new plan.
        """
        plan_id = coerce_plan_id(new_plan)
        limits = self._catalog.get_plan_limits(plan_id)

        values = {"current_plan_id": plan_id.value, "updated_at": self._clock()}
        for resource in Resource:
            values[limit_column(resource)] = limits.get(resource, 0)

        try:
            with get_db_session(self._session_factory) as session:
                result = session.execute(
                    update(user_usage).where(user_usage.c.user_id == user_id).values(**values)
                )
                updated = result.rowcount
        except SQLAlchemyError as exc:
            logger.error("[usage] plan update failed", extra={"user_id": user_id, "error": str(exc)})
            raise MonetizationServiceError(f"Failed to update plan for {user_id}") from exc

        if not updated:
            return self.create(user_id, plan_id)

        self.invalidate(user_id)
        logger.info("[usage] plan updated", extra={"user_id": user_id, "plan_id": plan_id.value})
        usage = self._load(user_id)
        if usage is None:
            raise MonetizationServiceError(f"Usage for {user_id} vanished after plan update")
        return usage

    # Kept for callers that think of this as a limits sync
    sync_limits_with_plan = update_plan

    def _apply_delta(self, user_id: str, field: UsageField, amount: int, direction: str) -> bool:
        if amount < 1:
            logger.warning(
                "[usage] rejected non-positive amount",
                extra={"user_id": user_id, "usage_field": field.value, "amount": amount},
            )
            return False

        column = user_usage.c[used_column(get_resource_for_field(field))]
        if direction == "increment":
            new_value = column + amount
        else:
            new_value = case((column - amount < 0, 0), else_=column - amount)

        try:
            with get_db_session(self._session_factory) as session:
                result = session.execute(
                    update(user_usage)
                    .where(user_usage.c.user_id == user_id)
                    .values({column: new_value, user_usage.c.updated_at: self._clock()})
                )
                updated = result.rowcount
        except SQLAlchemyError as exc:
            logger.error(
                f"[usage] {direction} failed",
                extra={"user_id": user_id, "usage_field": field.value, "error": str(exc)},
            )
            return False

        if not updated:
            logger.warning(
                f"[usage] {direction} skipped, no record",
                extra={"user_id": user_id, "usage_field": field.value},
            )
            return False

        self.invalidate(user_id)
        logger.info(
            f"[usage] {direction}",
            extra={"user_id": user_id, "usage_field": field.value, "amount": amount},
        )
        return True

    def increment(self, user_id: str, field: UsageField, amount: int = 1) -> bool:
        """
        Atomically add amount to one counter.

        Returns False on a missing record or store failure; never raises.
        """
        return self._apply_delta(user_id, field, amount, "increment")

    def decrement(self, user_id: str, field: UsageField, amount: int = 1) -> bool:
        """Atomically subtract amount from one counter, flooring at zero."""
        return self._apply_delta(user_id, field, amount, "decrement")

    def reset_monthly_usage(self, user_id: str) -> bool:
        """Zero every counter and roll the reset window forward."""
        now = self._clock()
        values = {
            "last_reset_date": now,
            "next_reset_date": now + timedelta(days=self._reset_days),
            "updated_at": now,
        }
        for resource in Resource:
            values[used_column(resource)] = 0

        try:
            with get_db_session(self._session_factory) as session:
                result = session.execute(
                    update(user_usage).where(user_usage.c.user_id == user_id).values(**values)
                )
                updated = result.rowcount
        except SQLAlchemyError as exc:
            logger.error("[usage] reset failed", extra={"user_id": user_id, "error": str(exc)})
            return False

        if not updated:
            return False

        self.invalidate(user_id)
        logger.info("[usage] monthly reset", extra={"user_id": user_id})
        return True

    # ----------------------------------------------------------------- checks

    def check_limit(self, user_id: str, field: UsageField) -> bool:
        """
        Return True if the user is blocked on this usage field.

        Fails closed: a missing record or an unreadable store counts as
        blocked. A limit of -1 never blocks.
        """
        try:
            usage = self._cached_load(user_id)
        except MonetizationServiceError:
            return True

        if usage is None:
            logger.warning(
                "[usage] limit check without record",
                extra={"user_id": user_id, "usage_field": field.value},
            )
            return True

        return usage.quota(get_resource_for_field(field)).is_exhausted

    def usage_summary(self, usage: UserUsage) -> Dict[UsageField, UsageInfo]:
        """Per-field used/total/remaining/percentage for dashboards."""
        summary: Dict[UsageField, UsageInfo] = {}
        for field in UsageField:
            quota = usage.quota(get_resource_for_field(field))
            percentage = (quota.used / quota.limit) * 100 if quota.limit > 0 else 0.0
            summary[field] = UsageInfo(
                used=quota.used,
                total=quota.limit,
                remaining=quota.remaining,
                percentage=round(percentage, 2),
                warning_level=warning_level(percentage),
            )
        return summary

    def invalidate(self, user_id: str) -> int:
        """Drop the user's cached usage snapshot."""
        return self._cache.invalidate_entity(user_id, kinds=USER_CACHE_KINDS)
