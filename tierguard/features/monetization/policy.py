"""
tierguard/features/monetization/policy.py

Policy engine: decides whether a user may use a feature right now.

A decision combines two checks, in order:
1. Plan gate: the feature's required plan vs the user's current plan
2. Quota gate: the usage counter behind the feature vs its limit

The engine owns no data. It reads the feature registry and the usage store
and returns a PolicyResult; it never mutates counters.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from tierguard.core.cache import TTLCache
from tierguard.core.errors import (
    ErrorKind,
    MONETIZATION_ERRORS,
    MonetizationError,
    MonetizationServiceError,
)
from tierguard.features.flags.service import FeatureRegistry
from tierguard.features.monetization.mapping import (
    Feature,
    get_resource_for_field,
    get_usage_field_for_action,
    get_usage_field_for_feature,
    parse_action,
    parse_feature,
)
from tierguard.features.plans.service import has_access
from tierguard.features.usage.service import UsageStore
from tierguard.models.plan import PlanId
from tierguard.models.user_usage import Remaining

logger = logging.getLogger(__name__)

USAGE_LIMIT_MESSAGE = "Usage limit reached"


@dataclass(frozen=True)
class PolicyResult:
    """
    Outcome of a policy evaluation.

    Plan denials carry required_plan but no quota numbers; quota denials and
    successes carry remaining/limit but no required_plan.
    """
    allowed: bool
    feature_id: str
    current_plan: Optional[PlanId] = None
    required_plan: Optional[PlanId] = None
    remaining: Optional[Remaining] = None
    limit: Optional[int] = None
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @property
    def has_plan_access(self) -> bool:
        return self.error_kind != ErrorKind.FEATURE_ACCESS_DENIED

    def details(self) -> Optional[Dict[str, Any]]:
        """Client-facing details block of the denial contract."""
        if self.error_kind == ErrorKind.FEATURE_ACCESS_DENIED:
            return {
                "featureId": self.feature_id,
                "requiredPlan": self.required_plan.value if self.required_plan else None,
                "currentPlan": self.current_plan.value if self.current_plan else None,
            }
        if self.error_kind == ErrorKind.USAGE_LIMIT_REACHED:
            return {
                "featureId": self.feature_id,
                "currentPlan": self.current_plan.value if self.current_plan else None,
                "remainingUsage": self.remaining,
                "totalLimit": self.limit,
            }
        return None

    def upgrade(self) -> Optional[Dict[str, Any]]:
        if self.error_kind != ErrorKind.FEATURE_ACCESS_DENIED or self.required_plan is None:
            return None
        current = self.current_plan.value if self.current_plan else None
        return {
            "requiredPlan": self.required_plan.value,
            "currentPlan": current,
            "code": ErrorKind.PLAN_UPGRADE_REQUIRED.value,
            "message": (
                f"This feature requires a {self.required_plan.value} plan. "
                f"You currently have a {current} plan."
            ),
        }

    def to_error(self, request_id: Optional[str] = None) -> MonetizationError:
        """Build the exception the pipeline raises for a denied result."""
        if self.allowed:
            raise ValueError("Allowed results have no error")
        error_cls = MONETIZATION_ERRORS[self.error_kind]
        return error_cls(
            self.detail or self.error_kind.value,
            details=self.details(),
            upgrade=self.upgrade(),
            request_id=request_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.allowed,
            "hasAccess": self.has_plan_access,
            "featureId": self.feature_id,
            "currentPlan": self.current_plan.value if self.current_plan else None,
            "requiredPlan": self.required_plan.value if self.required_plan else None,
            "remainingUsage": self.remaining,
            "totalLimit": self.limit,
            "code": self.error_kind.value if self.error_kind else None,
            "error": self.detail,
        }


class PolicyEngine:
    def __init__(
        self,
        registry: FeatureRegistry,
        usage_store: UsageStore,
        env: str = "development",
        cache: Optional[TTLCache] = None,
    ):
        self._registry = registry
        self._usage_store = usage_store
        self._env = env
        self._cache = cache

    def evaluate(self, user_id: str, feature_id: str) -> PolicyResult:
        """
        Decide whether user_id may use feature_id.

        Never raises for expected failures; store outages come back as a
        MONETIZATION_SERVICE_ERROR result.
        """
        feature = parse_feature(feature_id)
        if feature is None:
            logger.warning("[policy] unknown feature", extra={"user_id": user_id, "feature_id": feature_id})
            return PolicyResult(
                allowed=False,
                feature_id=feature_id,
                error_kind=ErrorKind.INVALID_FEATURE_ID,
                detail=f"Invalid feature ID: {feature_id}",
            )

        try:
            usage = self._usage_store.get(user_id)
            flag = self._registry.get_requirement(feature.value)
        except MonetizationServiceError:
            logger.error(
                "[policy] store unavailable",
                extra={"user_id": user_id, "feature_id": feature.value},
            )
            return PolicyResult(
                allowed=False,
                feature_id=feature.value,
                error_kind=ErrorKind.MONETIZATION_SERVICE_ERROR,
                detail=MonetizationServiceError.PUBLIC_MESSAGE,
            )

        required_plan = flag.required_plan if flag else None
        if not has_access(usage.plan_id, required_plan):
            logger.info(
                "[policy] DENIED plan",
                extra={
                    "user_id": user_id,
                    "feature_id": feature.value,
                    "plan_id": usage.plan_id.value,
                    "required_plan": required_plan.value,
                },
            )
            return PolicyResult(
                allowed=False,
                feature_id=feature.value,
                current_plan=usage.plan_id,
                required_plan=required_plan,
                error_kind=ErrorKind.FEATURE_ACCESS_DENIED,
                detail=f"Feature requires {required_plan.value} plan",
            )

        field = get_usage_field_for_feature(feature)
        quota = usage.quota(get_resource_for_field(field))
        if quota.is_exhausted:
            logger.info(
                "[policy] DENIED quota",
                extra={
                    "user_id": user_id,
                    "feature_id": feature.value,
                    "usage_field": field.value,
                    "used": quota.used,
                    "limit": quota.limit,
                },
            )
            return PolicyResult(
                allowed=False,
                feature_id=feature.value,
                current_plan=usage.plan_id,
                remaining=0,
                limit=quota.limit,
                error_kind=ErrorKind.USAGE_LIMIT_REACHED,
                detail=USAGE_LIMIT_MESSAGE,
            )

        logger.debug(
            "[policy] ALLOWED",
            extra={"user_id": user_id, "feature_id": feature.value, "usage_field": field.value},
        )
        return PolicyResult(
            allowed=True,
            feature_id=feature.value,
            current_plan=usage.plan_id,
            remaining=quota.remaining,
            limit=quota.limit,
        )

    def validate_usage(self, user_id: str, action: str) -> PolicyResult:
        """Quota-only check for an action, skipping the plan gate."""
        parsed = parse_action(action)
        if parsed is None:
            return PolicyResult(
                allowed=False,
                feature_id=action,
                error_kind=ErrorKind.INVALID_ACTION,
                detail=f"Invalid action: {action}",
            )

        field = get_usage_field_for_action(parsed)
        if self._usage_store.check_limit(user_id, field):
            return PolicyResult(
                allowed=False,
                feature_id=parsed.value,
                error_kind=ErrorKind.USAGE_LIMIT_REACHED,
                remaining=0,
                detail=USAGE_LIMIT_MESSAGE,
            )

        return PolicyResult(allowed=True, feature_id=parsed.value)

    def debug_info(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Full picture of a user's monetization state.

        Only available in development; returns None elsewhere.
        """
        if self._env.lower() != "development":
            return None

        usage = self._usage_store.get(user_id)
        summary = self._usage_store.usage_summary(usage)
        return {
            "userId": user_id,
            "currentPlan": usage.plan_id.value,
            "nextResetDate": usage.next_reset_date.isoformat(),
            "usage": {field.value: info.model_dump() for field, info in summary.items()},
            "features": {
                feature.value: self.evaluate(user_id, feature.value).to_dict() for feature in Feature
            },
            "cacheSize": len(self._cache) if self._cache is not None else None,
        }
