"""
tierguard/features/flags/service.py

Feature registry: which plan each gated feature requires.

Lookups go through the shared TTL cache keyed by ("feature", feature_id).
"Not found" is cached too, so unknown or open features do not hit the store
on every request. Store failures raise MonetizationServiceError and are never
confused with "no requirement".
"""

import logging
from typing import List, Optional

from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError

from tierguard.core.cache import TTLCache
from tierguard.core.database import SessionFactory, feature_flags, get_db_session
from tierguard.core.errors import MonetizationServiceError
from tierguard.models.feature_flag import FeatureFlag
from tierguard.models.plan import PlanId

logger = logging.getLogger(__name__)

FEATURE_CACHE_KIND = "feature"

# Default gating: premium features need at least creator
DEFAULT_FEATURE_FLAGS = {
    "video_generation": {"name": "Video generation", "required_plan": None},
    "source_videos": {"name": "Source video upload", "required_plan": None},
    "voice_clone": {"name": "Voice cloning", "required_plan": PlanId.CREATOR},
    "account_analysis": {"name": "Account analysis", "required_plan": None},
    "account_insights": {"name": "Account insights", "required_plan": PlanId.CREATOR},
    "account_chat": {"name": "Account chat", "required_plan": PlanId.CREATOR},
    "script_conversations": {"name": "Script conversations", "required_plan": None},
    "script_generation": {"name": "Script generation", "required_plan": None},
    "chat_ai": {"name": "Chat AI", "required_plan": PlanId.CREATOR},
}


def _row_to_flag(row) -> FeatureFlag:
    return FeatureFlag(
        id=row.id,
        name=row.name,
        description=row.description,
        required_plan=PlanId(row.required_plan) if row.required_plan else None,
        is_active=bool(row.is_active),
    )


class FeatureRegistry:
    def __init__(
        self,
        cache: TTLCache,
        session_factory: Optional[SessionFactory] = None,
        ttl_seconds: Optional[float] = None,
    ):
        self._cache = cache
        self._session_factory = session_factory
        self._ttl_seconds = ttl_seconds

    def _fetch(self, feature_id: str) -> Optional[FeatureFlag]:
        try:
            with get_db_session(self._session_factory) as session:
                row = session.execute(
                    select(feature_flags).where(feature_flags.c.id == feature_id)
                ).first()
        except SQLAlchemyError as exc:
            logger.error(
                "[flags] store read failed",
                extra={"feature_id": feature_id, "error": str(exc)},
            )
            raise MonetizationServiceError(f"Failed to load feature flag {feature_id}") from exc

        if not row:
            return None

        flag = _row_to_flag(row)
        if not flag.is_active:
            logger.warning("[flags] inactive flag treated as open", extra={"feature_id": feature_id})
            return None
        return flag

    def get_requirement(self, feature_id: str) -> Optional[FeatureFlag]:
        """
        Return the active flag for a feature, or None if it has no requirement.

        Raises:
            MonetizationServiceError: The store could not be read
        """
        return self._cache.get_or_fetch(
            (FEATURE_CACHE_KIND, feature_id),
            lambda: self._fetch(feature_id),
            ttl_seconds=self._ttl_seconds,
            cache_none=True,
        )

    def invalidate(self, feature_id: Optional[str] = None) -> int:
        """Drop one cached flag, or all of them when feature_id is None."""
        if feature_id is None:
            return self._cache.invalidate_kind(FEATURE_CACHE_KIND)
        return int(self._cache.invalidate((FEATURE_CACHE_KIND, feature_id)))

    def list_flags(self) -> List[FeatureFlag]:
        with get_db_session(self._session_factory) as session:
            rows = session.execute(select(feature_flags).order_by(feature_flags.c.id)).all()
        return [_row_to_flag(row) for row in rows]

    def seed_feature_flags(self) -> int:
        """Insert default flags that are not present yet. Returns rows inserted."""
        inserted = 0
        with get_db_session(self._session_factory) as session:
            for feature_id, config in DEFAULT_FEATURE_FLAGS.items():
                existing = session.execute(
                    select(feature_flags.c.id).where(feature_flags.c.id == feature_id)
                ).first()
                if existing:
                    continue
                required = config["required_plan"]
                session.execute(
                    insert(feature_flags).values(
                        id=feature_id,
                        name=config["name"],
                        required_plan=required.value if required else None,
                        is_active=True,
                    )
                )
                inserted += 1

        if inserted:
            self.invalidate()
            logger.info("[flags] seeded", extra={"count": inserted})
        return inserted
