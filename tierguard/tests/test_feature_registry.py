from unittest.mock import patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from tierguard.core.database import feature_flags, get_db_session
from tierguard.core.errors import MonetizationServiceError
from tierguard.models.plan import PlanId


def test_seeded_requirements(services):
    registry = services.registry
    assert registry.get_requirement("voice_clone").required_plan == PlanId.CREATOR
    assert registry.get_requirement("chat_ai").required_plan == PlanId.CREATOR
    assert registry.get_requirement("video_generation").required_plan is None
    assert len(registry.list_flags()) == 9


def test_not_found_is_cached(services):
    registry = services.registry
    assert registry.get_requirement("unknown_feature") is None

    with patch.object(registry, "_fetch") as fetch:
        assert registry.get_requirement("unknown_feature") is None
        fetch.assert_not_called()


def test_inactive_flag_means_no_requirement(services, session_factory):
    with get_db_session(session_factory) as session:
        session.execute(update(feature_flags).where(feature_flags.c.id == "voice_clone").values(is_active=False))
    services.registry.invalidate("voice_clone")

    assert services.registry.get_requirement("voice_clone") is None


def test_invalidate_picks_up_admin_change(services, session_factory):
    registry = services.registry
    assert registry.get_requirement("video_generation").required_plan is None

    with get_db_session(session_factory) as session:
        session.execute(
            update(feature_flags).where(feature_flags.c.id == "video_generation").values(required_plan="pro")
        )
    # Still cached
    assert registry.get_requirement("video_generation").required_plan is None

    assert registry.invalidate() >= 1
    assert registry.get_requirement("video_generation").required_plan == PlanId.PRO


def test_store_failure_is_distinct_from_not_found(services):
    services.registry.invalidate()
    with patch(
        "tierguard.features.flags.service.get_db_session",
        side_effect=OperationalError("SELECT", {}, Exception("db gone")),
    ):
        with pytest.raises(MonetizationServiceError):
            services.registry.get_requirement("voice_clone")

    # Nothing cached on failure
    assert services.registry.get_requirement("voice_clone").required_plan == PlanId.CREATOR
