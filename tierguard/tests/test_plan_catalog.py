"""Plan hierarchy, default limits and the subscription_plans catalog."""
import logging

import pytest
from sqlalchemy import delete, select

from tierguard.core.database import get_db_session, subscription_plans
from tierguard.features.plans.service import (
    DEFAULT_PLAN_LIMITS,
    PLAN_HIERARCHY,
    PlanCatalog,
    has_access,
    rank,
)
from tierguard.models.plan import PlanId, Resource, UNLIMITED


class TestHierarchy:
    def test_ranks_are_ordered(self):
        assert rank(PlanId.FREE) < rank(PlanId.CREATOR) < rank(PlanId.PRO)
        assert PLAN_HIERARCHY == {PlanId.FREE: 0, PlanId.CREATOR: 1, PlanId.PRO: 2}

    @pytest.mark.parametrize("plan", list(PlanId))
    def test_plan_has_access_to_itself(self, plan):
        assert has_access(plan, plan)

    @pytest.mark.parametrize("plan", list(PlanId))
    def test_no_requirement_always_passes(self, plan):
        assert has_access(plan, None)

    def test_lower_plan_denied(self):
        assert not has_access(PlanId.FREE, PlanId.CREATOR)
        assert not has_access(PlanId.CREATOR, PlanId.PRO)
        assert has_access(PlanId.PRO, PlanId.CREATOR)

    def test_accepts_raw_strings(self):
        assert has_access("creator", "free")
        with pytest.raises(ValueError):
            rank("enterprise")


class TestDefaults:
    def test_free_limits(self):
        assert DEFAULT_PLAN_LIMITS[PlanId.FREE] == {
            Resource.VIDEOS_GENERATED: 1,
            Resource.SOURCE_VIDEOS: 5,
            Resource.VOICE_CLONES: 0,
            Resource.ACCOUNT_ANALYSIS: 1,
            Resource.SCRIPT_CONVERSATIONS: 10,
        }

    def test_pro_is_mostly_unlimited(self):
        pro = DEFAULT_PLAN_LIMITS[PlanId.PRO]
        assert pro[Resource.VIDEOS_GENERATED] == UNLIMITED
        assert pro[Resource.VOICE_CLONES] == 2


class TestCatalog:
    def test_seed_is_idempotent(self, session_factory):
        catalog = PlanCatalog(session_factory)
        assert catalog.seed_plans() == 3
        assert catalog.seed_plans() == 0
        assert [p.id for p in catalog.list_plans()] == [PlanId.FREE, PlanId.CREATOR, PlanId.PRO]

    def test_get_plan_reads_store(self, session_factory):
        catalog = PlanCatalog(session_factory)
        catalog.seed_plans()
        creator = catalog.get_plan("creator")
        assert creator.name == "Creator"
        assert creator.limit_for(Resource.VIDEOS_GENERATED) == 15

    def test_missing_row_falls_back_to_defaults(self, session_factory, caplog):
        catalog = PlanCatalog(session_factory)
        catalog.seed_plans()
        with get_db_session(session_factory) as session:
            session.execute(delete(subscription_plans).where(subscription_plans.c.id == "pro"))
            assert session.execute(select(subscription_plans.c.id)).all()

        with caplog.at_level(logging.WARNING):
            limits = catalog.get_plan_limits(PlanId.PRO)

        assert limits == DEFAULT_PLAN_LIMITS[PlanId.PRO]
        assert "[plans] plan row missing" in caplog.text
