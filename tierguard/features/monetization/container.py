"""
Wiring for the monetization services.

build_monetization_services constructs one set of collaborators sharing a
cache and a session factory. The app keeps the result on app.state; tests
build their own against an in-memory database.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from tierguard.core.cache import TTLCache
from tierguard.core.config import Settings, settings as default_settings
from tierguard.core.database import SessionFactory, get_session_factory
from tierguard.features.flags.service import FeatureRegistry
from tierguard.features.monetization.pipeline import RequestPipeline
from tierguard.features.monetization.policy import PolicyEngine
from tierguard.features.plans.service import PlanCatalog
from tierguard.features.usage.service import UsageStore


@dataclass
class MonetizationServices:
    cache: TTLCache
    catalog: PlanCatalog
    registry: FeatureRegistry
    usage_store: UsageStore
    engine: PolicyEngine
    pipeline: RequestPipeline

    def seed_defaults(self) -> None:
        self.catalog.seed_plans()
        self.registry.seed_feature_flags()


def build_monetization_services(
    settings: Optional[Settings] = None,
    session_factory: Optional[SessionFactory] = None,
    cache: Optional[TTLCache] = None,
) -> MonetizationServices:
    cfg = settings or default_settings
    factory = session_factory or get_session_factory()
    shared_cache = cache or TTLCache(ttl_seconds=cfg.USAGE_CACHE_TTL_SECONDS)

    catalog = PlanCatalog(factory)
    registry = FeatureRegistry(shared_cache, factory, ttl_seconds=cfg.FEATURE_CACHE_TTL_SECONDS)
    usage_store = UsageStore(
        catalog,
        shared_cache,
        factory,
        ttl_seconds=cfg.USAGE_CACHE_TTL_SECONDS,
        reset_days=cfg.USAGE_RESET_DAYS,
    )
    engine = PolicyEngine(registry, usage_store, env=cfg.ENV, cache=shared_cache)
    pipeline = RequestPipeline(
        engine,
        usage_store,
        charge_timeout_seconds=cfg.CHARGE_TIMEOUT_SECONDS,
        headers_enabled=cfg.MONETIZATION_HEADERS_ENABLED,
    )
    return MonetizationServices(
        cache=shared_cache,
        catalog=catalog,
        registry=registry,
        usage_store=usage_store,
        engine=engine,
        pipeline=pipeline,
    )


def get_monetization_services(request: Request) -> MonetizationServices:
    """FastAPI dependency returning the app's service container."""
    return request.app.state.monetization
