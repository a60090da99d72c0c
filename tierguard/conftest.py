# tierguard/conftest.py
import pytest
from fastapi.testclient import TestClient

from tierguard.core.cache import TTLCache
from tierguard.core.config import Settings
from tierguard.core.database import build_engine, create_all_tables, make_session_factory
from tierguard.features.monetization.container import build_monetization_services


@pytest.fixture
def test_settings():
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        ENV="development",
        DATABASE_URL="sqlite://",
        JWT_SECRET="test-secret",
        ADMIN_KEY="test-admin-key",
        ALLOW_USER_ID_HEADER=True,
        SEED_DEFAULTS=True,
    )


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    eng = build_engine("sqlite://")
    create_all_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def cache():
    return TTLCache(ttl_seconds=300)


@pytest.fixture
def services(test_settings, session_factory, cache):
    """Seeded monetization services on the in-memory database."""
    svc = build_monetization_services(test_settings, session_factory, cache=cache)
    svc.seed_defaults()
    return svc


@pytest.fixture
def app(test_settings, engine, session_factory):
    from tierguard.main import create_app

    return create_app(test_settings, engine=engine, session_factory=session_factory)


@pytest.fixture
def client(app):
    # Context manager runs the lifespan (tables + seed)
    with TestClient(app) as c:
        yield c
