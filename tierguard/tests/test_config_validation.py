import logging

import pytest

from tierguard.core.config import Settings, validate_config


def _settings(**overrides):
    return Settings(_env_file=None, **overrides)


def test_defaults():
    cfg = _settings()
    assert cfg.USAGE_CACHE_TTL_SECONDS == 300
    assert cfg.USAGE_RESET_DAYS == 30
    assert cfg.jwt_algorithms == ["HS256"]


def test_algorithms_are_split():
    assert _settings(JWT_ALGORITHMS="HS256, RS256").jwt_algorithms == ["HS256", "RS256"]


def test_missing_secrets_warn(caplog):
    cfg = _settings(JWT_SECRET=None, ADMIN_KEY=None)
    logger = logging.getLogger("tierguard.test_config")
    with caplog.at_level(logging.WARNING, logger="tierguard.test_config"):
        assert validate_config(strict=False, settings_obj=cfg, logger=logger) is True
    assert "JWT_SECRET" in caplog.text
    assert "ADMIN_KEY" in caplog.text


def test_missing_secrets_raise_in_strict_mode():
    cfg = _settings(JWT_SECRET=None, ADMIN_KEY="k")
    with pytest.raises(RuntimeError, match="JWT_SECRET"):
        validate_config(strict=True, settings_obj=cfg)


def test_user_id_header_rejected_in_strict_production():
    cfg = _settings(ENV="production", JWT_SECRET="s", ADMIN_KEY="k", ALLOW_USER_ID_HEADER=True)
    with pytest.raises(RuntimeError, match="ALLOW_USER_ID_HEADER"):
        validate_config(strict=True, settings_obj=cfg)
