"""Bearer JWT and X-User-Id resolution."""
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException

from tierguard.core.auth import verify_jwt


def _token(secret="test-secret", **claims):
    payload = {"sub": "jwt-user", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def test_verify_jwt_returns_subject(test_settings):
    assert verify_jwt(_token(), test_settings) == "jwt-user"


def test_verify_jwt_without_secret_skips(test_settings):
    cfg = test_settings.model_copy(update={"JWT_SECRET": None})
    assert verify_jwt(_token(), cfg) is None


def test_expired_token_is_401(test_settings):
    expired = _token(exp=datetime.now(timezone.utc) - timedelta(minutes=1))
    with pytest.raises(HTTPException) as exc_info:
        verify_jwt(expired, test_settings)
    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Token expired"


def test_wrong_signature_is_401(test_settings):
    with pytest.raises(HTTPException) as exc_info:
        verify_jwt(_token(secret="other-secret"), test_settings)
    assert exc_info.value.detail == "Invalid token"


def test_bearer_token_used_by_api(client):
    resp = client.get(
        "/v1/monetization/usage",
        headers={"Authorization": f"Bearer {_token(sub='bearer-user')}"},
    )
    assert resp.status_code == 200
    assert resp.json()["userId"] == "bearer-user"


def test_invalid_bearer_does_not_fall_back_to_header(client):
    resp = client.get(
        "/v1/monetization/usage",
        headers={"Authorization": "Bearer not-a-jwt", "X-User-Id": "sneaky"},
    )
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "http_error"


def test_user_id_header_can_be_disabled(test_settings, engine, session_factory):
    from fastapi.testclient import TestClient
    from tierguard.main import create_app

    cfg = test_settings.model_copy(update={"ALLOW_USER_ID_HEADER": False})
    with TestClient(create_app(cfg, engine=engine, session_factory=session_factory)) as c:
        resp = c.get("/v1/monetization/usage", headers={"X-User-Id": "header-user"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "AUTHENTICATION_REQUIRED"
