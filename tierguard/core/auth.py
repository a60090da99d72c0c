"""
Auth utilities for the tierguard API.

Validates bearer JWTs issued by the external identity provider and extracts
the user id from the 'sub' claim. Falls back to the X-User-Id header when
ALLOW_USER_ID_HEADER is enabled (development and tests).
"""
from fastapi import Header, HTTPException, Request
from typing import Optional
import jwt
import logging

from tierguard.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def _settings_for(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or default_settings


def verify_jwt(token: str, cfg: Optional[Settings] = None) -> Optional[str]:
    """
    Verify a bearer JWT and extract user_id.

    Args:
        token: JWT from Authorization header (Bearer {token})
        cfg: Settings override

    Returns:
        user_id from the 'sub' claim, or None when no JWT_SECRET is configured

    Raises:
        HTTPException 401: Invalid or expired token
    """
    cfg = cfg or default_settings
    if not cfg.JWT_SECRET:
        logger.debug("No JWT_SECRET configured, skipping JWT validation")
        return None

    options = {"verify_signature": True, "verify_exp": True, "verify_aud": bool(cfg.JWT_AUDIENCE)}
    try:
        payload = jwt.decode(
            token,
            cfg.JWT_SECRET,
            algorithms=cfg.jwt_algorithms,
            audience=cfg.JWT_AUDIENCE,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token has no subject")
    return user_id


async def get_optional_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Dev/test user ID"),
) -> Optional[str]:
    """
    Resolve the caller's user id, or None if the request is anonymous.

    Priority:
    1. Bearer JWT from Authorization header (invalid token -> 401)
    2. X-User-Id header, if allowed by config
    3. None; the monetization pipeline turns this into AUTHENTICATION_REQUIRED
    """
    cfg = _settings_for(request)

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        user_id = verify_jwt(auth_header[7:], cfg)
        if user_id:
            return user_id

    if x_user_id and cfg.ALLOW_USER_ID_HEADER:
        return x_user_id

    return None
