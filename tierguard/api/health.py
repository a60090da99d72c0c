"""
Health endpoints for the tierguard service.

Lightweight probes for operational monitoring without exposing secrets.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from tierguard.core.database import check_connection, get_engine

logger = logging.getLogger("tierguard")

router = APIRouter(tags=["health"])

REQUIRED_TABLES = ["subscription_plans", "feature_flags", "user_usage"]


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request):
    """Readiness check: DB connectivity + required tables."""
    engine = getattr(request.app.state, "engine", None) or get_engine()

    if not check_connection(engine):
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    inspector = inspect(engine)
    missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

    return {"status": "ok"}
