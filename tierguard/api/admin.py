"""
Admin-only monetization operations.
Requires X-Admin-Key header for all endpoints.
Handles plan changes, monthly resets, usage refunds and cache invalidation.
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from tierguard.api.monetization import UsageResponse, usage_response
from tierguard.core.config import settings as default_settings
from tierguard.core.errors import AdminAuthError, NotFoundError, ValidationError
from tierguard.core.logging import log_event
from tierguard.features.monetization.container import MonetizationServices, get_monetization_services
from tierguard.features.monetization.mapping import parse_usage_field
from tierguard.models.plan import PlanId

logger = logging.getLogger("tierguard.admin")

router = APIRouter(prefix="/v1/admin/monetization", tags=["admin-monetization"])


def require_admin_key(request: Request, x_admin_key: Optional[str] = Header(None)) -> str:
    cfg = getattr(request.app.state, "settings", None) or default_settings
    admin_key = cfg.ADMIN_KEY
    if not admin_key or not x_admin_key or not secrets.compare_digest(x_admin_key, admin_key):
        logger.warning("[admin] invalid admin key attempt")
        raise AdminAuthError("Invalid or missing X-Admin-Key header")
    return x_admin_key


class PlanChangeRequest(BaseModel):
    plan: str


class RefundRequest(BaseModel):
    """Give back usage, e.g. after a failed downstream job."""
    usage_field: str
    amount: int = Field(default=1, ge=1)


class CacheInvalidateRequest(BaseModel):
    user_id: Optional[str] = None
    feature_id: Optional[str] = None
    all: bool = False


@router.post("/users/{user_id}/plan", response_model=UsageResponse)
async def change_plan(
    user_id: str,
    body: PlanChangeRequest,
    _: str = Depends(require_admin_key),
    services: MonetizationServices = Depends(get_monetization_services),
):
    try:
        plan = PlanId(body.plan)
    except ValueError:
        raise ValidationError(f"Unknown plan: {body.plan}")

    usage = await run_in_threadpool(services.usage_store.update_plan, user_id, plan)
    log_event("info", "[admin] plan changed", user_id=user_id, extra={"plan_id": plan.value})
    return usage_response(usage, services.usage_store.usage_summary(usage))


@router.post("/users/{user_id}/reset")
async def reset_usage(
    user_id: str,
    _: str = Depends(require_admin_key),
    services: MonetizationServices = Depends(get_monetization_services),
):
    reset = await run_in_threadpool(services.usage_store.reset_monthly_usage, user_id)
    if not reset:
        raise NotFoundError(f"No usage record for {user_id}")
    log_event("info", "[admin] usage reset", user_id=user_id)
    return {"success": True, "userId": user_id}


@router.post("/users/{user_id}/refund")
async def refund_usage(
    user_id: str,
    body: RefundRequest,
    _: str = Depends(require_admin_key),
    services: MonetizationServices = Depends(get_monetization_services),
):
    field = parse_usage_field(body.usage_field)
    if field is None:
        raise ValidationError(f"Unknown usage field: {body.usage_field}")

    refunded = await run_in_threadpool(services.usage_store.decrement, user_id, field, body.amount)
    if not refunded:
        raise NotFoundError(f"No usage record for {user_id}")
    log_event(
        "info",
        "[admin] usage refunded",
        user_id=user_id,
        extra={"usage_field": field.value, "amount": body.amount},
    )
    return {"success": True, "userId": user_id, "usageField": field.value, "amount": body.amount}


@router.post("/cache/invalidate")
async def invalidate_cache(
    body: CacheInvalidateRequest,
    _: str = Depends(require_admin_key),
    services: MonetizationServices = Depends(get_monetization_services),
):
    if body.all:
        removed = len(services.cache)
        services.cache.clear()
    else:
        if not body.user_id and not body.feature_id:
            raise ValidationError("Provide user_id, feature_id or all=true")
        removed = 0
        if body.user_id:
            removed += services.usage_store.invalidate(body.user_id)
        if body.feature_id:
            removed += services.registry.invalidate(body.feature_id)

    log_event("info", "[admin] cache invalidated", extra={"removed": removed})
    return {"success": True, "removed": removed}
