"""
Monetization API routes.

Surface:
- GET  /v1/monetization/features/{feature_id}/check: Plan + quota decision
- GET  /v1/monetization/usage: Usage summary for the caller
- GET  /v1/monetization/debug: Full state dump (development only)
- POST /v1/monetization/features/{feature_id}/use: Metered call through the pipeline
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from tierguard.core.auth import get_optional_user_id
from tierguard.core.errors import (
    AuthenticationRequiredError,
    ErrorKind,
    NotFoundError,
)
from tierguard.core.logging import get_request_id
from tierguard.features.monetization.container import MonetizationServices, get_monetization_services
from tierguard.features.monetization.mapping import get_action_for_feature, parse_feature
from tierguard.features.monetization.pipeline import HandlerOutcome, MeteredFeature, PipelineRun
from tierguard.models.user_usage import UsageInfo, UserUsage

router = APIRouter(prefix="/v1/monetization", tags=["monetization"])


class FeatureCheckResponse(BaseModel):
    success: bool
    hasAccess: bool
    featureId: str
    currentPlan: Optional[str] = None
    requiredPlan: Optional[str] = None
    remainingUsage: Optional[Any] = None
    totalLimit: Optional[int] = None
    code: Optional[str] = None
    error: Optional[str] = None


class UsageResponse(BaseModel):
    userId: str
    currentPlan: str
    subscriptionStatus: str
    nextResetDate: str
    lastResetDate: Optional[str] = None
    usage: Dict[str, UsageInfo]


class UseFeatureRequest(BaseModel):
    """Request to run a metered feature call."""
    simulate_failure: bool = False


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise AuthenticationRequiredError("User not authenticated", request_id=get_request_id())
    return user_id


def usage_response(usage: UserUsage, summary: Dict[Any, UsageInfo]) -> UsageResponse:
    return UsageResponse(
        userId=usage.user_id,
        currentPlan=usage.plan_id.value,
        subscriptionStatus=usage.subscription_status,
        nextResetDate=usage.next_reset_date.isoformat(),
        lastResetDate=usage.last_reset_date.isoformat() if usage.last_reset_date else None,
        usage={field.value: info for field, info in summary.items()},
    )


@router.get("/features/{feature_id}/check", response_model=FeatureCheckResponse)
async def check_feature(
    feature_id: str,
    user_id: Optional[str] = Depends(get_optional_user_id),
    services: MonetizationServices = Depends(get_monetization_services),
):
    """
    Evaluate plan and quota for a feature without consuming anything.

    Plan and quota denials are answered with 200 and the decision in the
    body. Unknown features (400) and store outages (500) raise.
    """
    uid = _require_user(user_id)
    result = await run_in_threadpool(services.engine.evaluate, uid, feature_id)
    if result.error_kind in (ErrorKind.INVALID_FEATURE_ID, ErrorKind.MONETIZATION_SERVICE_ERROR):
        raise result.to_error(get_request_id())
    return FeatureCheckResponse(**result.to_dict())


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    user_id: Optional[str] = Depends(get_optional_user_id),
    services: MonetizationServices = Depends(get_monetization_services),
):
    uid = _require_user(user_id)
    usage = await run_in_threadpool(services.usage_store.get, uid)
    return usage_response(usage, services.usage_store.usage_summary(usage))


@router.get("/debug")
async def get_debug_info(
    user_id: Optional[str] = Depends(get_optional_user_id),
    services: MonetizationServices = Depends(get_monetization_services),
):
    uid = _require_user(user_id)
    info = await run_in_threadpool(services.engine.debug_info, uid)
    if info is None:
        raise NotFoundError("Debug info is only available in development")
    return info


@router.post("/features/{feature_id}/use")
async def use_feature(
    feature_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[UseFeatureRequest] = None,
    user_id: Optional[str] = Depends(get_optional_user_id),
    services: MonetizationServices = Depends(get_monetization_services),
):
    """
    Run a metered call: policy check, handler, then a charge on success.

    The charged action is always the feature's mapped action, so the
    counter charged is the counter the quota check gated on.
    """
    body = body or UseFeatureRequest()
    feature = parse_feature(feature_id)
    action = get_action_for_feature(feature).value if feature is not None else None

    config = MeteredFeature(feature_id=feature_id, action=action, annotate_response=True)

    async def handler(run: PipelineRun) -> HandlerOutcome:
        if body.simulate_failure:
            return HandlerOutcome(502, {"success": False, "error": "Upstream operation failed"})
        return HandlerOutcome(200, {"success": True, "featureId": feature_id, "userId": run.user_id})

    return await services.pipeline.execute(user_id, config, handler, background_tasks)
