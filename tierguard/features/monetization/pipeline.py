"""
tierguard/features/monetization/pipeline.py

Request pipeline for metered features.

Stages, in order:
1. Authentication hand-off (user id resolved by tierguard.core.auth)
2. Policy check; a denial short-circuits and the handler never runs
3. Protected handler, returning a HandlerOutcome
4. Usage charge, only when a charge was queued and the handler succeeded

The charge runs after the response is built (FastAPI background task, or a
detached asyncio task when no BackgroundTasks is available) with its own
timeout. A failed charge is logged and never changes the response.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from fastapi import BackgroundTasks
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from tierguard.core.errors import AuthenticationRequiredError, InvalidActionError
from tierguard.core.logging import get_request_id
from tierguard.features.monetization.mapping import (
    Action,
    Feature,
    UsageField,
    get_usage_field_for_action,
    get_usage_field_for_feature,
    parse_action,
    parse_feature,
)
from tierguard.features.monetization.policy import PolicyEngine, PolicyResult
from tierguard.features.usage.service import UsageStore

logger = logging.getLogger(__name__)

DEFAULT_CHARGE_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class MeteredFeature:
    """Pipeline configuration for one protected endpoint."""
    feature_id: str
    action: Optional[str] = None
    increment_usage: bool = True
    annotate_response: bool = False


# Ready-made configurations for the catalog's features
PRESETS: Dict[str, MeteredFeature] = {
    "video_generation": MeteredFeature(Feature.VIDEO_GENERATION.value, Action.VIDEO_GENERATION.value),
    "source_video_upload": MeteredFeature(Feature.SOURCE_VIDEOS.value, Action.SOURCE_VIDEO_UPLOAD.value),
    "voice_clone": MeteredFeature(Feature.VOICE_CLONE.value, Action.VOICE_CLONE.value),
    "account_analysis": MeteredFeature(Feature.ACCOUNT_ANALYSIS.value, Action.ACCOUNT_ANALYSIS.value),
    "script_generation": MeteredFeature(Feature.SCRIPT_GENERATION.value, Action.SCRIPT_CONVERSATIONS.value),
    "script_conversations": MeteredFeature(Feature.SCRIPT_CONVERSATIONS.value, Action.SCRIPT_CONVERSATIONS.value),
    "chat_ai": MeteredFeature(Feature.CHAT_AI.value, increment_usage=False),
}


class LifecycleState(str, Enum):
    UNCHECKED = "unchecked"
    ALLOWED = "allowed"
    DENIED = "denied"
    HANDLER_SUCCEEDED = "handler_succeeded"
    HANDLER_FAILED = "handler_failed"
    CHARGED = "charged"
    CHARGE_FAILED = "charge_failed"


_TRANSITIONS = {
    LifecycleState.UNCHECKED: {LifecycleState.ALLOWED, LifecycleState.DENIED},
    LifecycleState.ALLOWED: {LifecycleState.HANDLER_SUCCEEDED, LifecycleState.HANDLER_FAILED},
    LifecycleState.HANDLER_SUCCEEDED: {LifecycleState.CHARGED, LifecycleState.CHARGE_FAILED},
}


@dataclass(frozen=True)
class HandlerOutcome:
    status_code: int = 200
    payload: Any = None

    @property
    def succeeded(self) -> bool:
        if self.status_code >= 400:
            return False
        if isinstance(self.payload, dict) and self.payload.get("success") is False:
            return False
        return True


@dataclass
class PipelineRun:
    """Per-request state threaded through the stages."""
    user_id: Optional[str]
    feature: MeteredFeature
    request_id: Optional[str] = None
    state: LifecycleState = LifecycleState.UNCHECKED
    result: Optional[PolicyResult] = None
    pending_charge: Optional[UsageField] = None
    outcome: Optional[HandlerOutcome] = None
    history: list = field(default_factory=list)

    def transition(self, new_state: LifecycleState) -> None:
        allowed = _TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise RuntimeError(f"Invalid pipeline transition {self.state.value} -> {new_state.value}")
        self.history.append(self.state)
        self.state = new_state


Handler = Callable[[PipelineRun], Awaitable[HandlerOutcome]]


class RequestPipeline:
    def __init__(
        self,
        engine: PolicyEngine,
        usage_store: UsageStore,
        *,
        charge_timeout_seconds: float = DEFAULT_CHARGE_TIMEOUT_SECONDS,
        headers_enabled: bool = True,
    ):
        self._engine = engine
        self._usage_store = usage_store
        self._charge_timeout = charge_timeout_seconds
        self._headers_enabled = headers_enabled
        self._detached: Set[asyncio.Task] = set()

    async def authorize(self, user_id: Optional[str], feature: MeteredFeature) -> PipelineRun:
        """
        Run the authentication and policy stages.

        Raises:
            AuthenticationRequiredError: No user id
            InvalidActionError: The configured action is unknown or meters a
                different usage field than the feature is gated on
            MonetizationError: The policy denied the request
        """
        request_id = get_request_id()
        run = PipelineRun(user_id=user_id, feature=feature, request_id=request_id)

        if not user_id:
            run.transition(LifecycleState.DENIED)
            raise AuthenticationRequiredError("User not authenticated", request_id=request_id)

        action = None
        if feature.action is not None:
            action = parse_action(feature.action)
            if action is None:
                run.transition(LifecycleState.DENIED)
                raise InvalidActionError(f"Invalid action: {feature.action}", request_id=request_id)
            gated = parse_feature(feature.feature_id)
            if gated is not None and get_usage_field_for_action(action) != get_usage_field_for_feature(gated):
                run.transition(LifecycleState.DENIED)
                logger.warning(
                    "[pipeline] action does not match feature quota",
                    extra={"feature_id": feature.feature_id, "action": action.value},
                )
                raise InvalidActionError(
                    f"Action {action.value} does not meter feature {feature.feature_id}",
                    request_id=request_id,
                )

        result = await run_in_threadpool(self._engine.evaluate, user_id, feature.feature_id)
        run.result = result
        if not result.allowed:
            run.transition(LifecycleState.DENIED)
            logger.info(
                "[pipeline] denied",
                extra={
                    "user_id": user_id,
                    "feature_id": feature.feature_id,
                    "error_code": result.error_kind.value,
                },
            )
            raise result.to_error(request_id)

        run.transition(LifecycleState.ALLOWED)
        if feature.increment_usage and action is not None:
            run.pending_charge = get_usage_field_for_action(action)
        return run

    async def execute(
        self,
        user_id: Optional[str],
        feature: MeteredFeature,
        handler: Handler,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> JSONResponse:
        """Run all four stages and return the handler's response."""
        run = await self.authorize(user_id, feature)

        try:
            outcome = await handler(run)
        except Exception:
            run.transition(LifecycleState.HANDLER_FAILED)
            raise

        run.outcome = outcome
        if not outcome.succeeded:
            run.transition(LifecycleState.HANDLER_FAILED)
            logger.info(
                "[pipeline] handler failed, no charge",
                extra={"user_id": user_id, "feature_id": feature.feature_id, "status": outcome.status_code},
            )
            return JSONResponse(status_code=outcome.status_code, content=outcome.payload)

        run.transition(LifecycleState.HANDLER_SUCCEEDED)
        if run.pending_charge is not None:
            self.schedule_charge(run, background_tasks)

        payload = outcome.payload
        if feature.annotate_response:
            payload = self.annotate(payload, run)
        response = JSONResponse(status_code=outcome.status_code, content=payload)
        if self._headers_enabled:
            response.headers.update(self.monetization_headers(run))
        return response

    def schedule_charge(self, run: PipelineRun, background_tasks: Optional[BackgroundTasks] = None) -> None:
        if background_tasks is not None:
            background_tasks.add_task(self.charge, run)
            return

        self._track(asyncio.create_task(self.charge(run)))

    async def charge(self, run: PipelineRun) -> bool:
        """Increment the queued usage field. Never raises.

        A timeout stops waiting but cannot stop the worker thread, so the
        increment may still commit afterwards. Its late result is logged.
        """
        extra = {
            "user_id": run.user_id,
            "feature_id": run.feature.feature_id,
            "usage_field": run.pending_charge.value if run.pending_charge else None,
            "request_id": run.request_id,
        }
        increment = asyncio.ensure_future(
            run_in_threadpool(self._usage_store.increment, run.user_id, run.pending_charge)
        )
        try:
            charged = await asyncio.wait_for(asyncio.shield(increment), timeout=self._charge_timeout)
        except asyncio.TimeoutError:
            logger.error("[pipeline] charge timed out, increment may still commit", extra=extra)
            self._track(increment)
            increment.add_done_callback(lambda task: self._log_late_charge(task, extra))
            charged = False
        except Exception:
            logger.error("[pipeline] charge raised", exc_info=True, extra=extra)
            charged = False

        if charged:
            run.transition(LifecycleState.CHARGED)
            logger.info("[pipeline] charged", extra=extra)
        else:
            run.transition(LifecycleState.CHARGE_FAILED)
            logger.error("[pipeline] charge failed", extra=extra)
        return charged

    @staticmethod
    def _log_late_charge(task: "asyncio.Future", extra: Dict[str, Any]) -> None:
        if task.cancelled():
            logger.warning("[pipeline] late charge cancelled", extra=extra)
        elif task.exception() is not None:
            logger.error("[pipeline] late charge raised", exc_info=task.exception(), extra=extra)
        else:
            logger.warning("[pipeline] late charge finished", extra={**extra, "charged": bool(task.result())})

    def _track(self, task: "asyncio.Future") -> None:
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)

    async def drain(self) -> None:
        """Wait for detached charge tasks (shutdown and tests)."""
        if self._detached:
            await asyncio.gather(*list(self._detached), return_exceptions=True)

    @staticmethod
    def monetization_headers(run: PipelineRun) -> Dict[str, str]:
        result = run.result
        if result is None:
            return {}
        return {
            "X-Monetization-Has-Access": "true" if result.has_plan_access else "false",
            "X-Monetization-Current-Plan": result.current_plan.value if result.current_plan else "",
            "X-Monetization-Remaining": str(result.remaining),
            "X-Monetization-Limit": str(result.limit),
            "X-Monetization-Feature-Id": result.feature_id,
        }

    @staticmethod
    def annotate(payload: Any, run: PipelineRun) -> Any:
        """Add remainingUsage/totalLimit to dict payloads; others pass through."""
        if not isinstance(payload, dict) or run.result is None:
            return payload
        annotated = dict(payload)
        annotated["remainingUsage"] = run.result.remaining
        annotated["totalLimit"] = run.result.limit
        return annotated
