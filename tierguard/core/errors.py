"""Error normalization and handlers."""

import logging
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from starlette.exceptions import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from tierguard.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class AdminAuthError(AppError):
    code = "forbidden"
    status_code = 403


class ErrorKind(str, Enum):
    """Monetization error taxonomy exposed to API clients."""
    INVALID_FEATURE_ID = "INVALID_FEATURE_ID"
    INVALID_ACTION = "INVALID_ACTION"
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    FEATURE_ACCESS_DENIED = "FEATURE_ACCESS_DENIED"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
    PLAN_UPGRADE_REQUIRED = "PLAN_UPGRADE_REQUIRED"
    MONETIZATION_SERVICE_ERROR = "MONETIZATION_SERVICE_ERROR"


ERROR_KIND_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.INVALID_FEATURE_ID: 400,
    ErrorKind.INVALID_ACTION: 400,
    ErrorKind.AUTHENTICATION_REQUIRED: 401,
    ErrorKind.FEATURE_ACCESS_DENIED: 403,
    ErrorKind.USAGE_LIMIT_REACHED: 403,
    ErrorKind.PLAN_UPGRADE_REQUIRED: 403,
    ErrorKind.MONETIZATION_SERVICE_ERROR: 500,
}


class MonetizationError(AppError):
    """Denial raised by the request pipeline.

    Carries the error kind plus the client-facing ``details`` and ``upgrade``
    blocks of the denial contract.
    """
    kind = ErrorKind.MONETIZATION_SERVICE_ERROR

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        upgrade: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(
            message,
            code=self.kind.value,
            status_code=ERROR_KIND_STATUS[self.kind],
            request_id=request_id,
        )
        self.details = details
        self.upgrade = upgrade

    def to_payload(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.kind.value,
            "request_id": request_id or self.request_id,
        }
        if self.details:
            payload["details"] = self.details
        if self.upgrade:
            payload["upgrade"] = self.upgrade
        return payload


class InvalidFeatureError(MonetizationError, ValueError):
    kind = ErrorKind.INVALID_FEATURE_ID


class InvalidActionError(MonetizationError, ValueError):
    kind = ErrorKind.INVALID_ACTION


class AuthenticationRequiredError(MonetizationError):
    kind = ErrorKind.AUTHENTICATION_REQUIRED


class FeatureAccessDeniedError(MonetizationError):
    kind = ErrorKind.FEATURE_ACCESS_DENIED


class UsageLimitReachedError(MonetizationError):
    kind = ErrorKind.USAGE_LIMIT_REACHED


class MonetizationServiceError(MonetizationError):
    """Backing store or cache fault. Never leaks internal detail to clients."""
    kind = ErrorKind.MONETIZATION_SERVICE_ERROR

    PUBLIC_MESSAGE = "Monetization service unavailable"

    def to_payload(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.PUBLIC_MESSAGE,
            "code": self.kind.value,
            "request_id": request_id or self.request_id,
        }


MONETIZATION_ERRORS: Dict[ErrorKind, type] = {
    ErrorKind.INVALID_FEATURE_ID: InvalidFeatureError,
    ErrorKind.INVALID_ACTION: InvalidActionError,
    ErrorKind.AUTHENTICATION_REQUIRED: AuthenticationRequiredError,
    ErrorKind.FEATURE_ACCESS_DENIED: FeatureAccessDeniedError,
    ErrorKind.USAGE_LIMIT_REACHED: UsageLimitReachedError,
    ErrorKind.MONETIZATION_SERVICE_ERROR: MonetizationServiceError,
}


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def monetization_error_handler(request: Request, exc: MonetizationError):
    rid = exc.request_id or _extract_request_id(request)
    logger = logging.getLogger("tierguard")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "monetization.denied",
        extra={"request_id": rid, "error_code": exc.code, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=exc.to_payload(rid))
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid)
    logger = logging.getLogger("tierguard")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("tierguard")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("tierguard")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
