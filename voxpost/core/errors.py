"""Error taxonomy and normalized HTTP handlers."""

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from voxpost.core.logging import get_request_id


class AppError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id
        self.details = details or {}


class ValidationError(AppError, ValueError):
    code = "VALIDATION_ERROR"
    status_code = 400


class UploadError(ValidationError):
    code = "UPLOAD_ERROR"
    status_code = 400


class AuthenticationError(AppError):
    code = "UNAUTHORIZED"
    status_code = 401


class NotFoundError(AppError, LookupError):
    code = "NOT_FOUND"
    status_code = 404


class OrderNotFoundError(NotFoundError):
    """Raised when a payment flow references an order that was never created."""
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str, **kwargs):
        super().__init__(f"Payment order not found: {order_id}", **kwargs)
        self.order_id = order_id


class ConflictError(AppError):
    code = "CONFLICT"
    status_code = 409


class UsageLimitExceededError(AppError):
    """Business rule: the user has no recording minutes left."""
    code = "USAGE_LIMIT_EXCEEDED"
    status_code = 403


class SignatureInvalidError(AppError):
    code = "SIGNATURE_INVALID"
    status_code = 401


class GatewayError(AppError):
    """Payment gateway failure (non-2xx or transport error)."""
    code = "GATEWAY_ERROR"
    status_code = 502


class TranscriptionError(AppError):
    code = "TRANSCRIPTION_ERROR"
    status_code = 502


class PaymentsDisabledError(AppError):
    code = "PAYMENTS_DISABLED"
    status_code = 503


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str, details: Optional[Dict[str, Any]] = None) -> dict:
    error = {"code": code, "message": message, "request_id": request_id}
    if details:
        error.update(details)
    return {"error": error, "detail": message}


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid, exc.details)
    logger = logging.getLogger("voxpost")
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
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("voxpost")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    issues = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg")}
        for err in exc.errors()
    ]
    payload = _error_payload("VALIDATION_ERROR", "Invalid request data", rid, {"issues": issues})
    logging.getLogger("voxpost").warning(
        "request.invalid", extra={"request_id": rid, "error_code": "VALIDATION_ERROR", "status": 400}
    )
    response = JSONResponse(status_code=400, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("voxpost")
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "INTERNAL_ERROR"})
    payload = _error_payload("INTERNAL_ERROR", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
