from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class PaymentRequiredError(AppError):
    """Held usage exceeds the confirmed balance; charging is blocked until topped up."""

    def __init__(self, message: str = "Payment required", details: dict[str, Any] | None = None):
        super().__init__(message, code="PAYMENT_REQUIRED", status_code=status.HTTP_402_PAYMENT_REQUIRED, details=details)


class QuotaExceeded(AppError):
    """The ledger refused a charge. Never retried."""

    def __init__(self, remaining: float, message: str | None = None):
        self.remaining = remaining
        super().__init__(
            message or f"Insufficient balance. Current balance: {remaining}",
            code="QUOTA_EXCEEDED",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details={"remaining": remaining},
        )


class ConfigurationError(AppError):
    """Missing collection id, pricing or similar. Fatal, never retried."""

    def __init__(self, message: str = "Configuration error", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFIGURATION_ERROR", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, details=details)


class TransientExternalError(AppError):
    """Network, chain or store failure; retried per policy."""

    def __init__(self, message: str = "External service unavailable", details: dict[str, Any] | None = None):
        super().__init__(message, code="EXTERNAL_UNAVAILABLE", status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


class SagaFailed(AppError):
    """A saga step failed permanently or ran out of attempts."""

    def __init__(self, thread_id: str, step: str, reason: str):
        self.thread_id = thread_id
        self.step = step
        super().__init__(
            f"Saga {thread_id} failed at step {step}: {reason}",
            code="SAGA_FAILED",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"thread_id": thread_id, "step": step},
        )


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": exc.errors()},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from metering.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
