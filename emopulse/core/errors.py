"""
Custom exception hierarchy for emopulse.

Rule: every error has a machine-readable `code` string so clients (and the
worker's failure routing) can branch on it without parsing English messages.

Taxonomy
--------
AuthenticationFailedError   → 401, nothing enqueued, never retried
MalformedEventError         → 400 at the gateway
PermanentProcessingError    → worker dead-letters without retry
TransientDependencyError    → worker releases for redelivery, then dead-letters
AlertSendError              → logged by the worker, never propagated
JobFailedError              → scheduled run recorded as failed, not retried
"""
from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class EmoPulseException(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class AuthenticationFailedError(EmoPulseException):
    http_status = status.HTTP_401_UNAUTHORIZED
    code = "AUTHENTICATION_FAILED"

    def __init__(self, reason: str = "verification token missing or invalid"):
        super().__init__(message=f"Request rejected: {reason}.")


class MalformedEventError(EmoPulseException):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "MALFORMED_EVENT"

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(
            message=message,
            details={"errors": errors} if errors else {},
        )


class PermanentProcessingError(EmoPulseException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "PERMANENT_PROCESSING_ERROR"


class TransientDependencyError(EmoPulseException):
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "DEPENDENCY_UNAVAILABLE"


class ClassifierError(TransientDependencyError):
    code = "CLASSIFIER_ERROR"


class StoreWriteError(TransientDependencyError):
    code = "STORE_WRITE_ERROR"

    def __init__(self, event_id: str, cause: str):
        super().__init__(
            message=f"Could not persist event {event_id}: {cause}",
            details={"event_id": event_id},
        )


class AlertSendError(EmoPulseException):
    http_status = status.HTTP_502_BAD_GATEWAY
    code = "ALERT_SEND_ERROR"


class ExportFormatError(EmoPulseException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "EXPORT_FORMAT_ERROR"

    def __init__(self, message: str, key: str):
        super().__init__(message=message, details={"key": key})


class JobFailedError(EmoPulseException):
    code = "JOB_FAILED"

    def __init__(self, job_name: str, run_key: str, cause: str):
        super().__init__(
            message=f"Job {job_name} [{run_key}] failed: {cause}",
            details={"job_name": job_name, "run_key": run_key},
        )


class EventNotFoundError(EmoPulseException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "EVENT_NOT_FOUND"

    def __init__(self, event_id: str):
        super().__init__(
            message=f"No stored record with event id {event_id}.",
            details={"event_id": event_id},
        )


class DeadLetterNotFoundError(EmoPulseException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "DEAD_LETTER_NOT_FOUND"

    def __init__(self, message_id: int):
        super().__init__(
            message=f"No dead-lettered message with id {message_id}.",
            details={"message_id": message_id},
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def emopulse_exception_handler(request: Request, exc: EmoPulseException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured 422 with machine-readable field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )
