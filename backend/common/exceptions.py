"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

BASE_ERROR_URI = "https://leave.example.com/errors"

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        self.details = details
        super().__init__(detail)

    @property
    def message(self) -> str:
        return self.detail


class NotFoundException(AppException):
    """404: entity not found, or not visible from the caller's organization."""

    def __init__(self, entity_type: str, entity_id: Any = None, *, detail: Optional[str] = None) -> None:
        if detail is None:
            detail = (
                f"{entity_type} with id '{entity_id}' does not exist."
                if entity_id is not None
                else f"{entity_type} not found."
            )
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=detail,
        )


class ConflictError(AppException):
    """409: unique-constraint / duplicate."""

    def __init__(self, field: str, value: Any, *, detail: Optional[str] = None) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=detail or f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
        )


class ForbiddenException(AppException):
    """403: insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422: business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


class InvalidDateRangeException(AppException):
    """400: start date in the past, or end date before start date."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=400,
            error_type="invalid-date-range",
            title="Invalid Date Range",
            detail=detail,
        )


class InvalidStateException(AppException):
    """409: the entity's current state does not permit the operation."""

    def __init__(self, detail: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            status_code=409,
            error_type="invalid-state",
            title="Invalid State",
            detail=detail,
            details=details,
        )


class InsufficientBalanceException(AppException):
    """422: requested days exceed the available balance."""

    def __init__(self, available: int, requested: int, *, has_balance_record: bool = True) -> None:
        if has_balance_record:
            detail = (
                f"Insufficient leave balance. Available: {available} days, "
                f"Requested: {requested} days"
            )
        else:
            detail = "No leave balance has been allocated for this leave type this year."
        super().__init__(
            status_code=422,
            error_type="insufficient-balance",
            title="Insufficient Balance",
            detail=detail,
            details={
                "available": available,
                "requested": requested,
                "shortage": requested - available,
                "has_balance_record": has_balance_record,
            },
        )


class OverlappingRequestException(AppException):
    """409: the range overlaps a pending or approved request."""

    def __init__(self, overlapping: list[dict[str, Any]]) -> None:
        super().__init__(
            status_code=409,
            error_type="overlapping-request",
            title="Overlapping Leave Request",
            detail="You have overlapping leave requests for the selected dates",
            details={"count": len(overlapping), "overlapping_requests": overlapping},
        )


class InternalServerException(AppException):
    """500: persistence or other unexpected failure, already logged."""

    def __init__(self, detail: str = "An unexpected error occurred.") -> None:
        super().__init__(
            status_code=500,
            error_type="internal-error",
            title="Internal Server Error",
            detail=detail,
        )


# ── Persistence error wrapping ──────────────────────────────────────

def wrap_persistence_errors(
    failure_message: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorate an async service operation so that SQLAlchemy failures are
    logged with context and surfaced as ``InternalServerException``.

    Application exceptions pass through untouched.
    """

    def _decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def _wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except SQLAlchemyError:
                logger.exception("%s (operation=%s)", failure_message, func.__qualname__)
                raise InternalServerException(failure_message)

        return _wrapper

    return _decorator


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    if exc.details:
        body["details"] = exc.details
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
