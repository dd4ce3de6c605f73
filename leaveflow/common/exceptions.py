"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

BASE_ERROR_URI = "https://leaveflow.dev/errors"

logger = logging.getLogger(__name__)


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
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

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
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


class InsufficientBalanceError(AppException):
    """422 — requested days exceed what the ledger can reserve."""

    def __init__(
        self,
        *,
        remaining_days: int,
        available_days: int,
        requested_days: int,
    ) -> None:
        self.remaining_days = remaining_days
        self.available_days = available_days
        self.requested_days = requested_days
        super().__init__(
            status_code=422,
            error_type="insufficient-balance",
            title="Insufficient Leave Balance",
            detail=(
                f"You have {remaining_days} days remaining "
                f"({available_days} available after pending requests), "
                f"but requested {requested_days} days."
            ),
            errors={
                "remaining_days": remaining_days,
                "available_days": available_days,
                "requested_days": requested_days,
            },
        )


class InvalidTransitionError(AppException):
    """409 — action not permitted in the entity's current state."""

    def __init__(self, detail: str, *, current_status: Optional[str] = None) -> None:
        super().__init__(
            status_code=409,
            error_type="invalid-transition",
            title="Invalid Transition",
            detail=detail,
            errors={"status": [current_status]} if current_status else None,
        )


class InvalidAllocationError(AppException):
    """422 — admin allocation edit would leave the balance negative."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=422,
            error_type="invalid-allocation",
            title="Invalid Allocation",
            detail=detail,
        )


class ConcurrentModificationError(AppException):
    """409 — another writer holds or already changed this resource."""

    def __init__(self, resource: str) -> None:
        super().__init__(
            status_code=409,
            error_type="concurrent-modification",
            title="Concurrent Modification",
            detail=f"{resource} was modified concurrently. Re-read and retry.",
        )


class StorageError(AppException):
    """503 — infrastructure fault; safe to retry."""

    def __init__(self) -> None:
        super().__init__(
            status_code=503,
            error_type="storage-error",
            title="Storage Unavailable",
            detail="The request could not be completed. Please retry.",
        )


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


async def _handle_stale_data(
    request: Request,
    exc: StaleDataError,
) -> JSONResponse:
    logger.warning("Stale write on %s: %s", request.url.path, exc)
    return await _handle_app_exception(
        request, ConcurrentModificationError("The resource"),
    )


async def _handle_storage_error(
    request: Request,
    exc: SQLAlchemyError,
) -> JSONResponse:
    logger.error("Storage error on %s: %s", request.url.path, exc)
    return await _handle_app_exception(request, StorageError())


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
    app.add_exception_handler(StaleDataError, _handle_stale_data)           # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _handle_storage_error)       # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
