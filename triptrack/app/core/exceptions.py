"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("triptrack.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class InvalidTopologyError(AppException):
    """
    Raised when a route, stop sequence or trip template is unusable.

    Fatal to a scheduling batch: nothing is persisted.
    """

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_TOPOLOGY_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class StopNotEligibleError(AppException):
    """Raised when a booked stop is not part of the trip's effective stops for its role."""

    def __init__(self, stop_id: int, role: str, trip_id: int):
        super().__init__(
            message=f"Stop {stop_id} is not an eligible {role} stop for trip {trip_id}",
            error_code="ERR_BOOKING_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"stop_id": stop_id, "role": role, "trip_id": trip_id}
        )


class TripNotBookableError(AppException):
    """Raised when a trip is inactive or already in the past."""

    def __init__(self, trip_id: int, reason: str):
        super().__init__(
            message=f"Trip {trip_id} cannot be booked: {reason}",
            error_code="ERR_BOOKING_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"trip_id": trip_id, "reason": reason}
        )


class BookingLockedError(AppException):
    """Raised when a passenger tries to change a booking confirmed by staff."""

    def __init__(self, request_id: int):
        super().__init__(
            message="Booking has been confirmed and can no longer be changed by the passenger",
            error_code="ERR_BOOKING_003",
            status_code=status.HTTP_409_CONFLICT,
            details={"request_id": request_id}
        )


class InvalidStatusTransitionError(AppException):
    """Raised when a trip or booking status would move backwards."""

    def __init__(self, resource: str, current: str, requested: str):
        super().__init__(
            message=f"{resource} cannot move from {current} to {requested}",
            error_code="ERR_STATUS_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"resource": resource, "current": current, "requested": requested}
        )


class ShareTokenExpiredError(AppException):
    """Raised when a share token is past its absolute expiry."""

    def __init__(self):
        super().__init__(
            message="Share link has expired",
            error_code="ERR_SHARE_001",
            status_code=status.HTTP_410_GONE
        )


class ShareTokenNotFoundError(AppException):
    """Raised when a share token does not resolve."""

    def __init__(self):
        super().__init__(
            message="Share link not found",
            error_code="ERR_SHARE_002",
            status_code=status.HTTP_404_NOT_FOUND
        )


class RoutingUnavailableError(Exception):
    """
    Directions provider failed or is not configured.

    Soft failure: absorbed by the ETA engine, never rendered as an HTTP error.
    """


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        410: "ERR_GONE",
        422: "ERR_VALIDATION",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


def jsonable_errors(exc: RequestValidationError):
    """Drop non-serializable context (e.g. exception instances) from pydantic errors."""
    errors = []
    for error in exc.errors():
        cleaned = {key: value for key, value in error.items() if key != "ctx"}
        if "ctx" in error:
            cleaned["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(cleaned)
    return errors


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
