"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        """Initialize exception with message, status code and optional details."""
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class ForbiddenException(AppException):
    """Actor is authenticated but its role may not perform the operation."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class InvalidTransitionException(AppException):
    """Session status does not allow the requested operation."""

    def __init__(
        self,
        message: str = "Invalid session status transition",
        current_status: str | None = None,
    ):
        """Initialize with 409 status code and the status that blocked the change."""
        details = {"current_status": current_status} if current_status else None
        super().__init__(message, status_code=409, details=details)
        self.current_status = current_status


class SlotConflictException(AppException):
    """Requested slot is already held by another non-cancelled session."""

    def __init__(
        self,
        message: str = "The requested time slot is no longer available",
        next_available: list[str] | None = None,
    ):
        """Initialize with 409 status code and suggested alternative slots."""
        self.next_available = next_available or []
        super().__init__(
            message,
            status_code=409,
            details={"next_available": self.next_available},
        )


class DeliveryException(AppException):
    """Notification delivery failed. Never fails a scheduling operation."""

    def __init__(self, message: str = "Notification delivery failed"):
        """Initialize with 502 status code."""
        super().__init__(message, status_code=502)


class ServiceUnavailableException(AppException):
    """Write contention exceeded the lock timeout. Safe to retry."""

    def __init__(self, message: str = "Scheduling is temporarily busy, please retry"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503, details={"retryable": True})


class PersistenceException(AppException):
    """Unexpected storage failure, distinct from business errors."""

    def __init__(self, message: str = "Scheduling storage is unavailable"):
        """Initialize with 500 status code."""
        super().__init__(message, status_code=500)
