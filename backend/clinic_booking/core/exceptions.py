# backend/clinic_booking/core/exceptions.py
"""
Domain-specific exceptions for the clinic booking core.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
Business failures (slot conflicts, invalid transitions) are typed so
callers can render specific guidance; infrastructure failures are
transient and retried before they surface.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when the caller is not identified."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Raised when the caller may not act on a resource."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class SlotConflictException(ConflictException):
    """Raised when a slot already holds an active booking."""

    def __init__(
        self,
        resource_key: str,
        booking_date: Any,
        time_slot: Any,
        message: Optional[str] = None,
    ) -> None:
        self.resource_key = resource_key
        self.booking_date = booking_date
        self.time_slot = time_slot
        super().__init__(
            message=message or "This time slot is no longer available",
            code="SLOT_CONFLICT",
            details={
                "resource_key": resource_key,
                "booking_date": str(booking_date),
                "time_slot": str(time_slot),
            },
        )


class InvalidTransitionException(BusinessRuleException):
    """Raised when a lifecycle change is not allowed from the current state."""

    def __init__(
        self,
        booking_id: str,
        action: str,
        booking_status: str,
        checkin_status: str,
        message: Optional[str] = None,
    ) -> None:
        self.booking_id = booking_id
        self.action = action
        super().__init__(
            message=message
            or f"Cannot {action} a booking that is {booking_status}/{checkin_status}",
            code="INVALID_TRANSITION",
            details={
                "booking_id": booking_id,
                "action": action,
                "booking_status": booking_status,
                "checkin_status": checkin_status,
            },
        )


class TokenInvalidException(DomainException):
    """
    Raised when a check-in token cannot be trusted.

    Carries only a reason code; the token text itself is never attached so it
    cannot leak into logs.
    """

    status_code = HTTP_422_UNPROCESSABLE

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(
            message="Check-in code is invalid or expired; use manual lookup",
            code="TOKEN_INVALID",
            details={"reason": reason},
        )


class InfrastructureException(DomainException):
    """Raised when the store or another backing service is unavailable."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code or "INFRASTRUCTURE_UNAVAILABLE",
                "details": self.details,
            },
            headers={"Retry-After": "2"},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail for reasons
    other than a transient outage, such as malformed queries.
    """


@dataclass(frozen=True)
class ReconciliationFailure:
    """One booking the no-show sweep could not transition."""

    booking_id: str
    error_type: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "booking_id": self.booking_id,
            "error_type": self.error_type,
            "message": self.message,
        }
