# backend/classpay/core/exceptions.py
"""
Domain-specific exceptions for ClassPay.

Every exception carries a machine-readable code and a ``retryable`` flag so
callers can tell a transient processor failure (try again later) from a
terminal one (operator action or a different request is needed).
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False

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
                "retryable": self.retryable,
            },
        )


class ValidationException(DomainException):
    """Raised when input fails business validation (bad amount, unknown method)."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class PreconditionFailedException(ConflictException):
    """Raised when a state-machine guard rejects the requested transition."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code or "PRECONDITION_FAILED", details=details)


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
                "retryable": self.retryable,
            },
        )


class ExternalServiceException(ServiceException):
    """The payment processor was unreachable, timed out or rejected the call."""

    status_code = status.HTTP_502_BAD_GATEWAY
    retryable = True


class ExternalConfirmationMismatchException(ExternalServiceException):
    """The processor reported a charge status other than ``succeeded``."""

    def __init__(self, reported_status: Optional[str], *, payment_id: Optional[str] = None):
        self.reported_status = reported_status
        super().__init__(
            message=f"Payment intent status: {reported_status}",
            code="EXTERNAL_CONFIRMATION_MISMATCH",
            details={"reported_status": reported_status, "payment_id": payment_id},
        )


class ConfigurationException(ServiceException):
    """Missing payout destination or credentials; needs operator action."""

    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code or "CONFIGURATION_ERROR", details=details)


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
