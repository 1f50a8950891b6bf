# clubspace/core/exceptions.py
"""
Domain-specific exceptions for the ClubSpace messaging client.

Every gateway failure surfaces to the initiating action as one of these.
The HTTP surface converts them with ``to_http_exception``; the messaging
client converts them into dismissible notices.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


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

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class ValidationException(DomainException):
    """Raised when input validation fails (e.g. empty send with no attachment)."""

    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedException(DomainException):
    """Raised when there is no session or the backend rejects access."""

    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundException(DomainException):
    """Raised when an entity id no longer resolves."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class NetworkFailureException(DomainException):
    """Raised for transient I/O failures talking to the backend or CDN."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ServiceException(DomainException):
    """Raised when a backend operation fails for a non-transient reason."""

    def to_http_exception(self) -> HTTPException:
        detail = self.to_dict()
        detail["message"] = self.message or "An error occurred processing your request"
        return HTTPException(status_code=self.status_code, detail=detail)


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as query failures
    or constraint violations.
    """


class DuplicateRowException(RepositoryException):
    """Raised when an insert violates a unique constraint."""
