from datetime import datetime
from typing import Optional, Dict, Any


class ClearStackException(Exception):
    """Base exception for all ClearStack errors."""

    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class ConfigurationError(ClearStackException):
    """Raised when application configuration is invalid or missing."""

    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)


class ResourceNotFoundError(ClearStackException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, code: str = "not_found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=404, details=details)


class ConflictError(ClearStackException):
    """Raised when a request conflicts with existing state."""

    def __init__(self, message: str, code: str = "conflict", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=409, details=details)


class ErasureAlreadyRequestedError(ConflictError):
    """A PENDING erasure request already exists for the subject."""

    def __init__(self, purge_after: datetime):
        super().__init__(
            "An erasure request is already pending",
            code="DELETION_ALREADY_REQUESTED",
            details={"purge_after": purge_after.isoformat()},
        )
        self.purge_after = purge_after


class ErasureRequestNotFoundError(ResourceNotFoundError):
    """No PENDING erasure request exists for the subject."""

    def __init__(self) -> None:
        super().__init__(
            "No pending erasure request", code="NO_DELETION_REQUEST"
        )
