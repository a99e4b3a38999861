from fastapi import HTTPException, status
from typing import Any, Dict, Optional

class PlatformException(HTTPException):
    """Base exception for the investment platform API."""
    def __init__(
        self,
        status_code: int,
        detail: Any = None,
        headers: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class AuthenticationError(PlatformException):
    """Authentication failed."""
    def __init__(self, detail: str = "Authentication failed"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class AuthorizationError(PlatformException):
    """Authorization failed."""
    def __init__(self, detail: str = "Not enough permissions"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )

class NotFoundError(PlatformException):
    """Resource not found."""
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail
        )

class ValidationError(PlatformException):
    """Missing or malformed input."""
    def __init__(self, detail: str = "Validation failed"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )

class DuplicateError(PlatformException):
    """A unique field is already taken."""
    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )

class ConflictError(PlatformException):
    """Business rule or state conflict."""
    def __init__(self, detail: str = "Request conflicts with current state"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )

class InsufficientFundsError(ConflictError):
    """Balance does not cover the requested amount."""
    def __init__(self, detail: str = "Insufficient balance"):
        super().__init__(detail=detail)

class RateLimitError(ConflictError):
    """Per-period limit (monthly purchase, daily withdrawal) reached."""
    def __init__(self, detail: str = "Limit reached for this period"):
        super().__init__(detail=detail)

class LockAcquisitionError(PlatformException):
    """Balance lock could not be acquired in time."""
    def __init__(self, detail: str = "Could not acquire balance lock"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail
        )
