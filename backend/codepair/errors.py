"""
Error taxonomy for the interview backend.

Services raise these; the FastAPI handler registered in ``main`` renders
them as ``{"error": ..., "details": ...}`` with the carried status code.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger("codepair.errors")


class CodePairError(Exception):
    """Base exception for all service errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class UnauthenticatedError(CodePairError):
    """No caller identity was supplied."""

    def __init__(self, message: str = "User is not authenticated"):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED)


class UnauthorizedError(CodePairError):
    """The caller lacks the role or relationship the operation requires."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_403_FORBIDDEN, details)


class NotFoundError(CodePairError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, resource_id: str):
        message = f"{resource} not found: {resource_id}"
        super().__init__(message, status.HTTP_404_NOT_FOUND, {"resource": resource, "id": resource_id})
        self.resource = resource
        self.resource_id = resource_id


class ValidationError(CodePairError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, {"field": field} if field else None)
        self.field = field


class ConflictError(CodePairError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_409_CONFLICT, details)


class InvalidTransitionError(ConflictError):
    """A status change that would move a session backwards."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot transition session from {current} to {requested}",
            {"current": current, "requested": requested},
        )
        self.current = current
        self.requested = requested


class StaleStatusError(ConflictError):
    """The session's status changed between read and patch."""

    def __init__(self, expected: str, actual: str):
        super().__init__(
            f"Session status is {actual}, expected {expected}",
            {"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class TransientPublishFailure(CodePairError):
    """Canonical state patch failed to commit (network or backend error)."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.cause = cause


async def codepair_exception_handler(request: Request, exc: CodePairError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("request failed | path=%s err=%s", request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "details": exc.details,
        },
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(CodePairError, codepair_exception_handler)
