"""Error taxonomy shared by every endpoint.

Each ``ApiError`` carries a stable machine code for the UI to branch on and a
human sentence for display. ``app.main`` renders them into the response
envelope ``{"success": false, "error": {"code", "message", "details"?}}``.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    TOKEN_EXPIRED = "token_expired"
    PAYMENT_REQUIRED = "payment_required"
    POLICY_VIOLATION = "policy_violation"
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"
    INTERNAL_ERROR = "internal_error"
    PUBLISH_FAILED = "publish_failed"
    ALREADY_PUBLISHED = "already_published"


class ApiError(Exception):
    status_code: int = 500
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"success": False, "error": error}


class UnauthorizedError(ApiError):
    status_code = 401
    code = ErrorCode.UNAUTHORIZED


class ForbiddenError(ApiError):
    status_code = 403
    code = ErrorCode.FORBIDDEN


class NotFoundError(ApiError):
    status_code = 404
    code = ErrorCode.NOT_FOUND


class ValidationFailedError(ApiError):
    status_code = 400
    code = ErrorCode.VALIDATION_ERROR


class ConflictError(ApiError):
    status_code = 409
    code = ErrorCode.CONFLICT


class RateLimitExceededError(ApiError):
    status_code = 429
    code = ErrorCode.RATE_LIMIT_EXCEEDED

    def __init__(self, retry_after: int):
        super().__init__(
            f"Too many requests. Try again in {retry_after} seconds",
            details={"retry_after": retry_after},
        )
        self.retry_after = retry_after


class PublishFailedError(ApiError):
    status_code = 502
    code = ErrorCode.PUBLISH_FAILED
