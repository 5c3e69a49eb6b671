"""Classification of Meta Graph API failures into the app's error codes."""

from pydantic import BaseModel

from app.utils.errors import ErrorCode

RATE_LIMIT_CODES = {4, 17, 32, 613}


class ClassifiedError(BaseModel):
    code: ErrorCode
    category: str  # authentication, authorization, rate_limit, business_logic, validation, server, network
    recoverable: bool = True


ERROR_MESSAGES = {
    ErrorCode.VALIDATION_ERROR: {
        "title": "Validation Error",
        "user_message": "Some required fields are missing or invalid. Please review your ad details and try again.",
        "suggested_action": "Edit your ad to fix validation issues, then republish.",
    },
    ErrorCode.POLICY_VIOLATION: {
        "title": "Policy Violation",
        "user_message": (
            "Your ad doesn't meet Meta's advertising policies. This could be due to prohibited "
            "content, restricted products, or other policy issues."
        ),
        "suggested_action": "Review Meta's advertising policies, edit your ad to comply, then resubmit for review.",
    },
    ErrorCode.PAYMENT_REQUIRED: {
        "title": "Payment Method Required",
        "user_message": "A valid payment method is required to publish ads. Please add a payment method to your ad account.",
        "suggested_action": "Add a payment method in Meta Business Settings, then retry publishing.",
    },
    ErrorCode.TOKEN_EXPIRED: {
        "title": "Connection Expired",
        "user_message": "Your Facebook connection has expired or been revoked. Please reconnect your account.",
        "suggested_action": "Reconnect Meta in settings to authorize access again, then retry publishing.",
    },
    ErrorCode.API_ERROR: {
        "title": "API Error",
        "user_message": "Meta's advertising API encountered an error. This is usually temporary.",
        "suggested_action": "Wait a few minutes and try again. If the problem persists, contact support.",
    },
    ErrorCode.NETWORK_ERROR: {
        "title": "Network Error",
        "user_message": "Unable to reach Meta's servers.",
        "suggested_action": "Try again in a moment. If the problem persists, contact support.",
    },
    ErrorCode.INTERNAL_ERROR: {
        "title": "Unknown Error",
        "user_message": "An unexpected error occurred while publishing your ad.",
        "suggested_action": "Please try again. If the problem persists, contact support with the error details.",
    },
}


def classify_meta_error(code: int | str | None, message: str | None) -> ClassifiedError:
    """Map a Graph API ``error.code`` (and message as a last resort) to an error code."""
    try:
        numeric = int(code) if code is not None else None
    except (TypeError, ValueError):
        numeric = None

    if numeric is not None:
        if numeric == 100 or 80000 <= numeric < 81000:
            return ClassifiedError(code=ErrorCode.VALIDATION_ERROR, category="validation")
        if 100 < numeric < 200:
            return ClassifiedError(code=ErrorCode.TOKEN_EXPIRED, category="authentication")
        if 200 <= numeric < 300:
            return ClassifiedError(code=ErrorCode.POLICY_VIOLATION, category="authorization")
        if numeric in RATE_LIMIT_CODES:
            return ClassifiedError(code=ErrorCode.API_ERROR, category="rate_limit")
        if 2650 <= numeric < 2700:
            return ClassifiedError(code=ErrorCode.PAYMENT_REQUIRED, category="business_logic")
        if 1487000 <= numeric < 1488000:
            return ClassifiedError(code=ErrorCode.POLICY_VIOLATION, category="business_logic")
        if numeric in (1, 2) or numeric >= 500:
            return ClassifiedError(code=ErrorCode.API_ERROR, category="server")

    text = (message or "").lower()
    if "token" in text:
        return ClassifiedError(code=ErrorCode.TOKEN_EXPIRED, category="authentication")
    if "payment" in text:
        return ClassifiedError(code=ErrorCode.PAYMENT_REQUIRED, category="business_logic")
    if "policy" in text or "violat" in text:
        return ClassifiedError(code=ErrorCode.POLICY_VIOLATION, category="business_logic")
    return ClassifiedError(code=ErrorCode.API_ERROR, category="server")


def user_facing(code: ErrorCode) -> dict:
    """``{"title", "user_message", "suggested_action"}`` for an error code."""
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[ErrorCode.INTERNAL_ERROR])
