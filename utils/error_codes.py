"""
Standard error code taxonomy for connect and publish outcomes
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes"""

    # Setup
    CONFIGURATION = "CONFIGURATION"
    VALIDATION = "VALIDATION"

    # Credentials
    AUTH_TOKEN_EXPIRED = "AUTH_TOKEN_EXPIRED"
    AUTH_TOKEN_REVOKED = "AUTH_TOKEN_REVOKED"
    INVALID_STATE = "INVALID_STATE"

    # Provider behaviour
    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT = "TRANSIENT"
    PROVIDER_REJECTED = "PROVIDER_REJECTED"
    PROCESSING_TIMEOUT = "PROCESSING_TIMEOUT"
    UNSUPPORTED = "UNSUPPORTED"

    # Resources
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    INVALID_MEDIA = "INVALID_MEDIA"

    # System
    INTERNAL = "INTERNAL"


ERROR_MESSAGES = {
    ErrorCode.CONFIGURATION: "Provider is not configured",
    ErrorCode.VALIDATION: "Request validation failed",

    ErrorCode.AUTH_TOKEN_EXPIRED: "Access token has expired, reconnect the account",
    ErrorCode.AUTH_TOKEN_REVOKED: "Access was revoked, reconnect the account",
    ErrorCode.INVALID_STATE: "OAuth state verification failed",

    ErrorCode.RATE_LIMITED: "Provider rate limit exceeded, try again later",
    ErrorCode.TRANSIENT: "Provider is temporarily unavailable",
    ErrorCode.PROVIDER_REJECTED: "Provider rejected the request",
    ErrorCode.PROCESSING_TIMEOUT: "Media was not ready for publishing in time",
    ErrorCode.UNSUPPORTED: "Operation is not supported for this provider",

    ErrorCode.ACCOUNT_NOT_FOUND: "Connected account was not found",
    ErrorCode.STORAGE_UNAVAILABLE: "Media storage is unavailable",
    ErrorCode.INVALID_MEDIA: "Media data is invalid",

    ErrorCode.INTERNAL: "Unexpected error while publishing",
}

# Codes the caller may retry later without changing anything
RETRYABLE_CODES = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.TRANSIENT,
    ErrorCode.STORAGE_UNAVAILABLE,
})


def default_message(code: ErrorCode) -> str:
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[ErrorCode.INTERNAL])
