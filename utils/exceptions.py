"""
Centralized exception handling and custom exceptions
"""

from typing import Any, Dict, Optional
from fastapi import HTTPException, status

from utils.error_codes import ErrorCode, default_message


class SocialFlowException(Exception):
    """Base exception for the publishing pipeline"""

    error_code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(SocialFlowException):
    """Configuration or setup error"""
    error_code = ErrorCode.CONFIGURATION


class ValidationError(SocialFlowException):
    """Data validation error"""
    error_code = ErrorCode.VALIDATION


class CryptoError(SocialFlowException):
    """Token encryption/decryption error"""
    error_code = ErrorCode.CONFIGURATION


class UnsupportedProvider(ValidationError):
    """Provider value outside the supported set"""
    error_code = ErrorCode.UNSUPPORTED


class InvalidState(SocialFlowException):
    """OAuth callback failed CSRF state verification"""
    error_code = ErrorCode.INVALID_STATE


class InvalidOrExpiredRequestToken(InvalidState):
    """OAuth 1.0a callback token unknown, mismatched or past its TTL"""


class NoManageablePages(SocialFlowException):
    """Facebook account has no page to publish to"""
    error_code = ErrorCode.VALIDATION


class AccountNotFound(SocialFlowException):
    """Connected account missing or not owned by the caller"""
    error_code = ErrorCode.ACCOUNT_NOT_FOUND


class PostNotFound(SocialFlowException):
    """Post missing or not owned by the caller"""
    error_code = ErrorCode.VALIDATION


class PlatformError(SocialFlowException):
    """Platform-specific error"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: ErrorCode = ErrorCode.PROVIDER_REJECTED,
    ):
        super().__init__(message, details)
        self.error_code = error_code


class AuthenticationError(PlatformError):
    """Provider refused the stored credentials"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, revoked: bool = False):
        code = ErrorCode.AUTH_TOKEN_REVOKED if revoked else ErrorCode.AUTH_TOKEN_EXPIRED
        super().__init__(message, details, code)
        self.revoked = revoked


class RateLimitedError(PlatformError):
    """Provider backpressure"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, ErrorCode.RATE_LIMITED)


class TransientError(PlatformError):
    """Timeouts, connection resets and provider 5xx"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, ErrorCode.TRANSIENT)


class StorageUnavailable(SocialFlowException):
    """Blob storage could not accept the upload (retry-safe)"""
    error_code = ErrorCode.STORAGE_UNAVAILABLE


class InvalidMediaData(SocialFlowException):
    """Media payload is malformed or not acceptable (caller error)"""
    error_code = ErrorCode.INVALID_MEDIA


class DatabaseError(SocialFlowException):
    """Database operation error"""


def create_http_exception(
    status_code: int,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    """Create standardized HTTP exception"""
    return HTTPException(
        status_code=status_code,
        detail={
            "error": message,
            "details": details or {},
            "status_code": status_code
        }
    )


_STATUS_BY_TYPE = (
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (CryptoError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (InvalidState, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NoManageablePages, status.HTTP_400_BAD_REQUEST),
    (InvalidMediaData, status.HTTP_400_BAD_REQUEST),
    (AccountNotFound, status.HTTP_404_NOT_FOUND),
    (PostNotFound, status.HTTP_404_NOT_FOUND),
    (RateLimitedError, status.HTTP_429_TOO_MANY_REQUESTS),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (StorageUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (TransientError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PlatformError, status.HTTP_502_BAD_GATEWAY),
)


def handle_platform_error(e: Exception, platform: str) -> HTTPException:
    """Handle platform-specific errors"""
    if isinstance(e, SocialFlowException):
        for exc_type, status_code in _STATUS_BY_TYPE:
            if isinstance(e, exc_type):
                return create_http_exception(
                    status_code,
                    e.message,
                    {"platform": platform, "code": e.error_code.value, **e.details}
                )
        return create_http_exception(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            e.message,
            {"platform": platform, "code": e.error_code.value}
        )
    return create_http_exception(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        f"Unexpected error with {platform} integration",
        {"platform": platform, "code": ErrorCode.INTERNAL.value, "hint": default_message(ErrorCode.INTERNAL)}
    )
