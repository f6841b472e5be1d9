"""Custom exceptions for application-specific error handling."""

from __future__ import annotations

from typing import Optional, Dict, Any

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


class MarketplaceException(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 400,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class ConflictError(MarketplaceException):
    """Raised when a request conflicts with current state."""

    def __init__(self, message: str = "conflict", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="CONFLICT", details=details, status_code=409)


# ===== CONFIGURATION EXCEPTIONS =====


class ConfigError(MarketplaceException):
    """Raised at startup when required configuration is missing or unsafe."""

    def __init__(self, message: str, setting: Optional[str] = None):
        details = {"setting": setting} if setting else {}
        super().__init__(message, error_code="CONFIG_ERROR", details=details, status_code=500)


# ===== PERSISTENCE EXCEPTIONS =====


class PersistenceError(MarketplaceException):
    """Raised when the session store cannot complete an operation."""

    def __init__(self, message: str = "session_store_unavailable", *, operation: Optional[str] = None):
        details = {"operation": operation} if operation else {}
        super().__init__(message, error_code="PERSISTENCE_ERROR", details=details, status_code=503)


# ===== AUTHENTICATION EXCEPTIONS =====


class AuthenticationException(MarketplaceException):
    """Base exception for authentication errors."""

    def __init__(self, message: str, *, error_code: str, status_code: int = 401):
        super().__init__(message, error_code=error_code, status_code=status_code, headers=dict(_BEARER_CHALLENGE))


class InvalidCredentialsError(AuthenticationException):
    """Raised when login credentials do not match an identity."""

    def __init__(self, message: str = "invalid_credentials"):
        super().__init__(message, error_code="INVALID_CREDENTIALS")


class NotAuthenticatedError(AuthenticationException):
    """Raised when a protected request carries no bearer token."""

    def __init__(self, message: str = "access_token_required"):
        super().__init__(message, error_code="NO_TOKEN")


class InvalidOrExpiredTokenError(AuthenticationException):
    """Raised when an access token fails verification."""

    def __init__(self, *, expired: bool = False):
        self.expired = expired
        if expired:
            super().__init__("access_token_expired", error_code="EXPIRED_TOKEN")
        else:
            super().__init__("invalid_token", error_code="INVALID_TOKEN")


class InvalidRefreshTokenError(AuthenticationException):
    """Raised when a refresh token has a bad signature or is malformed."""

    def __init__(self, message: str = "invalid_refresh_token"):
        super().__init__(message, error_code="INVALID_REFRESH_TOKEN")


class RefreshTokenNotFoundError(AuthenticationException):
    """Raised when a refresh token is absent, expired, used or revoked."""

    def __init__(self, message: str = "refresh_token_not_found_or_expired"):
        super().__init__(message, error_code="REFRESH_TOKEN_NOT_FOUND")
