"""Domain errors raised by the auth engine.

Every public error carries a stable ``error_type`` string that the HTTP layer
forwards to clients. ``SessionExpired``, ``SessionRevoked`` and ``TokenError``
never leave the engine; they are collapsed into ``InvalidToken``.
"""

from typing import Any, Dict, List, Optional


class AuthError(Exception):
    """Base exception for all authentication errors."""

    error_type = "auth_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationFailed(AuthError):
    """Password (or other input) failed validation; lists every violation."""

    error_type = "validation_failed"

    def __init__(self, violations: List[str], message: str = "Password does not meet policy"):
        super().__init__(message, details={"violations": list(violations)})
        self.violations = list(violations)


class DuplicateEmail(AuthError):
    error_type = "duplicate_email"

    def __init__(self, message: str = "Email address is already registered"):
        super().__init__(message)


class InvalidCredentials(AuthError):
    """Unknown email or wrong password. The two cases are indistinguishable."""

    error_type = "invalid_credentials"

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)


class AccountLocked(AuthError):
    """Too many consecutive failed attempts; password checks are suspended."""

    error_type = "account_locked"

    def __init__(self, retry_after: int, message: str = "Account is temporarily locked"):
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after


class AccountDisabled(AuthError):
    error_type = "account_disabled"

    def __init__(self, message: str = "Account is disabled"):
        super().__init__(message)


class InvalidToken(AuthError):
    """Refresh or access credential is unknown, expired, revoked or malformed."""

    error_type = "invalid_token"

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class ProviderConflict(AuthError):
    """The email is already registered under a different identity provider."""

    error_type = "provider_conflict"

    def __init__(self, provider: str, message: Optional[str] = None):
        super().__init__(
            message or f"Account is registered with {provider} sign-in",
            details={"provider": provider},
        )
        self.provider = provider


class AccountNotFound(AuthError):
    error_type = "account_not_found"

    def __init__(self, account_id: Optional[int] = None, message: str = "Account not found"):
        super().__init__(message, details={"account_id": account_id})
        self.account_id = account_id


class TooManyAttempts(AuthError):
    """Too many failed logins, or too many requests, from one network address."""

    error_type = "too_many_attempts"

    def __init__(self, retry_after: int, message: str = "Too many login attempts"):
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after


class SessionExpired(AuthError):
    error_type = "session_expired"

    def __init__(self, message: str = "Session has expired"):
        super().__init__(message)


class SessionRevoked(AuthError):
    error_type = "session_revoked"

    def __init__(self, message: str = "Session has been revoked"):
        super().__init__(message)


class TokenError(AuthError):
    """A signed token could not be decoded or failed validation."""

    error_type = "token_error"

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or f"Token rejected: {reason}", details={"reason": reason})
        self.reason = reason
