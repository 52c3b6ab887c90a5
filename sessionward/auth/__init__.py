"""Authentication: password policy, lockout, tokens, sessions and the engine."""

from .engine import AuthEngine, VerificationSender
from .exceptions import (
    AccountDisabled,
    AccountLocked,
    AccountNotFound,
    AuthError,
    DuplicateEmail,
    InvalidCredentials,
    InvalidToken,
    ProviderConflict,
    SessionExpired,
    SessionRevoked,
    TokenError,
    TooManyAttempts,
    ValidationFailed,
)
from .lockout import LockoutDecision, LockoutGuard, LockoutStatus
from .password_policy import PasswordPolicy, PasswordValidationResult, describe_violation
from .schemas import (
    AccountInfo,
    AuthResponse,
    ExternalIdentity,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    SignupRequest,
    VerifyEmailRequest,
)
from .security import (
    TokenSigner,
    TokenSignerConfig,
    TokenVerification,
    hash_password,
    verify_password,
)
from .sessions import SessionStore
from .throttle import LoginThrottle

__all__ = [
    # Engine
    "AuthEngine",
    "VerificationSender",
    # Components
    "PasswordPolicy",
    "PasswordValidationResult",
    "describe_violation",
    "LockoutGuard",
    "LockoutDecision",
    "LockoutStatus",
    "TokenSigner",
    "TokenSignerConfig",
    "TokenVerification",
    "SessionStore",
    "LoginThrottle",
    "hash_password",
    "verify_password",
    # Schemas
    "AccountInfo",
    "AuthResponse",
    "ExternalIdentity",
    "LoginRequest",
    "LogoutRequest",
    "MessageResponse",
    "RefreshRequest",
    "SignupRequest",
    "VerifyEmailRequest",
    # Errors
    "AuthError",
    "ValidationFailed",
    "DuplicateEmail",
    "InvalidCredentials",
    "AccountLocked",
    "AccountDisabled",
    "InvalidToken",
    "ProviderConflict",
    "AccountNotFound",
    "TooManyAttempts",
    "SessionExpired",
    "SessionRevoked",
    "TokenError",
]
