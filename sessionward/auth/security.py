"""Password hashing and signed token management."""

import base64
import binascii
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

import bcrypt
import structlog
from jose import JWTError, jwt

from ..common.clock import Clock, SystemClock
from .exceptions import TokenError

logger = structlog.get_logger(__name__)

# bcrypt only looks at the first 72 bytes; bcrypt>=5 raises on longer input
BCRYPT_MAX_BYTES = 72
MIN_SECRET_BYTES = 32

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"

REASON_MALFORMED = "malformed"
REASON_BAD_SIGNATURE = "bad_signature"
REASON_EXPIRED = "expired"
REASON_WRONG_TYPE = "wrong_type"


# ============================================================================
# Password Hashing
# ============================================================================


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: int = 12) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password to hash
        rounds: bcrypt work factor

    Returns:
        Bcrypt hashed password string

    Example:
        >>> hashed = hash_password("Secure123!", rounds=4)
        >>> hashed.startswith("$2b$04$")
        True
    """
    hashed = bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against a bcrypt hash.

    A hash that bcrypt cannot parse counts as a mismatch.

    Example:
        >>> hashed = hash_password("test", rounds=4)
        >>> verify_password("test", hashed)
        True
        >>> verify_password("wrong", hashed)
        False
    """
    try:
        return bcrypt.checkpw(_password_bytes(plain_password), hashed_password.encode("utf-8"))
    except (ValueError, TypeError) as e:
        logger.warning("password_verification_error", error=str(e))
        return False


@lru_cache
def dummy_password_hash(rounds: int) -> str:
    """Hash compared against when the email is unknown, so both paths cost one bcrypt check."""
    return hash_password(uuid.uuid4().hex, rounds=rounds)


# ============================================================================
# Token Signing
# ============================================================================


@dataclass(frozen=True)
class TokenSignerConfig:
    """Immutable signing key and lifetimes, built once at startup."""

    secret: bytes = field(repr=False)
    algorithm: str = "HS256"
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)

    def __post_init__(self) -> None:
        if len(self.secret) < MIN_SECRET_BYTES:
            raise ValueError(
                f"Signing secret must be at least {MIN_SECRET_BYTES} bytes "
                f"(got {len(self.secret)})"
            )

    @classmethod
    def from_base64(
        cls,
        encoded_secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
    ) -> "TokenSignerConfig":
        """
        Decode a Base64 secret and build the config.

        Raises:
            ValueError: If the value is not Base64 or decodes to fewer than 32 bytes
        """
        try:
            secret = base64.b64decode(encoded_secret, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("Signing secret is not valid Base64") from e
        return cls(
            secret=secret,
            algorithm=algorithm,
            access_ttl=access_ttl,
            refresh_ttl=refresh_ttl,
        )


@dataclass(frozen=True)
class TokenVerification:
    """Outcome of verifying a signed token.

    ``reason`` is only populated for invalid tokens and is meant for logs,
    never for clients.
    """

    valid: bool
    subject: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None


class TokenSigner:
    """Issues and verifies HMAC-signed JWTs.

    Each token gets a random ``jti`` so two tokens issued for the same subject
    in the same second still differ. Expiry is checked against the injected
    clock rather than the library's wall clock.
    """

    def __init__(self, config: TokenSignerConfig, clock: Optional[Clock] = None):
        self._config = config
        self._clock = clock or SystemClock()

    @property
    def access_ttl(self) -> timedelta:
        return self._config.access_ttl

    @property
    def refresh_ttl(self) -> timedelta:
        return self._config.refresh_ttl

    def _encode(self, claims: Dict[str, Any], ttl: timedelta, token_type: str) -> str:
        now = self._clock.now()
        payload = {
            **claims,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "type": token_type,
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(payload, self._config.secret, algorithm=self._config.algorithm)

    def issue_access(self, account_id: int, email: str) -> str:
        """Short-lived access token carrying the account id and email."""
        return self._encode(
            {"sub": str(account_id), "email": email},
            self._config.access_ttl,
            TOKEN_TYPE_ACCESS,
        )

    def issue_refresh_claim_based(self, account_id: int) -> str:
        """Self-contained refresh token.

        The engine hands out opaque session tokens instead; this variant exists
        for callers that cannot keep server-side session state.
        """
        return self._encode({"sub": str(account_id)}, self._config.refresh_ttl, TOKEN_TYPE_REFRESH)

    def verify(self, token: str, expected_type: Optional[str] = None) -> TokenVerification:
        """
        Check structure, signature, expiry and (optionally) the ``type`` claim.

        Args:
            token: Encoded JWT
            expected_type: "access" or "refresh"; None skips the type check

        Returns:
            TokenVerification with ``valid`` and, when invalid, the reason
        """
        if not isinstance(token, str) or not token:
            return self._reject(REASON_MALFORMED)

        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            return self._reject(REASON_MALFORMED)

        try:
            claims = jwt.decode(
                token,
                self._config.secret,
                algorithms=[self._config.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.debug("token_decode_error", error=str(e))
            return self._reject(REASON_BAD_SIGNATURE)

        subject = claims.get("sub")
        expires = claims.get("exp")
        if not subject or not isinstance(expires, (int, float)):
            return self._reject(REASON_MALFORMED)

        if self._clock.now().timestamp() >= expires:
            return self._reject(REASON_EXPIRED, subject=subject)

        if expected_type is not None and claims.get("type") != expected_type:
            logger.warning(
                "token_type_mismatch",
                expected=expected_type,
                actual=claims.get("type"),
            )
            return self._reject(REASON_WRONG_TYPE, subject=subject)

        return TokenVerification(valid=True, subject=subject, claims=claims)

    def _reject(self, reason: str, subject: Optional[str] = None) -> TokenVerification:
        logger.debug("token_rejected", reason=reason, subject=subject)
        return TokenVerification(valid=False, reason=reason)

    def _verified_claims(self, token: str, expected_type: Optional[str]) -> Dict[str, Any]:
        result = self.verify(token, expected_type)
        if not result.valid:
            raise TokenError(result.reason or REASON_MALFORMED)
        return result.claims

    def extract_subject(self, token: str, expected_type: Optional[str] = None) -> int:
        """
        Return the account id a valid token was issued for.

        Raises:
            TokenError: If the token is invalid or its subject is not an account id
        """
        claims = self._verified_claims(token, expected_type)
        try:
            return int(claims["sub"])
        except (TypeError, ValueError) as e:
            raise TokenError(REASON_MALFORMED) from e

    def extract_expiry(self, token: str) -> datetime:
        """
        Return the expiry instant of a valid token.

        Raises:
            TokenError: If the token is invalid
        """
        claims = self._verified_claims(token, None)
        return datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
