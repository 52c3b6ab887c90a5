"""Authentication engine: registration, login, refresh, logout and external login.

Orchestrates the password policy, the credential store, the lockout guard,
the token signer and the session store. This is the only layer that raises
the public auth error taxonomy.
"""

import asyncio
import secrets
from datetime import timedelta
from typing import Awaitable, Callable, List, Optional

import structlog

from ..common.clock import Clock, SystemClock
from ..common.config import Config
from ..core.db.exceptions import AccountNotFoundError, DuplicateRecordError
from ..core.db.repository import AuthRepository
from ..core.db.stores import CredentialStore
from ..core.models import Account, AuthProvider, SessionRecord
from .exceptions import (
    AccountDisabled,
    AccountLocked,
    AccountNotFound,
    DuplicateEmail,
    InvalidCredentials,
    InvalidToken,
    ProviderConflict,
    SessionExpired,
    SessionRevoked,
    TooManyAttempts,
    ValidationFailed,
)
from .lockout import LockoutGuard
from .password_policy import PasswordPolicy
from .schemas import AuthResponse, ExternalIdentity, normalize_email
from .security import (
    TOKEN_TYPE_ACCESS,
    TokenSigner,
    TokenSignerConfig,
    dummy_password_hash,
    hash_password,
    verify_password,
)
from .sessions import SessionStore, token_prefix
from .throttle import LoginThrottle

logger = structlog.get_logger(__name__)

# Hands a new verification token to whatever delivers it (email, message queue)
VerificationSender = Callable[[Account, str], Awaitable[None]]

DEFAULT_VERIFICATION_TTL = timedelta(hours=24)


class AuthEngine:
    """Credential and session authority.

    Refresh tokens are not rotated: ``refresh`` returns the same session token
    it was given together with a new access token.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        sessions: SessionStore,
        signer: TokenSigner,
        guard: Optional[LockoutGuard] = None,
        policy: Optional[PasswordPolicy] = None,
        throttle: Optional[LoginThrottle] = None,
        clock: Optional[Clock] = None,
        bcrypt_rounds: int = 12,
        verification_ttl: timedelta = DEFAULT_VERIFICATION_TTL,
        verification_sender: Optional[VerificationSender] = None,
    ):
        self._credentials = credentials
        self._sessions = sessions
        self._signer = signer
        self._guard = guard or LockoutGuard()
        self._policy = policy or PasswordPolicy()
        self._throttle = throttle
        self._clock = clock or SystemClock()
        self._bcrypt_rounds = bcrypt_rounds
        self._verification_ttl = verification_ttl
        self._verification_sender = verification_sender

    @classmethod
    def from_config(
        cls,
        config: Config,
        repository: AuthRepository,
        signer_config: TokenSignerConfig,
        clock: Optional[Clock] = None,
        verification_sender: Optional[VerificationSender] = None,
    ) -> "AuthEngine":
        """
        Wire an engine from the root Config and a connected repository.

        Args:
            config: sessionward Config (lockout, password, throttle settings)
            repository: AuthRepository serving as credential and session store
            signer_config: Immutable signing key and token lifetimes
            clock: Time source shared by every component (system clock by default)
            verification_sender: Delivers email verification tokens (none: tokens are only stored)
        """
        clock = clock or SystemClock()
        throttle = None
        if config.throttle.enabled:
            throttle = LoginThrottle(
                max_attempts=config.throttle.max_attempts,
                window_seconds=config.throttle.window_seconds,
                clock=clock,
            )

        return cls(
            credentials=repository,
            sessions=SessionStore(repository, refresh_ttl=signer_config.refresh_ttl, clock=clock),
            signer=TokenSigner(signer_config, clock=clock),
            guard=LockoutGuard(
                max_failed_attempts=config.lockout.max_failed_attempts,
                lock_duration=config.lockout.lock_duration,
            ),
            policy=PasswordPolicy(),
            throttle=throttle,
            clock=clock,
            bcrypt_rounds=config.password.bcrypt_rounds,
            verification_ttl=config.verification.token_ttl,
            verification_sender=verification_sender,
        )

    # ==================== Helpers ====================

    async def _issue(
        self,
        account: Account,
        device_info: Optional[str],
        ip_address: Optional[str],
    ) -> AuthResponse:
        session = await self._sessions.create(account.id, device_info, ip_address)
        return self._response(account, session.token)

    def _response(self, account: Account, refresh_token: str) -> AuthResponse:
        return AuthResponse(
            access_token=self._signer.issue_access(account.id, account.email),
            refresh_token=refresh_token,
            expires_in=int(self._signer.access_ttl.total_seconds()),
        )

    def _throttle_failure(self, ip_address: Optional[str]) -> None:
        if self._throttle is not None and ip_address:
            self._throttle.record_failure(ip_address)

    async def _hash(self, password: str) -> str:
        return await asyncio.to_thread(hash_password, password, self._bcrypt_rounds)

    async def _check_password(self, password: str, hashed: str) -> bool:
        return await asyncio.to_thread(verify_password, password, hashed)

    # ==================== Registration ====================

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuthResponse:
        """
        Create a local account, issue its email verification token and log it in.

        Raises:
            DuplicateEmail: If the email is already registered (checked first)
            ValidationFailed: If the password violates the policy
        """
        email = normalize_email(email)

        if await self._credentials.email_exists(email):
            logger.info("registration_duplicate_email", ip_address=ip_address)
            raise DuplicateEmail()

        result = self._policy.validate(password)
        if not result.valid:
            raise ValidationFailed(result.violations)

        password_hash = await self._hash(password)
        try:
            account = await self._credentials.create_account(
                email=email,
                name=name,
                provider=AuthProvider.LOCAL,
                password_hash=password_hash,
                email_verified=False,
                now=self._clock.now(),
            )
        except DuplicateRecordError as e:
            # Lost a race with a concurrent registration
            raise DuplicateEmail() from e

        logger.info("account_registered", account_id=account.id, ip_address=ip_address)
        await self._start_verification(account)
        return await self._issue(account, device_info, ip_address)

    # ==================== Email Verification ====================

    async def _start_verification(self, account: Account) -> str:
        token = secrets.token_urlsafe(32)
        now = self._clock.now()
        await self._credentials.replace_verification_token(
            account.id, token, now + self._verification_ttl, now
        )
        logger.info(
            "verification_token_issued",
            account_id=account.id,
            token_prefix=token_prefix(token),
            expires_in_hours=self._verification_ttl.total_seconds() / 3600,
        )

        if self._verification_sender is not None:
            try:
                await self._verification_sender(account, token)
            except Exception:
                # The account stays usable; a new token can be requested
                logger.exception("verification_delivery_failed", account_id=account.id)
        return token

    async def issue_verification_token(self, account_id: int) -> Optional[str]:
        """
        Replace the account's verification token and hand it to the sender.

        Returns:
            The new token, or None if the account needs no verification
            (external provider or already verified)

        Raises:
            AccountNotFound: If the account does not exist
        """
        account = await self.get_account(account_id)
        if not account.is_local or account.email_verified:
            logger.debug("verification_not_needed", account_id=account_id)
            return None
        return await self._start_verification(account)

    async def verify_email(self, token: str) -> Account:
        """
        Consume a verification token and mark the account's email verified.

        Raises:
            InvalidToken: Unknown, already used or expired token
        """
        record = await self._credentials.find_verification_token(token)
        if record is None:
            logger.info("email_verification_failed", reason="unknown_token")
            raise InvalidToken("Invalid verification token")
        if record.is_used:
            logger.info(
                "email_verification_failed", reason="already_used", account_id=record.account_id
            )
            raise InvalidToken("Verification token has already been used")

        now = self._clock.now()
        if record.is_expired(now):
            logger.info("email_verification_failed", reason="expired", account_id=record.account_id)
            raise InvalidToken("Verification token has expired")

        if not await self._credentials.consume_verification_token(token, now):
            # Consumed by a concurrent request between lookup and update
            raise InvalidToken("Verification token has already been used")

        logger.info("email_verified", account_id=record.account_id)
        return await self.get_account(record.account_id)

    # ==================== Login ====================

    async def login(
        self,
        email: str,
        password: str,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuthResponse:
        """
        Authenticate with email and password.

        Raises:
            TooManyAttempts: The network address is throttled
            InvalidCredentials: Unknown email, wrong password, or an account
                that signs in through an external provider
            AccountLocked: The account is locked, or this failure locked it
            AccountDisabled: The password matched but the account is disabled
        """
        if self._throttle is not None and ip_address and self._throttle.is_blocked(ip_address):
            raise TooManyAttempts(self._throttle.get_retry_after(ip_address))

        email = normalize_email(email)
        account = await self._credentials.find_account_by_email(email)
        if account is None:
            # Same bcrypt cost as a real check so response time does not reveal the email
            await self._check_password(password, dummy_password_hash(self._bcrypt_rounds))
            self._throttle_failure(ip_address)
            logger.info("login_failed", reason="unknown_email", ip_address=ip_address)
            raise InvalidCredentials()

        if not account.is_local or not account.password_hash:
            self._throttle_failure(ip_address)
            logger.info(
                "login_failed",
                reason="external_account",
                account_id=account.id,
                provider=account.provider.value,
            )
            raise InvalidCredentials()

        now = self._clock.now()
        decision = self._guard.evaluate(account.lockout, now)
        if decision.unlocked:
            await self._credentials.clear_expired_lock(account.id, account.locked_since, now)
            logger.info("account_auto_unlocked", account_id=account.id)
            account = await self._credentials.get_account_by_id(account.id)
            decision = self._guard.evaluate(account.lockout, now)

        if decision.is_locked:
            logger.warning(
                "login_rejected_locked",
                account_id=account.id,
                retry_after=decision.retry_after,
                ip_address=ip_address,
            )
            raise AccountLocked(decision.retry_after)

        if not await self._check_password(password, account.password_hash):
            state = await self._credentials.record_failed_attempt(
                account.id, self._guard.max_failed_attempts, self._clock.now()
            )
            self._throttle_failure(ip_address)
            if state.is_locked:
                retry_after = self._guard.retry_after(state, self._clock.now())
                logger.warning(
                    "account_locked",
                    account_id=account.id,
                    attempt_count=state.failed_attempts,
                    retry_after=retry_after,
                )
                raise AccountLocked(retry_after)
            logger.info(
                "login_failed",
                reason="wrong_password",
                account_id=account.id,
                attempt_count=state.failed_attempts,
                ip_address=ip_address,
            )
            raise InvalidCredentials()

        if not account.enabled:
            logger.warning("login_rejected_disabled", account_id=account.id)
            raise AccountDisabled()

        if not await self._credentials.record_successful_login(account.id, self._clock.now()):
            # A concurrent failure locked the account between check and update
            state = (await self._credentials.get_account_by_id(account.id)).lockout
            raise AccountLocked(self._guard.retry_after(state, self._clock.now()))

        if self._throttle is not None and ip_address:
            self._throttle.clear(ip_address)

        logger.info("login_successful", account_id=account.id, ip_address=ip_address)
        return await self._issue(account, device_info, ip_address)

    # ==================== Sessions ====================

    async def refresh(self, refresh_token: str) -> AuthResponse:
        """
        Exchange a session token for a fresh access token.

        The same session token is returned unchanged.

        Raises:
            InvalidToken: Unknown, expired or revoked session, or an account
                that no longer exists or is disabled
        """
        record = await self._sessions.find_by_token(refresh_token)
        if record is None:
            logger.info("refresh_failed", reason="unknown_session")
            raise InvalidToken()

        try:
            record = await self._sessions.verify(record)
        except (SessionExpired, SessionRevoked) as e:
            logger.info("refresh_failed", reason=e.error_type, account_id=record.account_id)
            raise InvalidToken() from e

        try:
            account = await self._credentials.get_account_by_id(record.account_id)
        except AccountNotFoundError as e:
            raise InvalidToken() from e

        if not account.enabled:
            logger.info("refresh_failed", reason="account_disabled", account_id=account.id)
            raise InvalidToken()

        logger.debug("access_token_refreshed", account_id=account.id)
        return self._response(account, record.token)

    async def logout(self, refresh_token: Optional[str]) -> None:
        """Revoke one session. Empty input and unknown tokens are no-ops."""
        if not refresh_token:
            return
        await self._sessions.revoke(refresh_token)

    async def logout_all(self, account_id: int) -> int:
        """Revoke every session of an account; returns how many were revoked."""
        count = await self._sessions.revoke_all(account_id)
        logger.info("logout_all", account_id=account_id, count=count)
        return count

    async def list_sessions(self, account_id: int) -> List[SessionRecord]:
        return await self._sessions.list_active(account_id)

    # ==================== External Login ====================

    async def external_login(
        self,
        identity: ExternalIdentity,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuthResponse:
        """
        Log in (or sign up) with an identity verified by an external provider.

        Lockout and password checks do not apply.

        Raises:
            ProviderConflict: The email belongs to an account of another provider
            AccountDisabled: The matching account is disabled
        """
        email = normalize_email(identity.email)
        account = await self._credentials.find_account_by_email(email)

        if account is not None:
            if account.provider != identity.provider:
                logger.warning(
                    "external_login_provider_conflict",
                    account_id=account.id,
                    existing_provider=account.provider.value,
                    attempted_provider=identity.provider.value,
                )
                raise ProviderConflict(account.provider.value)
            if not account.enabled:
                raise AccountDisabled()
            account = await self._credentials.update_account_profile(
                account.id,
                name=identity.name,
                image_url=identity.image_url,
                provider_id=identity.provider_id,
            )
        else:
            try:
                account = await self._credentials.create_account(
                    email=email,
                    name=identity.name,
                    provider=identity.provider,
                    image_url=identity.image_url,
                    provider_id=identity.provider_id,
                    email_verified=True,
                    now=self._clock.now(),
                )
            except DuplicateRecordError as e:
                # Concurrent first login through a different provider
                existing = await self._credentials.find_account_by_email(email)
                provider = existing.provider.value if existing else identity.provider.value
                raise ProviderConflict(provider) from e

        await self._credentials.touch_last_login(account.id, self._clock.now())
        logger.info(
            "external_login_successful",
            account_id=account.id,
            provider=identity.provider.value,
            ip_address=ip_address,
        )
        return await self._issue(account, device_info, ip_address)

    # ==================== Accounts ====================

    async def authenticate(self, access_token: str) -> Account:
        """
        Resolve an access token to its enabled account.

        Raises:
            InvalidToken: Bad, expired or non-access token, unknown or disabled account
        """
        verification = self._signer.verify(access_token, expected_type=TOKEN_TYPE_ACCESS)
        if not verification.valid:
            logger.debug("access_token_rejected", reason=verification.reason)
            raise InvalidToken()

        try:
            account_id = int(verification.subject)
            account = await self._credentials.get_account_by_id(account_id)
        except (TypeError, ValueError, AccountNotFoundError) as e:
            raise InvalidToken() from e

        if not account.enabled:
            raise InvalidToken()
        return account

    async def get_account(self, account_id: int) -> Account:
        try:
            return await self._credentials.get_account_by_id(account_id)
        except AccountNotFoundError as e:
            raise AccountNotFound(account_id) from e

    async def delete_account(self, account_id: int) -> None:
        """
        Delete an account after removing all of its sessions.

        Raises:
            AccountNotFound: If the account does not exist
        """
        await self._sessions.delete_all(account_id)
        try:
            await self._credentials.delete_account(account_id)
        except AccountNotFoundError as e:
            raise AccountNotFound(account_id) from e
        logger.info("account_removed", account_id=account_id)
