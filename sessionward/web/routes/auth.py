"""Authentication routes: signup, login, refresh, logout, email verification and sessions."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends

from sessionward.auth import AuthEngine
from sessionward.auth.schemas import (
    AccountInfo,
    AuthResponse,
    LoginRequest,
    LogoutAllResponse,
    LogoutRequest,
    LogoutResponse,
    MessageResponse,
    RefreshRequest,
    SessionInfo,
    SessionListResponse,
    SignupRequest,
    VerifyEmailRequest,
)
from sessionward.core.models import Account

from ..dependencies import (
    enforce_rate_limit,
    get_client_ip,
    get_current_account,
    get_device_info,
    get_engine,
)
from ..schemas import (
    AUTH_ERROR_RESPONSES,
    LOGIN_ERROR_RESPONSES,
    SIGNUP_ERROR_RESPONSES,
    ErrorDetail,
)

logger = structlog.get_logger(__name__)

# Every auth endpoint shares the per-address request budget
router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    dependencies=[Depends(enforce_rate_limit)],
)


@router.post(
    "/signup",
    response_model=AuthResponse,
    summary="Register a local account",
    responses=SIGNUP_ERROR_RESPONSES,
)
async def signup(
    body: SignupRequest,
    engine: AuthEngine = Depends(get_engine),
    client_ip: str = Depends(get_client_ip),
    device_info: Optional[str] = Depends(get_device_info),
) -> AuthResponse:
    """
    Create an account with email and password and start a session.

    The password must be 8-128 characters with upper and lower case letters,
    a digit and a special character, no whitespace, and no run of five
    consecutive letters, digits or keyboard keys.
    """
    return await engine.register(
        name=body.name,
        email=body.email,
        password=body.password,
        device_info=device_info,
        ip_address=client_ip,
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Authenticate with email and password",
    responses=LOGIN_ERROR_RESPONSES,
)
async def login(
    body: LoginRequest,
    engine: AuthEngine = Depends(get_engine),
    client_ip: str = Depends(get_client_ip),
    device_info: Optional[str] = Depends(get_device_info),
) -> AuthResponse:
    """
    Authenticate and start a new session for this device.

    Five consecutive wrong passwords lock the account; the lock lifts on the
    first attempt after the lock window.
    """
    return await engine.login(
        email=body.email,
        password=body.password,
        device_info=device_info,
        ip_address=client_ip,
    )


@router.post(
    "/refresh",
    response_model=AuthResponse,
    summary="Get a new access token",
    responses={
        401: {"model": ErrorDetail, "description": "Unknown, expired or revoked session"},
    },
)
async def refresh(
    body: RefreshRequest,
    engine: AuthEngine = Depends(get_engine),
) -> AuthResponse:
    """
    Exchange a session token for a fresh access token.

    The session token is returned unchanged; it is not rotated.
    """
    return await engine.refresh(body.refresh_token)


@router.post(
    "/logout",
    response_model=LogoutResponse,
    summary="End one session",
)
async def logout(
    body: LogoutRequest,
    engine: AuthEngine = Depends(get_engine),
) -> LogoutResponse:
    """Revoke the given session. Unknown or missing tokens still succeed."""
    logger.debug("logout_requested", has_token=bool(body.refresh_token))
    await engine.logout(body.refresh_token)
    return LogoutResponse(success=True, message="Logged out successfully")


@router.post(
    "/verify-email",
    response_model=AccountInfo,
    summary="Confirm an email address",
    responses={
        401: {"model": ErrorDetail, "description": "Unknown, used or expired verification token"},
    },
)
async def verify_email(
    body: VerifyEmailRequest,
    engine: AuthEngine = Depends(get_engine),
) -> AccountInfo:
    """
    Mark the account's email verified using the token delivered to it.

    Each token works once and expires; unverified accounts whose token
    expired are removed by maintenance.
    """
    account = await engine.verify_email(body.token)
    return AccountInfo.model_validate(account)


@router.post(
    "/verify-email/resend",
    response_model=MessageResponse,
    summary="Send a new verification token",
    responses=AUTH_ERROR_RESPONSES,
)
async def resend_verification(
    account: Account = Depends(get_current_account),
    engine: AuthEngine = Depends(get_engine),
) -> MessageResponse:
    """Replace the current account's verification token; earlier tokens stop working."""
    token = await engine.issue_verification_token(account.id)
    if token is None:
        return MessageResponse(message="Email address already verified")
    return MessageResponse(message="Verification token sent")


@router.post(
    "/logout-all",
    response_model=LogoutAllResponse,
    summary="End every session of the current account",
    responses=AUTH_ERROR_RESPONSES,
)
async def logout_all(
    account: Account = Depends(get_current_account),
    engine: AuthEngine = Depends(get_engine),
) -> LogoutAllResponse:
    count = await engine.logout_all(account.id)
    return LogoutAllResponse(success=True, revoked_sessions=count)


@router.get(
    "/sessions",
    response_model=SessionListResponse,
    summary="List active sessions of the current account",
    responses=AUTH_ERROR_RESPONSES,
)
async def list_sessions(
    account: Account = Depends(get_current_account),
    engine: AuthEngine = Depends(get_engine),
) -> SessionListResponse:
    records = await engine.list_sessions(account.id)
    return SessionListResponse(
        sessions=[SessionInfo.model_validate(record) for record in records],
        total=len(records),
    )


@router.get(
    "/me",
    response_model=AccountInfo,
    summary="Get the current account",
    responses=AUTH_ERROR_RESPONSES,
)
async def me(account: Account = Depends(get_current_account)) -> AccountInfo:
    return AccountInfo.model_validate(account)
