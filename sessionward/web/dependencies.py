"""FastAPI dependencies for settings, the auth engine, rate limiting and the current account."""

from typing import Optional

import structlog
from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from sessionward.auth import AuthEngine, InvalidToken, TooManyAttempts
from sessionward.common.rate_limiter import ClientRateLimiter
from sessionward.core.models import Account

from .settings import APISettings

logger = structlog.get_logger(__name__)

# Optional bearer scheme so a missing header maps to InvalidToken (401) in our handler
optional_bearer = HTTPBearer(auto_error=False)


def get_api_settings(request: Request) -> APISettings:
    """Settings the application was created with."""
    return request.app.state.settings


def get_engine(request: Request) -> AuthEngine:
    """
    The AuthEngine built during application startup.

    Example:
        @router.post("/auth/login")
        async def login(engine: AuthEngine = Depends(get_engine)):
            ...
    """
    return request.app.state.engine


def get_client_ip(
    request: Request,
    settings: APISettings = Depends(get_api_settings),
) -> str:
    """Extract client IP from request, considering trusted proxies.

    Only parses X-Forwarded-For when trusted_proxy_count > 0 and takes the
    Nth address from the right, where N is trusted_proxy_count.
    """
    if settings.trusted_proxy_count > 0:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            ips = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
            if ips:
                index = max(0, len(ips) - settings.trusted_proxy_count)
                return ips[index]
    return request.client.host if request.client else "unknown"


def get_device_info(request: Request) -> Optional[str]:
    """Device descriptor recorded with a session (the User-Agent header)."""
    user_agent = request.headers.get("User-Agent")
    return user_agent[:512] if user_agent else None


async def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
    engine: AuthEngine = Depends(get_engine),
) -> Account:
    """
    Resolve the Bearer access token to an enabled account.

    Raises:
        InvalidToken: Missing, invalid or expired token (mapped to 401)
    """
    if credentials is None:
        raise InvalidToken("Authentication required")

    account = await engine.authenticate(credentials.credentials)
    logger.debug("request_authenticated", account_id=account.id)
    return account


async def enforce_rate_limit(
    request: Request,
    response: Response,
    client_ip: str = Depends(get_client_ip),
) -> None:
    """
    Admit the request against the client address's token bucket.

    Admitted responses carry ``X-Rate-Limit-Remaining``. Does nothing when
    rate limiting is disabled in the configuration.

    Raises:
        TooManyAttempts: The bucket is empty (mapped to 429 with Retry-After)
    """
    limiter: Optional[ClientRateLimiter] = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return

    decision = await limiter.check(client_ip)
    if not decision.allowed:
        raise TooManyAttempts(decision.retry_after, message="Too many requests")
    response.headers["X-Rate-Limit-Remaining"] = str(decision.remaining)
