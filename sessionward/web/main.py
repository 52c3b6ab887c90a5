"""FastAPI application factory and entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi

import sessionward
from sessionward.auth import AuthEngine, TokenSignerConfig
from sessionward.common.config import Config
from sessionward.common.rate_limiter import ClientRateLimiter

from .middleware import RequestLoggingMiddleware, register_exception_handlers
from .schemas import HealthCheckResponse
from .settings import APISettings, get_settings

logger = structlog.get_logger(__name__)


def build_signer_config(settings: APISettings, config: Config) -> TokenSignerConfig:
    """Decode the signing secret once and combine it with the token lifetimes."""
    return TokenSignerConfig.from_base64(
        settings.jwt_secret,
        algorithm=config.tokens.algorithm,
        access_ttl=config.tokens.access_token_ttl,
        refresh_ttl=config.tokens.refresh_token_ttl,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Startup configures sessionward (logging, database) unless a repository is
    already open, then builds the AuthEngine. A clock placed on
    ``app.state.clock`` before startup is shared by every component.
    Likewise ``app.state.verification_sender`` receives email verification
    tokens as they are issued.
    Shutdown closes the database if this lifespan opened it.
    """
    settings: APISettings = app.state.settings
    logger.info("api_starting", host=settings.host, port=settings.port)

    already_configured = sessionward._repository is not None
    if not already_configured:
        await sessionward.configure(config=sessionward._config)
    else:
        logger.info("api_using_existing_repository")

    config = sessionward.get_config()
    repository = await sessionward.get_repository()
    app.state.repository = repository
    app.state.engine = AuthEngine.from_config(
        config,
        repository,
        build_signer_config(settings, config),
        clock=getattr(app.state, "clock", None),
        verification_sender=getattr(app.state, "verification_sender", None),
    )

    app.state.rate_limiter = None
    if config.rate_limit.enabled:
        app.state.rate_limiter = ClientRateLimiter(
            requests_per_minute=config.rate_limit.requests_per_minute,
            burst_size=config.rate_limit.burst_size,
        )

    logger.info(
        "api_ready",
        version=sessionward.__version__,
        debug=settings.debug,
        algorithm=config.tokens.algorithm,
        throttle_enabled=config.throttle.enabled,
        rate_limit_enabled=config.rate_limit.enabled,
    )

    yield

    logger.info("api_shutting_down")
    if not already_configured:
        await sessionward.shutdown()


def create_app(settings: Optional[APISettings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: API settings; read from the environment when omitted

    Returns:
        Configured FastAPI application instance

    Example:
        from fastapi.testclient import TestClient
        from sessionward.web import create_app

        with TestClient(create_app(settings)) as client:
            client.post("/auth/login", json={...})
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="sessionward API",
        version=sessionward.__version__,
        description="""Credential and session authority.

## Authentication

`POST /auth/signup` and `POST /auth/login` return a short-lived access token
and a long-lived refresh token bound to the calling device. Send the access
token on protected endpoints:

```
Authorization: Bearer <access-token>
```

Exchange the refresh token for a new access token with `POST /auth/refresh`;
the refresh token itself stays the same until it expires or is revoked with
`POST /auth/logout`.

Every `/auth` endpoint is rate limited per client address; responses carry
an `X-Rate-Limit-Remaining` header and refused requests return 429 with
`Retry-After`.
""",
        openapi_url=settings.openapi_url,
        openapi_tags=[
            {
                "name": "Health",
                "description": "Health check and status endpoints",
            },
            {
                "name": "Authentication",
                "description": "Signup, login, token refresh, logout, email verification and session management",
            },
        ],
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.log_requests:
        app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    @app.get(
        "/health",
        tags=["Health"],
        summary="Health check",
        response_model=HealthCheckResponse,
    )
    async def health_check(request: Request, response: Response) -> HealthCheckResponse:
        repository = getattr(request.app.state, "repository", None)
        healthy = repository is not None and await repository.ping()
        if not healthy:
            response.status_code = 503
        return HealthCheckResponse(
            status="ok" if healthy else "error",
            version=sessionward.__version__,
        )

    from .routes import auth

    app.include_router(auth.router)

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
            tags=app.openapi_tags,
        )
        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "BearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "Access token from POST /auth/login or POST /auth/signup",
            }
        }
        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi

    logger.info("api_app_created", routes=len(app.routes))
    return app


def run() -> None:
    """
    Run the API server with uvicorn.

    Entry point for the sessionward-api script.
    """
    settings = get_settings()

    uvicorn.run(
        "sessionward.web.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
