"""HTTP server settings using Pydantic BaseSettings."""

import base64
import binascii
from functools import lru_cache
from typing import List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_SECRET_BYTES = 32


class APISettings(BaseSettings):
    """
    FastAPI application settings.

    Settings are read from environment variables with the prefix
    SESSIONWARD_API_, for example SESSIONWARD_API_PORT=9000.

    Attributes:
        host: Server bind address
        port: Server bind port
        debug: Enable debug mode (auto-reload, verbose errors)
        allowed_origins: List of allowed CORS origins
        log_requests: Log all requests and responses
        openapi_url: OpenAPI schema URL
        jwt_secret: Base64-encoded signing secret, at least 32 decoded bytes (required)
        trusted_proxy_count: Number of trusted proxies for X-Forwarded-For parsing
    """

    model_config = SettingsConfigDict(
        env_prefix="SESSIONWARD_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    log_requests: bool = True
    openapi_url: str = "/openapi.json"

    # Token signing
    jwt_secret: Optional[str] = None

    # Proxy settings for IP extraction
    trusted_proxy_count: int = 0

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: Optional[str]) -> Optional[str]:
        """The secret must be Base64 and decode to at least 32 bytes."""
        if v is None:
            return v
        try:
            decoded = base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("SESSIONWARD_API_JWT_SECRET must be Base64-encoded") from e
        if len(decoded) < MIN_SECRET_BYTES:
            raise ValueError(
                f"SESSIONWARD_API_JWT_SECRET must decode to at least {MIN_SECRET_BYTES} bytes"
            )
        return v

    @model_validator(mode="after")
    def require_jwt_secret(self) -> "APISettings":
        if not self.jwt_secret:
            raise ValueError(
                "SESSIONWARD_API_JWT_SECRET must be set. Generate one with: "
                'python -c "import base64, secrets; '
                'print(base64.b64encode(secrets.token_bytes(32)).decode())"'
            )
        return self


@lru_cache
def get_settings() -> APISettings:
    """Cached settings read from the environment."""
    return APISettings()
