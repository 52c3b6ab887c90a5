"""Response models shared by the HTTP routes."""

from typing import List, Optional

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Standard error response body."""

    detail: str = Field(description="Error message")
    error_type: str = Field(description="Error type identifier")


class RetryErrorDetail(ErrorDetail):
    retry_after: int = Field(description="Seconds until the request may be retried")


class PolicyErrorDetail(ErrorDetail):
    violations: List[str] = Field(description="Violated password rule codes, in rule order")
    messages: List[str] = Field(description="Human-readable message per violation")


class ConflictErrorDetail(ErrorDetail):
    provider: Optional[str] = Field(default=None, description="Provider owning the email")


class HealthCheckResponse(BaseModel):
    """Health check endpoint response."""

    status: str = Field(description="Health status ('ok' or 'error')")
    version: str = Field(description="API version string")


# Reusable responses dicts for OpenAPI documentation
AUTH_ERROR_RESPONSES = {
    401: {"model": ErrorDetail, "description": "Missing, invalid or expired access token"},
}

LOGIN_ERROR_RESPONSES = {
    401: {"model": ErrorDetail, "description": "Invalid credentials"},
    403: {"model": ErrorDetail, "description": "Account disabled"},
    423: {"model": RetryErrorDetail, "description": "Account locked after repeated failures"},
    429: {"model": RetryErrorDetail, "description": "Too many failed attempts from this address"},
}

SIGNUP_ERROR_RESPONSES = {
    400: {"model": PolicyErrorDetail, "description": "Password violates the password policy"},
    409: {"model": ConflictErrorDetail, "description": "Email already registered"},
}
