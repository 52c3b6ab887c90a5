"""Pydantic schemas for authentication requests and responses."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ..core.models import AuthProvider


def normalize_email(email: str) -> str:
    """Canonical form used for storage and lookups."""
    return email.strip().lower()


class _EmailMixin(BaseModel):
    @field_validator("email", check_fields=False)
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        # EmailStr only lower-cases the domain part
        return normalize_email(v)


class SignupRequest(_EmailMixin):
    """Request schema for local account registration."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name",
        examples=["Alice"],
    )
    email: EmailStr = Field(
        ...,
        description="Email address (case-insensitive)",
        examples=["alice@example.com"],
    )
    password: str = Field(
        ...,
        min_length=1,
        max_length=256,
        description="Password; checked against the password policy",
        examples=["Secure123!"],
    )


class LoginRequest(_EmailMixin):
    """Request schema for password login."""

    email: EmailStr = Field(
        ...,
        description="Email address used at registration",
        examples=["alice@example.com"],
    )
    password: str = Field(
        ...,
        min_length=1,
        max_length=256,
        description="Password for authentication",
    )


class RefreshRequest(BaseModel):
    """Request schema for token refresh."""

    refresh_token: str = Field(
        ...,
        min_length=1,
        description="Session token returned by signup or login",
    )


class LogoutRequest(BaseModel):
    """Request schema for logout; an absent token is accepted and ignored."""

    refresh_token: Optional[str] = Field(
        default=None,
        description="Session token to revoke",
    )


class AuthResponse(BaseModel):
    """Tokens handed to the client after signup, login, refresh or external login."""

    access_token: str = Field(..., description="Signed access token (JWT)")
    refresh_token: str = Field(..., description="Opaque session token; unchanged by refresh")
    token_type: str = Field(default="Bearer", description="Token type (always 'Bearer')")
    expires_in: int = Field(..., description="Access token lifetime in seconds")


class LogoutResponse(BaseModel):
    success: bool = Field(default=True)
    message: str = Field(default="Logged out successfully")


class LogoutAllResponse(BaseModel):
    success: bool = Field(default=True)
    revoked_sessions: int = Field(..., description="Number of sessions revoked")


class VerifyEmailRequest(BaseModel):
    """Request schema for confirming an email address."""

    token: str = Field(
        ...,
        min_length=1,
        description="Verification token delivered to the email address",
    )


class MessageResponse(BaseModel):
    success: bool = Field(default=True)
    message: str = Field(..., description="Outcome of the operation")


class ExternalIdentity(_EmailMixin):
    """Identity asserted by an external provider after its handshake succeeded."""

    provider: AuthProvider = Field(..., description="Identity provider")
    provider_id: str = Field(..., min_length=1, description="Subject id at the provider")
    email: EmailStr = Field(..., description="Verified email")
    name: str = Field(..., min_length=1, max_length=100, description="Display name")
    image_url: Optional[str] = Field(default=None, description="Profile image URL")

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: AuthProvider) -> AuthProvider:
        if v == AuthProvider.LOCAL:
            raise ValueError("External identities cannot use the local provider")
        return v


class AccountInfo(BaseModel):
    """Public view of an account."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Account ID")
    email: str = Field(..., description="Email address")
    name: str = Field(..., description="Display name")
    image_url: Optional[str] = Field(None, description="Profile image URL")
    email_verified: bool = Field(..., description="Whether the email is verified")
    provider: AuthProvider = Field(..., description="Identity provider")
    created_at: Optional[datetime] = Field(None, description="Registration timestamp")
    last_login_at: Optional[datetime] = Field(None, description="Last login timestamp")


class SessionInfo(BaseModel):
    """Public view of a session; the token itself is never returned."""

    model_config = ConfigDict(from_attributes=True)

    device_info: Optional[str] = Field(None, description="Client user agent")
    ip_address: Optional[str] = Field(None, description="Client network address")
    created_at: Optional[datetime] = Field(None, description="Session start")
    expires_at: datetime = Field(..., description="Session expiry")


class SessionListResponse(BaseModel):
    sessions: List[SessionInfo] = Field(default_factory=list)
    total: int = Field(..., description="Number of active sessions")
