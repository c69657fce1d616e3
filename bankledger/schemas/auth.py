"""
Pydantic schemas for authentication and two-factor endpoints.

Pydantic validates incoming data automatically; a missing field, a bad
email or a malformed code is answered with 400 before our code runs.

The two-factor challenge is serialized in camelCase (expiresInMinutes,
otpauthUrl, manualCode) because that is what the web client reads.
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from bankledger.schemas.user import UserResponse


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""
    username: str = Field(min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    email: EmailStr
    password: str


class TwoFactorCodeRequest(BaseModel):
    """A six-digit TOTP code."""
    code: str = Field(pattern=r"^\d{6}$")


class TwoFactorChallengeResponse(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    status: str
    expires_in_minutes: int
    # Only present while setting up
    otpauth_url: str | None = None
    manual_code: str | None = None


class ChallengeResponse(BaseModel):
    """Response body for register, login and regenerate: a pending challenge, no session."""
    model_config = ConfigDict(populate_by_name=True)

    message: str
    user: UserResponse | None = None
    two_factor: TwoFactorChallengeResponse = Field(alias="twoFactor")


class SessionResponse(BaseModel):
    """Response body for a completed two-factor verification."""
    message: str
    user: UserResponse
    token: str
    token_type: str = "bearer"


class MessageResponse(BaseModel):
    message: str
