"""Pydantic schemas for the login API."""

from datetime import datetime

from pydantic import Field

from authhub.schemas.token import WireModel


class LoginRequest(WireModel):
    """Request for login."""

    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=1, max_length=128)


class LoginResponse(WireModel):
    """Response with a bearer token."""

    token: str
    type: str = "Bearer"
    username: str
    role: str
    expires_in: int = Field(description="Token lifetime in seconds")
    issued_at: datetime


class PrincipalResponse(WireModel):
    """The authenticated caller."""

    username: str
    role: str
    authority: str


class ErrorResponse(WireModel):
    """Structured error body for authentication failures."""

    error: str
    message: str
    status: int
    timestamp: datetime
    path: str
