"""Pydantic schemas for token generation, validation and revocation.

Wire JSON is camelCase; both camelCase and snake_case are accepted on input.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from authhub.services.errors import ValidationOutcome


def _now() -> datetime:
    return datetime.now(UTC)


class WireModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerateRequest(WireModel):
    """Request for token generation."""

    username: str = Field(..., min_length=1, max_length=50)
    password: str | None = Field(
        default=None,
        description="User password. When present, the role is taken from the verified user.",
    )
    role: str | None = Field(
        default=None,
        description="Role to embed. Only honoured for trusted callers presenting a service key.",
    )


class TokenResponse(WireModel):
    """An issued token."""

    token: str
    type: str = "Bearer"
    expires_in: int = Field(description="Token lifetime in seconds")
    username: str | None = None
    role: str | None = None
    issued_at: datetime | None = None
    expires_at: datetime | None = None


class ValidationRequest(WireModel):
    """Request for token validation."""

    token: str = Field(..., min_length=1)
    username: str | None = Field(
        default=None,
        description="Expected token owner. Validation fails if the token belongs to someone else.",
    )


class ValidationResult(WireModel):
    """Result of a validation request."""

    valid: bool
    outcome: ValidationOutcome = ValidationOutcome.INVALID
    username: str | None = None
    role: str | None = None
    message: str | None = None
    validated_at: datetime = Field(default_factory=_now)
    expires_at: datetime | None = None
    remaining_seconds: int | None = None

    @model_validator(mode="after")
    def sync_outcome(self) -> "ValidationResult":
        # Remote authorities may omit the outcome field; derive it from the flag
        if self.valid:
            self.outcome = ValidationOutcome.VALID
        elif self.outcome is ValidationOutcome.VALID:
            self.outcome = ValidationOutcome.INVALID
        return self

    @classmethod
    def success(
        cls, username: str, role: str, expires_at: datetime, now: datetime | None = None
    ) -> "ValidationResult":
        now = now or _now()
        remaining = max(0, int((expires_at - now).total_seconds()))
        return cls(
            valid=True,
            outcome=ValidationOutcome.VALID,
            username=username,
            role=role,
            message="Token is valid",
            validated_at=now,
            expires_at=expires_at,
            remaining_seconds=remaining,
        )

    @classmethod
    def invalid(cls, message: str) -> "ValidationResult":
        return cls(valid=False, outcome=ValidationOutcome.INVALID, message=message)

    @classmethod
    def revoked(cls) -> "ValidationResult":
        return cls(valid=False, outcome=ValidationOutcome.REVOKED, message="Token has been revoked")

    @classmethod
    def expired(cls) -> "ValidationResult":
        return cls(valid=False, outcome=ValidationOutcome.EXPIRED, message="Token has expired")

    @classmethod
    def malformed(cls) -> "ValidationResult":
        return cls(valid=False, outcome=ValidationOutcome.MALFORMED, message="Token is malformed")

    @classmethod
    def unavailable(cls, message: str) -> "ValidationResult":
        return cls(valid=False, outcome=ValidationOutcome.UNAVAILABLE, message=message)


class RevocationRequest(WireModel):
    """Request for token revocation."""

    token: str = Field(..., min_length=1)
    reason: str | None = Field(default=None, max_length=255)
    revoke_all_user_tokens: bool = Field(
        default=False,
        description="Revoke every active token held by the token's owner",
    )


class RevocationResult(WireModel):
    """Result of a revocation request."""

    revoked: bool
    message: str
    username: str | None = None
    tokens_revoked: int = 0
    revoked_at: datetime = Field(default_factory=_now)
    unavailable: bool = Field(
        default=False,
        exclude=True,
        description="Set by remote clients when the authority could not be reached",
    )

    @classmethod
    def success(cls, message: str, username: str, tokens_revoked: int) -> "RevocationResult":
        return cls(revoked=True, message=message, username=username, tokens_revoked=tokens_revoked)

    @classmethod
    def failure(cls, message: str, unavailable: bool = False) -> "RevocationResult":
        return cls(revoked=False, message=message, unavailable=unavailable)


class UserTokenStats(WireModel):
    """Active token statistics for one user."""

    username: str
    active_token_count: int
    timestamp: datetime = Field(default_factory=_now)


class ServiceStatus(WireModel):
    """Liveness information for the token service."""

    service: str
    status: str
    version: str
    storage_type: str
    centralized: bool = False
    timestamp: datetime = Field(default_factory=_now)


class Envelope(WireModel):
    """Standard response wrapper used by the token service router."""

    success: bool
    message: str
    timestamp: datetime = Field(default_factory=_now)
    data: Any = None
    error_code: str | None = None
