# authhub Pydantic Schemas
from authhub.schemas.auth import ErrorResponse, LoginRequest, LoginResponse, PrincipalResponse
from authhub.schemas.token import (
    Envelope,
    GenerateRequest,
    RevocationRequest,
    RevocationResult,
    ServiceStatus,
    TokenResponse,
    UserTokenStats,
    ValidationRequest,
    ValidationResult,
)

__all__ = [
    "Envelope",
    "ErrorResponse",
    "GenerateRequest",
    "LoginRequest",
    "LoginResponse",
    "PrincipalResponse",
    "RevocationRequest",
    "RevocationResult",
    "ServiceStatus",
    "TokenResponse",
    "UserTokenStats",
    "ValidationRequest",
    "ValidationResult",
]
