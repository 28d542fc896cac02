"""authhub configuration, loaded from environment variables and an optional .env file."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Development-only signing secret. check_security_configuration() warns when it is in use.
DEFAULT_JWT_SECRET = "mySecretKeyForJWTTokenGenerationAndValidationInStudentManagementAPI2025"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: str = "Student Management Auth"
    app_version: str = "1.0.0"
    debug: bool = Field(default=False, validation_alias="AUTHHUB_DEBUG")

    log_level: str = "INFO"
    log_format: Literal["structured", "dev"] = "dev"

    # Token signing
    jwt_secret_key: str = Field(default=DEFAULT_JWT_SECRET, min_length=32)
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "student-management-api"
    jwt_expiration_seconds: int = Field(default=86400, ge=1)

    # Token store
    enable_persistent_store: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = Field(default=2.0, gt=0)
    fallback_to_memory: bool = True

    # Centralized token authority
    enable_centralized_service: bool = False
    centralized_service_url: str = "http://localhost:8081/api/v1/jwt"
    centralized_service_key: str | None = None
    centralized_max_attempts: int = Field(default=3, ge=1)
    centralized_backoff_base: float = Field(default=1.0, ge=0)
    centralized_backoff_cap: float = Field(default=5.0, ge=0)
    centralized_timeout: float = Field(default=5.0, gt=0)
    enable_fallback: bool = True

    # Trusted resource servers may request tokens without a password
    service_api_key: str | None = None

    # username:password:ROLE[|ROLE...] entries, comma separated
    seed_users: str = "user:password:USER,admin:admin123:ADMIN"

    cors_origins: str = "*"
    enable_metrics: bool = False

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """Only HMAC algorithms are usable with a shared secret."""
        if v not in ("HS256", "HS384", "HS512"):
            raise ValueError("JWT_ALGORITHM must be one of HS256, HS384, HS512")
        return v

    @field_validator("centralized_service_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_backoff(self) -> "Settings":
        if self.centralized_backoff_cap < self.centralized_backoff_base:
            raise ValueError("CENTRALIZED_BACKOFF_CAP must be >= CENTRALIZED_BACKOFF_BASE")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def check_security_configuration(self) -> list[str]:
        """Return warnings about insecure settings. Called once at startup."""
        warnings = []
        if self.jwt_secret_key == DEFAULT_JWT_SECRET:
            warnings.append(
                "JWT_SECRET_KEY is using the built-in development secret. "
                "Set a unique value before exposing this service."
            )
        if self.service_api_key and self.service_api_key == self.jwt_secret_key:
            warnings.append("SERVICE_API_KEY and JWT_SECRET_KEY have the same value.")
        if self.enable_centralized_service and not self.centralized_service_key:
            warnings.append(
                "Centralized token service is enabled without CENTRALIZED_SERVICE_KEY; "
                "remote token generation will require user passwords."
            )
        return warnings


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
