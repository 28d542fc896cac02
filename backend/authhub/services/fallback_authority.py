"""Remote-first authority that falls back to a local authority when the remote is unreachable."""

import logging
from typing import Any

from authhub.schemas.token import (
    RevocationRequest,
    RevocationResult,
    TokenResponse,
    ValidationRequest,
    ValidationResult,
)
from authhub.services.errors import RemoteAuthorityUnavailable, ValidationOutcome
from authhub.services.remote_authority import RemoteAuthorityClient
from authhub.services.token_authority import LocalAuthority, TokenAuthority

logger = logging.getLogger(__name__)


class FallbackAuthority(TokenAuthority):
    """Tries the remote authority first.

    Only unreachability triggers the fallback. A remote answer, positive or
    negative, is final. With fallback disabled, unreachability surfaces as
    RemoteAuthorityUnavailable (generation) or a negative result (validation,
    revocation).
    """

    name = "fallback"

    def __init__(
        self,
        remote: RemoteAuthorityClient,
        local: LocalAuthority,
        enable_fallback: bool = True,
    ):
        self.remote = remote
        self.local = local
        self.enable_fallback = enable_fallback

    async def generate_token(
        self, username: str, role: str, deadline: float | None = None
    ) -> TokenResponse:
        try:
            token = await self.remote.generate_token(username, role, deadline=deadline)
            logger.info(f"Generated token via centralized service for user: {username}")
            return token
        except RemoteAuthorityUnavailable as e:
            logger.warning(f"Centralized token service failed: {e}")
            if not self.enable_fallback:
                raise
            logger.info(f"Falling back to local token generation for user: {username}")
            return await self.local.generate_token(username, role)

    async def validate_token(
        self, request: ValidationRequest, deadline: float | None = None
    ) -> ValidationResult:
        result = await self.remote.validate_token(request, deadline=deadline)
        if result.outcome is not ValidationOutcome.UNAVAILABLE:
            return result
        if not self.enable_fallback:
            return ValidationResult.unavailable(
                "Centralized token service is unavailable and fallback is disabled"
            )
        logger.info("Falling back to local token validation")
        return await self.local.validate_token(request)

    async def revoke_token(self, request: RevocationRequest) -> RevocationResult:
        result = await self.remote.revoke_token(request)
        if not result.unavailable or not self.enable_fallback:
            return result
        logger.info("Falling back to local token revocation")
        return await self.local.revoke_token(request)

    async def active_token_count(self, username: str) -> int:
        # Tokens issued during an outage are only known to the local store
        return await self.remote.active_token_count(username) + await self.local.active_token_count(
            username
        )

    async def status(self) -> dict[str, Any]:
        return {
            "authority": self.name,
            "fallback_enabled": self.enable_fallback,
            "remote": await self.remote.status(),
            "local": await self.local.status(),
        }

    async def close(self) -> None:
        await self.remote.close()
        await self.local.close()
