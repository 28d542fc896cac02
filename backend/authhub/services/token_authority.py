"""Token authority: generation, validation and revocation of bearer tokens."""

import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any

from authhub.schemas.token import (
    RevocationRequest,
    RevocationResult,
    TokenResponse,
    ValidationRequest,
    ValidationResult,
)
from authhub.services.errors import TokenStatus, TokenStoreError
from authhub.services.token_codec import Claims, TokenCodec
from authhub.services.token_store import TokenStore

logger = logging.getLogger(__name__)


class TokenAuthority(ABC):
    """Capability shared by local, remote and composed authorities."""

    name: str = "authority"

    @abstractmethod
    async def generate_token(self, username: str, role: str) -> TokenResponse:
        """Issue a token. Raises only when no token can be produced."""

    @abstractmethod
    async def validate_token(self, request: ValidationRequest) -> ValidationResult:
        """Validate a token. Never raises; failures are reported in the result."""

    @abstractmethod
    async def revoke_token(self, request: RevocationRequest) -> RevocationResult:
        """Revoke one token or all tokens of its owner. Never raises."""

    @abstractmethod
    async def active_token_count(self, username: str) -> int:
        """Number of tokens currently indexed as active for ``username``."""

    @abstractmethod
    async def status(self) -> dict[str, Any]:
        """Liveness details for status endpoints."""

    async def close(self) -> None:
        return None


class LocalAuthority(TokenAuthority):
    """In-process authority backed by a TokenCodec and a TokenStore.

    Holds no state of its own; all shared state lives in the store.
    """

    name = "local"

    def __init__(self, codec: TokenCodec, store: TokenStore):
        self.codec = codec
        self.store = store

    async def generate_token(self, username: str, role: str) -> TokenResponse:
        logger.info(f"Generating token for user: {username}")
        token = self.codec.encode(username, role)
        claims = self.codec.decode(token).claims

        await self._index_token(token, username)

        return TokenResponse(
            token=token,
            type="Bearer",
            expires_in=self.codec.ttl_seconds,
            username=username,
            role=role,
            issued_at=claims.issued_at if claims else None,
            expires_at=claims.expires_at if claims else None,
        )

    async def validate_token(self, request: ValidationRequest) -> ValidationResult:
        try:
            return await self._validate(request)
        except Exception as e:
            logger.exception("Unexpected error validating token")
            return ValidationResult.invalid(f"Token validation error: {e}")

    async def _validate(self, request: ValidationRequest) -> ValidationResult:
        token = request.token

        if await self.store.is_blacklisted(token):
            logger.warning("Attempt to use revoked token")
            return ValidationResult.revoked()

        decoded = self.codec.decode(token)
        if decoded.status is TokenStatus.EXPIRED:
            return ValidationResult.expired()
        if decoded.status is TokenStatus.MALFORMED:
            return ValidationResult.malformed()
        if not decoded.ok or decoded.claims is None:
            logger.warning(f"Token rejected: {decoded.status.value}")
            return ValidationResult.invalid("Token validation failed")

        claims = decoded.claims
        if not self.codec.is_valid(token, claims.subject):
            return ValidationResult.invalid("Token validation failed")

        if request.username is not None and request.username != claims.subject:
            logger.warning(
                f"Username mismatch in token validation: expected {request.username}, "
                f"found {claims.subject}"
            )
            return ValidationResult.invalid("Username mismatch")

        return ValidationResult.success(
            claims.subject, claims.role, claims.expires_at, now=self.codec.now()
        )

    async def is_token_valid_and_active(self, token: str) -> bool:
        """Fast check: not revoked and cryptographically valid."""
        if await self.store.is_blacklisted(token):
            return False
        decoded = self.codec.decode(token)
        return decoded.ok and decoded.claims is not None

    async def revoke_token(self, request: RevocationRequest) -> RevocationResult:
        try:
            return await self._revoke(request)
        except Exception as e:
            logger.exception("Unexpected error revoking token")
            return RevocationResult.failure(f"Failed to revoke token: {e}")

    async def _revoke(self, request: RevocationRequest) -> RevocationResult:
        decoded = self.codec.decode(request.token)
        # Expired tokens still identify their owner; forged or garbled ones do not
        if decoded.claims is None:
            return RevocationResult.failure("Token was already revoked or invalid")

        username = decoded.claims.subject
        reason = f" (reason: {request.reason})" if request.reason else ""

        if request.revoke_all_user_tokens:
            count = await self._revoke_all(username, request.token if decoded.ok else None)
            logger.info(f"Revoked {count} tokens for user: {username}{reason}")
            return RevocationResult.success(
                f"All tokens revoked successfully for user: {username}", username, count
            )

        if await self.store.is_blacklisted(request.token):
            return RevocationResult.failure("Token was already revoked or invalid")

        if not await self._revoke_single(request.token, decoded.claims):
            return RevocationResult.failure("Token was already revoked or invalid")

        logger.info(f"Token revoked for user: {username}{reason}")
        return RevocationResult.success("Token revoked successfully", username, 1)

    async def _revoke_single(self, token: str, claims: Claims) -> bool:
        """Blacklist ``token`` for its remaining lifetime and drop it from the indexes."""
        try:
            await self.store.blacklist(
                token, claims.subject, self.codec.seconds_until_expiry(claims)
            )
        except TokenStoreError as e:
            logger.error(f"Failed to blacklist token for user {claims.subject}: {e}")
            return False

        try:
            await self.store.remove_active(token)
            await self.store.remove_from_user_set(claims.subject, token)
        except TokenStoreError as e:
            logger.warning(f"Token blacklisted but index cleanup failed: {e}")
        return True

    async def _revoke_all(self, username: str, presented_token: str | None) -> int:
        try:
            tokens = await self.store.members_of_user_set(username)
        except TokenStoreError as e:
            logger.error(f"Failed to read active tokens for user {username}: {e}")
            tokens = set()

        # The presented token may be missing from the index if indexing failed at issuance
        if presented_token and not await self.store.is_blacklisted(presented_token):
            tokens.add(presented_token)

        revoked = 0
        for token in tokens:
            decoded = self.codec.decode(token)
            if decoded.claims is None or decoded.claims.subject != username:
                continue
            if await self._revoke_single(token, decoded.claims):
                revoked += 1

        try:
            await self.store.delete_user_set(username)
        except TokenStoreError as e:
            logger.warning(f"Failed to clear token set for user {username}: {e}")
        return revoked

    async def active_token_count(self, username: str) -> int:
        try:
            return len(await self.store.members_of_user_set(username))
        except TokenStoreError as e:
            logger.error(f"Error getting active token count for user {username}: {e}")
            return 0

    async def status(self) -> dict[str, Any]:
        return {
            "authority": self.name,
            "storage_type": self.store.storage_type,
            "storage_connected": await self.store.ping(),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    async def _index_token(self, token: str, username: str) -> None:
        """Record a new token in the active indexes. Failure does not block issuance."""
        ttl = self.codec.ttl_seconds
        try:
            await self.store.put_active(token, username, ttl)
            await self.store.add_to_user_set(username, token, ttl)
        except TokenStoreError as e:
            logger.warning(f"Failed to index token for user {username}: {e}")
