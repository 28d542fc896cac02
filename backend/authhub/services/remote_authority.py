"""Client for a centralized token authority reachable over HTTP."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx
from pydantic import ValidationError

from authhub.core.retry import RetryConfig, RetryDeadlineExceeded, is_retryable, retry_async
from authhub.schemas.token import (
    RevocationRequest,
    RevocationResult,
    TokenResponse,
    ValidationRequest,
    ValidationResult,
)
from authhub.services.errors import RemoteAuthorityRejected, RemoteAuthorityUnavailable
from authhub.services.token_authority import TokenAuthority

logger = logging.getLogger(__name__)


def unwrap_envelope(body: Any) -> Any:
    """Return the payload of a ``{success, data, message}`` envelope, or ``body`` itself.

    Raises RemoteAuthorityRejected when the envelope reports failure.
    """
    if isinstance(body, dict) and "success" in body and ("data" in body or not body["success"]):
        if not body["success"]:
            raise RemoteAuthorityRejected(body.get("message") or "Remote authority reported failure")
        return body.get("data")
    return body


class RemoteAuthorityClient(TokenAuthority):
    """Calls a remote authority's ``/generate``, ``/validate`` and ``/revoke`` endpoints.

    Generation and validation are retried with exponential backoff on
    transport failures and gateway errors. Well-formed refusals (4xx) are
    not retried. Revocation is attempted once.
    """

    name = "remote"

    def __init__(
        self,
        base_url: str,
        *,
        service_key: str | None = None,
        retry_config: RetryConfig | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.retry_config = retry_config or RetryConfig()
        self._service_key = service_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._service_key:
            headers["X-API-Key"] = self._service_key
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=self._timeout,
                    headers=self._get_headers(),
                    transport=self._transport,
                )
            return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send one request. Raises HTTPStatusError for any non-2xx status."""
        client = await self._get_client()
        response = await client.request(method, path, **kwargs)
        response.raise_for_status()
        return response

    async def _send_with_retry(
        self, method: str, path: str, operation: str, deadline: float | None = None, **kwargs: Any
    ) -> httpx.Response:
        """Send with retries, translating exhaustion into RemoteAuthorityUnavailable."""
        try:
            return await retry_async(
                lambda: self._send(method, path, **kwargs),
                config=self.retry_config,
                deadline=deadline,
                operation=f"Remote {operation}",
            )
        except RetryDeadlineExceeded as e:
            raise RemoteAuthorityUnavailable(
                f"Token service communication abandoned after {e.attempts} attempts: deadline exceeded",
                attempts=e.attempts,
            ) from e
        except Exception as e:
            if is_retryable(e, self.retry_config):
                attempts = self.retry_config.max_attempts
                raise RemoteAuthorityUnavailable(
                    f"Token service communication error after {attempts} attempts",
                    attempts=attempts,
                ) from e
            if isinstance(e, httpx.HTTPError) and not isinstance(e, httpx.HTTPStatusError):
                # Redirect loops, undecodable bodies and the like: no usable answer
                raise RemoteAuthorityUnavailable(
                    f"Token service communication error: {type(e).__name__}", attempts=1
                ) from e
            raise

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RemoteAuthorityRejected(
                "Remote authority returned a non-JSON body", response.status_code
            ) from e

    async def generate_token(
        self, username: str, role: str, deadline: float | None = None
    ) -> TokenResponse:
        """Request a token for an already-authenticated user.

        Raises:
            RemoteAuthorityUnavailable: all attempts failed at the transport level
            RemoteAuthorityRejected: the authority refused or answered unusably
        """
        logger.debug(f"Requesting remote token for user: {username}")
        try:
            response = await self._send_with_retry(
                "POST",
                "/generate",
                "token generation",
                deadline=deadline,
                json={"username": username, "role": role},
            )
        except httpx.HTTPStatusError as e:
            raise RemoteAuthorityRejected(
                f"Remote authority refused token generation (HTTP {e.response.status_code})",
                e.response.status_code,
            ) from e

        data = unwrap_envelope(self._json(response))
        expires_in = data.get("expiresIn", data.get("expires_in")) if isinstance(data, dict) else None
        if not isinstance(data, dict) or not data.get("token") or expires_in is None:
            raise RemoteAuthorityRejected(
                "Invalid response from remote authority - missing token or expiration"
            )
        try:
            token = TokenResponse.model_validate(data)
        except ValidationError as e:
            raise RemoteAuthorityRejected(f"Invalid token response: {e}") from e

        # Older deployments omit the echo fields
        return token.model_copy(
            update={"username": token.username or username, "role": token.role or role}
        )

    async def validate_token(
        self, request: ValidationRequest, deadline: float | None = None
    ) -> ValidationResult:
        """Validate remotely. Failure to reach the authority yields an UNAVAILABLE result."""
        try:
            response = await self._send_with_retry(
                "POST",
                "/validate",
                "token validation",
                deadline=deadline,
                json=request.model_dump(by_alias=True, exclude_none=True),
            )
            data = unwrap_envelope(self._json(response))
            return ValidationResult.model_validate(data)
        except RemoteAuthorityUnavailable as e:
            logger.error(str(e))
            return ValidationResult.unavailable(str(e))
        except httpx.HTTPStatusError as e:
            logger.warning(f"Remote token validation refused: HTTP {e.response.status_code}")
            return ValidationResult.invalid(self._message_from(e.response, "Token validation failed"))
        except (RemoteAuthorityRejected, ValidationError) as e:
            logger.warning(f"Unusable validation response from remote authority: {e}")
            return ValidationResult.invalid("Token validation failed")

    async def revoke_token(self, request: RevocationRequest) -> RevocationResult:
        """Revoke remotely with a single attempt."""
        try:
            response = await self._send(
                "POST", "/revoke", json=request.model_dump(by_alias=True, exclude_none=True)
            )
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to revoke token remotely. Status: {e.response.status_code}")
            return RevocationResult.failure(
                self._message_from(e.response, "Remote authority refused revocation")
            )
        except httpx.HTTPError as e:
            logger.error(f"Error communicating with token service for revocation: {e}")
            return RevocationResult.failure(
                "Token service communication error during revocation", unavailable=True
            )

        try:
            data = unwrap_envelope(self._json(response))
            return RevocationResult.model_validate(data)
        except (RemoteAuthorityRejected, ValidationError) as e:
            return RevocationResult.failure(f"Unusable revocation response: {e}")

    async def active_token_count(self, username: str) -> int:
        try:
            response = await self._send("GET", f"/user/{username}/stats")
            data = unwrap_envelope(self._json(response))
        except (httpx.HTTPError, RemoteAuthorityRejected) as e:
            logger.error(f"Error getting remote token count for user {username}: {e}")
            return 0
        if isinstance(data, dict):
            return int(data.get("activeTokenCount", 0) or 0)
        return 0

    async def status(self) -> dict[str, Any]:
        started = time.monotonic()
        try:
            response = await self._send("GET", "/status")
            data = unwrap_envelope(self._json(response))
        except (httpx.HTTPError, RemoteAuthorityRejected) as e:
            return {"authority": self.name, "reachable": False, "error": str(e)}
        return {
            "authority": self.name,
            "reachable": True,
            "latency_ms": round((time.monotonic() - started) * 1000, 1),
            "remote": data,
        }

    @staticmethod
    def _message_from(response: httpx.Response, default: str) -> str:
        try:
            body = response.json()
        except ValueError:
            return default
        if isinstance(body, dict):
            message = body.get("message") or body.get("detail")
            if isinstance(message, str) and message:
                return message
        return default
