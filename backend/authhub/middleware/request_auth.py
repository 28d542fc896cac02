"""Bearer token authentication middleware.

Resolves the bearer token of every non-public request into a principal
(username + single role) stored on ``request.state.principal``. The
middleware never rejects a request: requests with a missing or invalid
token continue anonymously, and route dependencies decide whether a
principal is required.
"""

import logging
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from authhub.schemas.token import ValidationRequest
from authhub.services.credentials import Principal
from authhub.services.fallback_authority import FallbackAuthority
from authhub.services.token_authority import TokenAuthority

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

# Paths resolved without a token (exact or segment-boundary match)
PUBLIC_PATHS = [
    "/api/v1/auth/login",
    "/api/v1/auth/validate",
    "/api/v1/jwt/generate",
    "/api/v1/jwt/validate",
    "/api/v1/jwt/revoke",
    "/api/v1/jwt/status",
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/static",
]

# Paths public only on exact match
PUBLIC_EXACT_PATHS = ["/", "/favicon.ico"]


def is_public_path(path: str) -> bool:
    """Whether ``path`` bypasses token resolution."""
    if path in PUBLIC_EXACT_PATHS:
        return True
    return any(path == public or path.startswith(public + "/") for public in PUBLIC_PATHS)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX) :].strip()
    return token or None


class RequestAuthenticatorMiddleware(BaseHTTPMiddleware):
    """Attach the authenticated principal, if any, to each request.

    The authority is read from ``app.state.authority`` unless one is passed
    explicitly. When it is a FallbackAuthority, the remote lookup is bounded
    by ``resolve_timeout`` seconds.
    """

    def __init__(
        self,
        app: ASGIApp,
        authority: TokenAuthority | None = None,
        resolve_timeout: float | None = None,
    ):
        super().__init__(app)
        self._authority = authority
        self._resolve_timeout = resolve_timeout

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        # CORS preflight requests never carry credentials
        if request.method == "OPTIONS" or is_public_path(path):
            return await call_next(request)

        # Already resolved further up the stack
        if getattr(request.state, "principal", None) is not None:
            return await call_next(request)

        request.state.principal = None
        token = extract_bearer_token(request.headers.get("Authorization"))
        if token is None:
            logger.debug(f"No bearer token for: {request.method} {path}")
            return await call_next(request)

        principal = await self._resolve(request, token)
        if principal is not None:
            request.state.principal = principal
            request.state.token = token
        return await call_next(request)

    async def _resolve(self, request: Request, token: str) -> Principal | None:
        authority = self._authority or getattr(request.app.state, "authority", None)
        if authority is None:
            logger.error("No token authority configured; request left unauthenticated")
            return None

        validation = ValidationRequest(token=token)
        if isinstance(authority, FallbackAuthority) and self._resolve_timeout:
            deadline = time.monotonic() + self._resolve_timeout
            result = await authority.validate_token(validation, deadline=deadline)
        else:
            result = await authority.validate_token(validation)

        if not result.valid or not result.username or not result.role:
            logger.info(
                f"Token rejected for {request.method} {request.url.path}: {result.message}"
            )
            return None
        return Principal(username=result.username, role=result.role)
