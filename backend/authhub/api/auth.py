"""Authentication API endpoints and authorization dependencies."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from authhub.middleware.request_auth import extract_bearer_token
from authhub.schemas.auth import ErrorResponse, LoginRequest, LoginResponse, PrincipalResponse
from authhub.schemas.token import RevocationRequest, RevocationResult, ValidationRequest
from authhub.services.credentials import CredentialVerifier, Principal
from authhub.services.errors import (
    InvalidCredentialsError,
    RemoteAuthorityRejected,
    RemoteAuthorityUnavailable,
)
from authhub.services.token_authority import TokenAuthority

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def get_authority(request: Request) -> TokenAuthority:
    """Dependency returning the configured (possibly composed) authority."""
    return request.app.state.authority


def get_credential_verifier(request: Request) -> CredentialVerifier:
    """Dependency returning the credential verifier."""
    return request.app.state.credentials


def get_current_principal(request: Request) -> Principal:
    """Dependency returning the principal resolved by the authentication middleware."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Include a valid token in Authorization: Bearer <token>.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_role(role: str) -> Callable[..., Principal]:
    """Dependency factory: the caller must hold ``role``."""
    required = f"ROLE_{role.upper()}"

    def checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.authority != required:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {role.upper()} required",
            )
        return principal

    return checker


def _error_response(status_code: int, error: str, message: str, path: str) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        message=message,
        status=status_code,
        timestamp=datetime.now(UTC),
        path=path,
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body, by_alias=True))


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
)
async def login(
    body: LoginRequest,
    request: Request,
    credentials: CredentialVerifier = Depends(get_credential_verifier),
    authority: TokenAuthority = Depends(get_authority),
):
    """Authenticate and get a bearer token.

    The token is issued by the centralized authority when one is configured,
    falling back to local issuance if enabled.
    """
    path = request.url.path
    try:
        principal = credentials.authenticate(body.username, body.password)
    except InvalidCredentialsError:
        logger.warning(f"Authentication failed for user: {body.username}")
        return _error_response(
            status.HTTP_401_UNAUTHORIZED,
            "Authentication Failed",
            "Invalid username or password. Please check your credentials and try again.",
            path,
        )

    try:
        issued = await authority.generate_token(principal.username, principal.role)
    except RemoteAuthorityUnavailable as e:
        logger.error(f"Token generation unavailable for user {principal.username}: {e}")
        return _error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Service Unavailable",
            "Token service is unavailable. Please try again later.",
            path,
        )
    except RemoteAuthorityRejected as e:
        logger.error(f"Token generation rejected for user {principal.username}: {e}")
        return _error_response(
            status.HTTP_502_BAD_GATEWAY,
            "Bad Gateway",
            "Token service rejected the request.",
            path,
        )

    logger.info(f"User logged in: {principal.username}")
    return LoginResponse(
        token=issued.token,
        type=issued.type,
        username=principal.username,
        role=principal.role,
        expires_in=issued.expires_in,
        issued_at=issued.issued_at or datetime.now(UTC),
    )


@router.post("/validate")
async def validate_token(
    authorization: str | None = Header(default=None),
    authority: TokenAuthority = Depends(get_authority),
) -> JSONResponse:
    """Validate the bearer token in the Authorization header.

    Returns 200 with the token owner and role, or 401 with ``valid: false``.
    """
    token = extract_bearer_token(authorization)
    if token is None:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={
                "valid": False,
                "error": "Missing or invalid Authorization header",
                "message": "Expected Authorization: Bearer <token>",
            },
        )

    result = await authority.validate_token(ValidationRequest(token=token))
    if result.valid:
        return JSONResponse(
            content={
                "valid": True,
                "username": result.username,
                "role": result.role,
                "message": result.message,
            }
        )
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={
            "valid": False,
            "error": "Token validation failed",
            "reason": result.outcome.value,
            "message": result.message or "Token is invalid or expired",
        },
    )


@router.post("/logout", response_model=RevocationResult)
async def logout(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    authority: TokenAuthority = Depends(get_authority),
) -> RevocationResult:
    """Revoke the token used for this request."""
    result = await authority.revoke_token(
        RevocationRequest(token=request.state.token, reason="logout")
    )
    logger.info(f"User logged out: {principal.username} (revoked={result.revoked})")
    return result


@router.get("/me", response_model=PrincipalResponse)
async def get_current_user_info(
    principal: Principal = Depends(get_current_principal),
) -> PrincipalResponse:
    """Get the authenticated caller."""
    return PrincipalResponse(
        username=principal.username,
        role=principal.role,
        authority=principal.authority,
    )
