"""Token service API: the HTTP surface of a centralized token authority.

Every response is wrapped in the ``{success, message, timestamp, data}``
envelope. These endpoints always run against the in-process authority:
this service *is* the authority other deployments call.
"""

import logging
import secrets

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from authhub.core.config import Settings
from authhub.middleware.request_auth import extract_bearer_token
from authhub.schemas.token import (
    Envelope,
    GenerateRequest,
    RevocationRequest,
    ServiceStatus,
    UserTokenStats,
    ValidationRequest,
)
from authhub.services.credentials import DEFAULT_ROLE, CredentialVerifier, select_role
from authhub.services.errors import InvalidCredentialsError
from authhub.services.token_authority import LocalAuthority

from .auth import get_credential_verifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/jwt", tags=["token-service"])

SERVICE_NAME = "Centralized JWT Service"


def get_local_authority(request: Request) -> LocalAuthority:
    """Dependency returning the in-process authority."""
    return request.app.state.local_authority


def get_app_settings(request: Request) -> Settings:
    """Dependency returning the settings the application was built with."""
    return request.app.state.settings


def envelope(
    message: str,
    data: object = None,
    *,
    success: bool = True,
    error_code: str | None = None,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    """Build an enveloped JSON response."""
    body = Envelope(success=success, message=message, data=data, error_code=error_code)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body, by_alias=True, exclude_none=True),
    )


def has_service_key(api_key: str | None, settings: Settings) -> bool:
    """Whether ``api_key`` matches the configured service key."""
    expected = settings.service_api_key
    if not api_key or not expected:
        return False
    return secrets.compare_digest(api_key.encode(), expected.encode())


@router.post("/generate")
async def generate_token(
    body: GenerateRequest,
    x_api_key: str | None = Header(default=None),
    authority: LocalAuthority = Depends(get_local_authority),
    credentials: CredentialVerifier = Depends(get_credential_verifier),
    settings: Settings = Depends(get_app_settings),
) -> JSONResponse:
    """Generate a token.

    With a password the user is authenticated and the role comes from the
    verified user. Without one, the caller must present ``X-API-Key`` and the
    supplied role (default USER) is embedded.
    """
    logger.info(f"Token generation request for user: {body.username}")

    if body.password is not None:
        try:
            principal = credentials.authenticate(body.username, body.password)
        except InvalidCredentialsError:
            logger.warning(f"Authentication failed for user: {body.username} - Invalid credentials")
            return envelope(
                "Invalid username or password",
                success=False,
                error_code="AUTHENTICATION_FAILED",
                status_code=status.HTTP_401_UNAUTHORIZED,
            )
        username, role = principal.username, principal.role
    elif has_service_key(x_api_key, settings):
        username, role = body.username, select_role([body.role or DEFAULT_ROLE])
    else:
        logger.warning(f"Unauthenticated token generation attempt for user: {body.username}")
        return envelope(
            "Authentication failed",
            success=False,
            error_code="AUTHENTICATION_ERROR",
            status_code=status.HTTP_401_UNAUTHORIZED,
        )

    try:
        token = await authority.generate_token(username, role)
    except Exception:
        logger.exception(f"Error generating token for user: {username}")
        return envelope(
            "Internal server error occurred",
            success=False,
            error_code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return envelope("JWT token generated successfully", token)


@router.post("/validate")
async def validate_token(
    body: ValidationRequest,
    authority: LocalAuthority = Depends(get_local_authority),
) -> JSONResponse:
    """Validate a token. Invalid tokens are reported in ``data.valid``, not as an error."""
    result = await authority.validate_token(body)
    logger.debug(f"Token validation completed - valid: {result.valid}")
    return envelope("Token validation completed", result)


@router.get("/validate")
async def validate_token_from_header(
    authorization: str | None = Header(default=None),
    authority: LocalAuthority = Depends(get_local_authority),
) -> JSONResponse:
    """Validate the token carried in ``Authorization: Bearer <token>``."""
    token = extract_bearer_token(authorization)
    if token is None:
        return envelope(
            "Invalid Authorization header format",
            success=False,
            error_code="INVALID_HEADER",
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    result = await authority.validate_token(ValidationRequest(token=token))
    return envelope("Token validation completed", result)


@router.post("/revoke")
async def revoke_token(
    body: RevocationRequest,
    authority: LocalAuthority = Depends(get_local_authority),
) -> JSONResponse:
    """Revoke one token, or every token of its owner.

    Revoking an already revoked token is not an error: ``data.revoked`` is false.
    """
    result = await authority.revoke_token(body)
    logger.info(f"Token revocation completed - revoked: {result.revoked}")
    return envelope("Token revocation completed", result)


@router.get("/status")
async def service_status(
    authority: LocalAuthority = Depends(get_local_authority),
    settings: Settings = Depends(get_app_settings),
) -> JSONResponse:
    """Get service liveness and storage type."""
    data = ServiceStatus(
        service=SERVICE_NAME,
        status="RUNNING",
        version=settings.app_version,
        storage_type=authority.store.storage_type,
        centralized=settings.enable_centralized_service,
    )
    return envelope("JWT service status retrieved successfully", data)


@router.get("/user/{username}/stats")
async def user_token_stats(
    username: str,
    request: Request,
    x_api_key: str | None = Header(default=None),
    authority: LocalAuthority = Depends(get_local_authority),
    settings: Settings = Depends(get_app_settings),
) -> JSONResponse:
    """Get the active token count of a user.

    Allowed for the user themself, for ADMIN, and for callers holding the service key.
    """
    principal = getattr(request.state, "principal", None)
    if not has_service_key(x_api_key, settings):
        if principal is None:
            return envelope(
                "Authentication required",
                success=False,
                error_code="AUTHENTICATION_REQUIRED",
                status_code=status.HTTP_401_UNAUTHORIZED,
            )
        if principal.username != username and principal.authority != "ROLE_ADMIN":
            return envelope(
                "Not allowed to view token statistics for this user",
                success=False,
                error_code="FORBIDDEN",
                status_code=status.HTTP_403_FORBIDDEN,
            )

    count = await authority.active_token_count(username)
    data = UserTokenStats(username=username, active_token_count=count)
    return envelope("User token statistics retrieved successfully", data)
