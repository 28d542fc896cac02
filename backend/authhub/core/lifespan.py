"""Startup and shutdown wiring for the token store and authorities.

Everything the request path needs is built here and stored on
``app.state``: ``store``, ``local_authority``, ``authority`` (the composed
authority used for login and request authentication) and ``credentials``.
"""

from fastapi import FastAPI

from authhub.core.config import Settings
from authhub.core.logging import get_logger, setup_logging
from authhub.core.retry import RetryConfig
from authhub.services.credentials import CredentialVerifier, UserDirectory
from authhub.services.fallback_authority import FallbackAuthority
from authhub.services.remote_authority import RemoteAuthorityClient
from authhub.services.token_authority import LocalAuthority, TokenAuthority
from authhub.services.token_codec import TokenCodec
from authhub.services.token_store import TokenStore, create_token_store

_logger = get_logger("lifespan")


def build_codec(settings: Settings) -> TokenCodec:
    return TokenCodec(
        secret_key=settings.jwt_secret_key,
        ttl_seconds=settings.jwt_expiration_seconds,
        algorithm=settings.jwt_algorithm,
        issuer=settings.jwt_issuer,
    )


def build_authorities(
    settings: Settings,
    store: TokenStore,
    codec: TokenCodec | None = None,
) -> tuple[LocalAuthority, TokenAuthority]:
    """Build the local authority and the authority used for request resolution.

    With the centralized service enabled the second one is a FallbackAuthority
    over a RemoteAuthorityClient and the local authority; otherwise both are
    the same LocalAuthority.
    """
    local = LocalAuthority(codec or build_codec(settings), store)
    if not settings.enable_centralized_service:
        _logger.info("Token authority: local")
        return local, local

    retry_config = RetryConfig(
        max_attempts=settings.centralized_max_attempts,
        base_delay=settings.centralized_backoff_base,
        max_delay=settings.centralized_backoff_cap,
        jitter=False,
    )
    remote = RemoteAuthorityClient(
        settings.centralized_service_url,
        service_key=settings.centralized_service_key,
        retry_config=retry_config,
        timeout=settings.centralized_timeout,
    )
    _logger.info(
        f"Token authority: centralized at {settings.centralized_service_url} "
        f"(fallback {'enabled' if settings.enable_fallback else 'disabled'})"
    )
    return local, FallbackAuthority(remote, local, enable_fallback=settings.enable_fallback)


def attach_state(
    app: FastAPI,
    settings: Settings,
    store: TokenStore,
    credentials: CredentialVerifier,
    codec: TokenCodec | None = None,
) -> None:
    """Store the service objects on ``app.state``."""
    local, authority = build_authorities(settings, store, codec)
    app.state.settings = settings
    app.state.store = store
    app.state.local_authority = local
    app.state.authority = authority
    app.state.credentials = credentials


async def startup(app: FastAPI, settings: Settings) -> None:
    """Configure logging, connect the token store and build the authorities."""
    setup_logging(level=settings.log_level, format_type=settings.log_format)

    for warning in settings.check_security_configuration():
        _logger.warning(f"SECURITY: {warning}")

    store = await create_token_store(
        settings.enable_persistent_store,
        settings.redis_url,
        fallback_to_memory=settings.fallback_to_memory,
        socket_timeout=settings.redis_socket_timeout,
    )
    credentials = UserDirectory.from_seed(settings.seed_users)
    attach_state(app, settings, store, credentials)


async def shutdown(app: FastAPI) -> None:
    """Close the remote client and the token store."""
    authority = getattr(app.state, "authority", None)
    if authority is not None:
        await authority.close()

    store = getattr(app.state, "store", None)
    if store is not None:
        await store.close()
