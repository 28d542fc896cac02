"""authhub middleware."""

from authhub.middleware.request_auth import RequestAuthenticatorMiddleware

__all__ = ["RequestAuthenticatorMiddleware"]
