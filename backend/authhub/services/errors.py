"""Error taxonomy for the token subsystem.

Codec and store conditions are reported as enum values inside result objects;
only credential checks and remote authority calls raise.
"""

from enum import Enum


class TokenStatus(str, Enum):
    """Outcome of decoding a token string."""

    VALID = "valid"
    EXPIRED = "expired"
    MALFORMED = "malformed"
    UNSUPPORTED = "unsupported"
    INVALID_SIGNATURE = "invalid_signature"


class ValidationOutcome(str, Enum):
    """Outcome of a validation request."""

    VALID = "valid"
    EXPIRED = "expired"
    MALFORMED = "malformed"
    REVOKED = "revoked"
    INVALID = "invalid"
    UNAVAILABLE = "unavailable"


class AuthError(Exception):
    """Base authentication error."""

    pass


class InvalidCredentialsError(AuthError):
    """Invalid username or password."""

    pass


class TokenStoreError(AuthError):
    """The token store backend failed."""

    pass


class RemoteAuthorityError(AuthError):
    """Base error for calls to a remote token authority."""

    pass


class RemoteAuthorityUnavailable(RemoteAuthorityError):
    """The remote authority could not be reached after all attempts."""

    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class RemoteAuthorityRejected(RemoteAuthorityError):
    """The remote authority answered, but refused or returned an unusable response."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
