"""Signed token encoding and decoding (HMAC JWT)."""

import logging
import math
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import jwt
from jwt.exceptions import (
    DecodeError,
    InvalidAlgorithmError,
    InvalidSignatureError,
    PyJWTError,
)

from authhub.services.errors import TokenStatus

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Claims:
    """Claims carried by a token."""

    subject: str
    role: str
    issued_at: datetime
    expires_at: datetime
    token_id: str | None = None


@dataclass(frozen=True)
class DecodeResult:
    """Result of decoding a token.

    ``claims`` is set for VALID and EXPIRED tokens: an expired token still
    carries trustworthy claims because its signature was verified.
    """

    status: TokenStatus
    claims: Claims | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is TokenStatus.VALID


class TokenCodec:
    """Encodes and decodes signed tokens.

    The signature is always verified before any claim is read. Expiry is
    checked separately so that an expired token is reported as EXPIRED
    rather than as a signature or format failure.
    """

    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int,
        algorithm: str = "HS256",
        issuer: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self.algorithm = algorithm
        self.issuer = issuer
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def encode(self, subject: str, role: str) -> str:
        """Create a signed token for ``subject`` holding a single ``role``."""
        if not subject:
            raise ValueError("Token subject must be a non-empty string")
        if not role:
            raise ValueError("Token role must be a non-empty string")

        issued_at = math.floor(self.now().timestamp())
        payload = {
            "sub": subject,
            "role": role,
            "iat": issued_at,
            "exp": issued_at + self.ttl_seconds,
            # Unique per token so two tokens issued in the same second differ
            "jti": secrets.token_hex(16),
        }
        if self.issuer:
            payload["iss"] = self.issuer
        return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    def decode(self, token: str) -> DecodeResult:
        """Verify and parse a token. Never raises for bad input."""
        if not token or not isinstance(token, str):
            return DecodeResult(TokenStatus.MALFORMED, error="Token is empty")

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": ["sub", "exp", "iat"],
                },
            )
        except InvalidAlgorithmError as e:
            return DecodeResult(TokenStatus.UNSUPPORTED, error=str(e))
        except InvalidSignatureError as e:
            return DecodeResult(TokenStatus.INVALID_SIGNATURE, error=str(e))
        except DecodeError as e:
            return DecodeResult(TokenStatus.MALFORMED, error=str(e))
        except PyJWTError as e:
            return DecodeResult(TokenStatus.MALFORMED, error=str(e))

        claims = self._claims_from_payload(payload)
        if claims is None:
            return DecodeResult(TokenStatus.MALFORMED, error="Token claims are inconsistent")

        if self.now() >= claims.expires_at:
            return DecodeResult(TokenStatus.EXPIRED, claims=claims, error="Token has expired")
        return DecodeResult(TokenStatus.VALID, claims=claims)

    def is_valid(self, token: str, expected_subject: str) -> bool:
        """True iff the token verifies, is unexpired and belongs to ``expected_subject``."""
        result = self.decode(token)
        if not result.ok or result.claims is None:
            return False
        return result.claims.subject == expected_subject and self.now() < result.claims.expires_at

    def seconds_until_expiry(self, claims: Claims) -> int:
        """Seconds of lifetime left rounded up, zero only once expired.

        Rounding up keeps a blacklist entry alive until the token itself expires.
        """
        remaining = (claims.expires_at - self.now()).total_seconds()
        if remaining <= 0:
            return 0
        return math.ceil(remaining)

    @staticmethod
    def _claims_from_payload(payload: dict) -> Claims | None:
        subject = payload.get("sub")
        role = payload.get("role")
        iat = payload.get("iat")
        exp = payload.get("exp")

        if not isinstance(subject, str) or not subject:
            return None
        if not isinstance(role, str) or not role:
            return None
        if not isinstance(iat, int | float) or not isinstance(exp, int | float):
            return None
        if exp <= iat:
            return None

        return Claims(
            subject=subject,
            role=role,
            issued_at=datetime.fromtimestamp(iat, tz=UTC),
            expires_at=datetime.fromtimestamp(exp, tz=UTC),
            token_id=payload.get("jti"),
        )
