"""Credential verification for login and password-based token generation."""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from authhub.services.errors import InvalidCredentialsError

logger = logging.getLogger(__name__)

# Argon2id with the library's recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

ROLE_PRIORITY = ("ADMIN",)
DEFAULT_ROLE = "USER"


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def select_role(roles: list[str]) -> str:
    """Pick the single role embedded in a token. ADMIN wins over anything else."""
    cleaned = [r.strip().upper().removeprefix("ROLE_") for r in roles if r and r.strip()]
    for preferred in ROLE_PRIORITY:
        if preferred in cleaned:
            return preferred
    return cleaned[0] if cleaned else DEFAULT_ROLE


@dataclass(frozen=True)
class Principal:
    """An authenticated identity holding a single role."""

    username: str
    role: str

    @property
    def authority(self) -> str:
        """Role in the ``ROLE_`` form used by authorization checks."""
        return f"ROLE_{self.role}"


class CredentialVerifier(ABC):
    """Resolves a username/password pair to a principal."""

    @abstractmethod
    def authenticate(self, username: str, password: str) -> Principal:
        """Return the principal or raise InvalidCredentialsError."""


class UserDirectory(CredentialVerifier):
    """In-memory user directory with Argon2 password hashes."""

    def __init__(self):
        self._users: dict[str, tuple[str, list[str]]] = {}
        self._lock = threading.Lock()
        self._dummy_hash = hash_password("dummy-password-for-timing")

    @classmethod
    def from_seed(cls, seed: str) -> "UserDirectory":
        """Build from ``user:password:ROLE[|ROLE...]`` entries separated by commas."""
        directory = cls()
        for entry in seed.split(","):
            entry = entry.strip()
            if not entry:
                continue
            parts = entry.split(":")
            if len(parts) != 3 or not parts[0] or not parts[1]:
                raise ValueError(f"Invalid user entry (expected user:password:ROLE): {entry!r}")
            username, password, roles = parts
            directory.add_user(username, password, roles.split("|"))
        return directory

    def add_user(self, username: str, password: str, roles: list[str]) -> None:
        with self._lock:
            self._users[username] = (hash_password(password), roles)
        logger.info(f"Registered user: {username}")

    def authenticate(self, username: str, password: str) -> Principal:
        """Authenticate a user.

        Raises InvalidCredentialsError for both "user not found" and
        "wrong password" to prevent user enumeration.
        """
        with self._lock:
            record = self._users.get(username)

        if record is None:
            # Perform a dummy verification to keep timing uniform
            verify_password(password, self._dummy_hash)
            raise InvalidCredentialsError("Invalid username or password")

        password_hash, roles = record
        if not verify_password(password, password_hash):
            raise InvalidCredentialsError("Invalid username or password")

        return Principal(username=username, role=select_role(roles))
