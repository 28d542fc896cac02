"""Pytest configuration and fixtures for backend tests.

Time is controlled through ``FakeClock``: the codec reads wall-clock time from
``clock.now`` and the in-memory store reads ``clock.monotonic``, so tests can
expire tokens and store entries without sleeping.
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing app modules
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-hs256-signing-0123456789"
os.environ["SERVICE_API_KEY"] = "test-service-api-key"
os.environ["ENABLE_PERSISTENT_STORE"] = "false"
os.environ["ENABLE_CENTRALIZED_SERVICE"] = "false"

TEST_SECRET = os.environ["JWT_SECRET_KEY"]
TEST_SERVICE_KEY = os.environ["SERVICE_API_KEY"]
TEST_ISSUER = "student-management-api"
TEST_TTL = 86400

# Test credentials
TEST_USER = ("student", "student-pass")
TEST_ADMIN = ("testadmin", "testpassword123")


class FakeClock:
    """Wall clock and monotonic clock advanced together by hand."""

    def __init__(self, start: datetime | None = None):
        self._now = (start or datetime.now(UTC)).replace(microsecond=0)
        self._monotonic = 1000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def codec(clock):
    from authhub.services.token_codec import TokenCodec

    return TokenCodec(TEST_SECRET, TEST_TTL, issuer=TEST_ISSUER, clock=clock.now)


@pytest.fixture
def store(clock):
    from authhub.services.token_store import InMemoryTokenStore

    return InMemoryTokenStore(clock=clock.monotonic)


@pytest.fixture
def authority(codec, store):
    from authhub.services.token_authority import LocalAuthority

    return LocalAuthority(codec, store)


@pytest.fixture(scope="session")
def user_directory():
    """Argon2 hashing is slow; build the directory once per session."""
    from authhub.services.credentials import UserDirectory

    directory = UserDirectory()
    directory.add_user(TEST_USER[0], TEST_USER[1], ["USER"])
    directory.add_user(TEST_ADMIN[0], TEST_ADMIN[1], ["USER", "ADMIN"])
    return directory


@pytest.fixture
def test_settings():
    from authhub.core.config import Settings

    return Settings(
        _env_file=None,
        jwt_secret_key=TEST_SECRET,
        jwt_issuer=TEST_ISSUER,
        jwt_expiration_seconds=TEST_TTL,
        service_api_key=TEST_SERVICE_KEY,
        enable_centralized_service=False,
        seed_users="",
    )


@pytest.fixture
def app(test_settings, store, codec, user_directory):
    """Application with state wired to the in-memory store and fake clock."""
    from authhub.core.lifespan import attach_state
    from authhub.main import create_app

    application = create_app(test_settings)
    attach_state(application, test_settings, store, user_directory, codec=codec)
    return application


@pytest_asyncio.fixture(scope="function")
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client.

    ASGITransport does not run the lifespan; state is attached by the app fixture.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def login(async_client):
    """Log in through the API and return the bearer token."""

    async def _login(username: str, password: str) -> str:
        response = await async_client.post(
            "/api/v1/auth/login", json={"username": username, "password": password}
        )
        assert response.status_code == 200, response.text
        return response.json()["token"]

    return _login


@pytest.fixture
def auth_headers():
    def _headers(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    return _headers
