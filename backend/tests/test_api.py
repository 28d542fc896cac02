"""Tests for the HTTP API: /api/v1/auth, /api/v1/jwt, /health and /."""

import pytest

from tests.conftest import TEST_ADMIN, TEST_SERVICE_KEY, TEST_TTL, TEST_USER

pytestmark = pytest.mark.asyncio


class TestLogin:
    """Tests for POST /api/v1/auth/login."""

    async def test_login_success(self, async_client):
        response = await async_client.post(
            "/api/v1/auth/login", json={"username": TEST_USER[0], "password": TEST_USER[1]}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["token"]
        assert data["type"] == "Bearer"
        assert data["username"] == TEST_USER[0]
        assert data["role"] == "USER"
        assert data["expiresIn"] == TEST_TTL
        assert "issuedAt" in data

    async def test_admin_role_wins(self, async_client):
        response = await async_client.post(
            "/api/v1/auth/login", json={"username": TEST_ADMIN[0], "password": TEST_ADMIN[1]}
        )

        assert response.json()["role"] == "ADMIN"

    async def test_wrong_password(self, async_client):
        response = await async_client.post(
            "/api/v1/auth/login", json={"username": TEST_USER[0], "password": "wrong"}
        )

        assert response.status_code == 401
        data = response.json()
        assert data["error"] == "Authentication Failed"
        assert data["status"] == 401
        assert data["path"] == "/api/v1/auth/login"
        assert "timestamp" in data

    async def test_unknown_user(self, async_client):
        response = await async_client.post(
            "/api/v1/auth/login", json={"username": "nobody", "password": "whatever"}
        )

        assert response.status_code == 401

    async def test_invalid_body(self, async_client):
        response = await async_client.post("/api/v1/auth/login", json={"username": "ab"})

        assert response.status_code == 422


class TestAuthValidateLogoutMe:
    """Tests for the header-based auth endpoints."""

    async def test_validate_valid_token(self, async_client, login, auth_headers):
        token = await login(*TEST_USER)

        response = await async_client.post("/api/v1/auth/validate", headers=auth_headers(token))

        assert response.status_code == 200
        assert response.json()["valid"] is True
        assert response.json()["username"] == TEST_USER[0]
        assert response.json()["role"] == "USER"

    async def test_validate_invalid_token(self, async_client, auth_headers):
        response = await async_client.post(
            "/api/v1/auth/validate", headers=auth_headers("not-a-token")
        )

        assert response.status_code == 401
        assert response.json()["valid"] is False
        assert response.json()["message"]

    async def test_validate_missing_header(self, async_client):
        response = await async_client.post("/api/v1/auth/validate")

        assert response.status_code == 401
        assert response.json()["valid"] is False

    async def test_me(self, async_client, login, auth_headers):
        token = await login(*TEST_ADMIN)

        response = await async_client.get("/api/v1/auth/me", headers=auth_headers(token))

        assert response.status_code == 200
        assert response.json() == {
            "username": TEST_ADMIN[0],
            "role": "ADMIN",
            "authority": "ROLE_ADMIN",
        }

    async def test_me_requires_authentication(self, async_client):
        response = await async_client.get("/api/v1/auth/me")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_logout_revokes_token(self, async_client, login, auth_headers):
        token = await login(*TEST_USER)

        response = await async_client.post("/api/v1/auth/logout", headers=auth_headers(token))
        assert response.status_code == 200
        assert response.json()["revoked"] is True

        after = await async_client.post("/api/v1/auth/validate", headers=auth_headers(token))
        assert after.status_code == 401
        assert after.json()["reason"] == "revoked"

        me = await async_client.get("/api/v1/auth/me", headers=auth_headers(token))
        assert me.status_code == 401


class TestTokenServiceGenerate:
    """Tests for POST /api/v1/jwt/generate."""

    async def test_generate_with_password(self, async_client):
        response = await async_client.post(
            "/api/v1/jwt/generate",
            json={"username": TEST_ADMIN[0], "password": TEST_ADMIN[1], "role": "USER"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "JWT token generated successfully"
        assert "timestamp" in body
        # The supplied role is ignored when a password is given
        assert body["data"]["role"] == "ADMIN"
        assert body["data"]["expiresIn"] == TEST_TTL

    async def test_generate_with_bad_password(self, async_client):
        response = await async_client.post(
            "/api/v1/jwt/generate", json={"username": TEST_USER[0], "password": "wrong"}
        )

        assert response.status_code == 401
        assert response.json()["success"] is False
        assert response.json()["errorCode"] == "AUTHENTICATION_FAILED"

    async def test_generate_with_service_key(self, async_client):
        response = await async_client.post(
            "/api/v1/jwt/generate",
            json={"username": "resource-user", "role": "ADMIN"},
            headers={"X-API-Key": TEST_SERVICE_KEY},
        )

        assert response.status_code == 200
        assert response.json()["data"]["username"] == "resource-user"
        assert response.json()["data"]["role"] == "ADMIN"

    async def test_generate_with_service_key_defaults_to_user_role(self, async_client):
        response = await async_client.post(
            "/api/v1/jwt/generate",
            json={"username": "resource-user"},
            headers={"X-API-Key": TEST_SERVICE_KEY},
        )

        assert response.json()["data"]["role"] == "USER"

    async def test_generate_without_credentials(self, async_client):
        response = await async_client.post(
            "/api/v1/jwt/generate", json={"username": "resource-user", "role": "ADMIN"}
        )

        assert response.status_code == 401
        assert response.json()["success"] is False

    async def test_generate_with_wrong_service_key(self, async_client):
        response = await async_client.post(
            "/api/v1/jwt/generate",
            json={"username": "resource-user"},
            headers={"X-API-Key": "guess"},
        )

        assert response.status_code == 401


async def _service_token(client, username="alice", role="USER") -> str:
    response = await client.post(
        "/api/v1/jwt/generate",
        json={"username": username, "role": role},
        headers={"X-API-Key": TEST_SERVICE_KEY},
    )
    return response.json()["data"]["token"]


class TestTokenServiceValidateRevoke:
    """Tests for /api/v1/jwt/validate and /api/v1/jwt/revoke."""

    async def test_validate_body(self, async_client):
        token = await _service_token(async_client)

        response = await async_client.post("/api/v1/jwt/validate", json={"token": token})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["valid"] is True
        assert data["username"] == "alice"
        assert data["role"] == "USER"
        assert "expiresAt" in data
        assert "remainingSeconds" in data

    async def test_validate_username_mismatch(self, async_client):
        token = await _service_token(async_client)

        response = await async_client.post(
            "/api/v1/jwt/validate", json={"token": token, "username": "mallory"}
        )

        assert response.status_code == 200
        assert response.json()["data"]["valid"] is False
        assert response.json()["data"]["message"] == "Username mismatch"

    async def test_validate_via_header(self, async_client, auth_headers):
        token = await _service_token(async_client)

        response = await async_client.get("/api/v1/jwt/validate", headers=auth_headers(token))

        assert response.status_code == 200
        assert response.json()["data"]["valid"] is True

    async def test_validate_via_header_bad_format(self, async_client):
        response = await async_client.get(
            "/api/v1/jwt/validate", headers={"Authorization": "Token abc"}
        )

        assert response.status_code == 400
        assert response.json()["errorCode"] == "INVALID_HEADER"

    async def test_revoke_then_validate(self, async_client):
        token = await _service_token(async_client)

        first = await async_client.post(
            "/api/v1/jwt/revoke", json={"token": token, "reason": "test"}
        )
        second = await async_client.post("/api/v1/jwt/revoke", json={"token": token})
        validation = await async_client.post("/api/v1/jwt/validate", json={"token": token})

        assert first.status_code == 200
        assert first.json()["data"]["revoked"] is True
        assert first.json()["data"]["tokensRevoked"] == 1
        assert second.status_code == 200
        assert second.json()["data"]["revoked"] is False
        assert validation.json()["data"]["valid"] is False
        assert validation.json()["data"]["message"] == "Token has been revoked"

    async def test_revoke_all_user_tokens(self, async_client):
        tokens = [await _service_token(async_client) for _ in range(3)]

        response = await async_client.post(
            "/api/v1/jwt/revoke", json={"token": tokens[0], "revokeAllUserTokens": True}
        )

        assert response.json()["data"]["tokensRevoked"] == 3
        for token in tokens:
            check = await async_client.post("/api/v1/jwt/validate", json={"token": token})
            assert check.json()["data"]["valid"] is False


class TestTokenServiceStatusAndStats:
    """Tests for /api/v1/jwt/status and /api/v1/jwt/user/{username}/stats."""

    async def test_status(self, async_client):
        response = await async_client.get("/api/v1/jwt/status")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "RUNNING"
        assert data["storageType"] == "IN_MEMORY"
        assert data["service"] == "Centralized JWT Service"

    async def test_stats_for_self(self, async_client, auth_headers):
        token = await _service_token(async_client, username="alice")
        await _service_token(async_client, username="alice")

        response = await async_client.get(
            "/api/v1/jwt/user/alice/stats", headers=auth_headers(token)
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["username"] == "alice"
        assert data["activeTokenCount"] == 2

    async def test_stats_for_other_user_forbidden(self, async_client, auth_headers):
        token = await _service_token(async_client, username="alice")

        response = await async_client.get(
            "/api/v1/jwt/user/bob/stats", headers=auth_headers(token)
        )

        assert response.status_code == 403

    async def test_stats_for_other_user_as_admin(self, async_client, auth_headers):
        admin_token = await _service_token(async_client, username="root", role="ADMIN")
        await _service_token(async_client, username="bob")

        response = await async_client.get(
            "/api/v1/jwt/user/bob/stats", headers=auth_headers(admin_token)
        )

        assert response.status_code == 200
        assert response.json()["data"]["activeTokenCount"] == 1

    async def test_stats_with_service_key(self, async_client):
        await _service_token(async_client, username="bob")

        response = await async_client.get(
            "/api/v1/jwt/user/bob/stats", headers={"X-API-Key": TEST_SERVICE_KEY}
        )

        assert response.status_code == 200
        assert response.json()["data"]["activeTokenCount"] == 1

    async def test_stats_anonymous(self, async_client):
        response = await async_client.get("/api/v1/jwt/user/bob/stats")

        assert response.status_code == 401


class TestHealthAndRoot:
    async def test_health(self, async_client):
        response = await async_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "version": "1.0.0",
            "storage": "IN_MEMORY",
            "centralized": False,
        }

    async def test_root(self, async_client):
        response = await async_client.get("/")

        assert response.status_code == 200
        assert response.json()["version"] == "1.0.0"
