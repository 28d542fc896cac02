"""Tests for LocalAuthority: generation, validation and revocation."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from authhub.schemas.token import RevocationRequest, ValidationRequest
from authhub.services.errors import TokenStoreError, ValidationOutcome
from authhub.services.token_authority import LocalAuthority
from authhub.services.token_codec import TokenCodec
from tests.conftest import TEST_SECRET, TEST_TTL

pytestmark = pytest.mark.asyncio


async def _validate(authority, token, username=None):
    return await authority.validate_token(ValidationRequest(token=token, username=username))


async def _revoke(authority, token, revoke_all=False):
    return await authority.revoke_token(
        RevocationRequest(token=token, revoke_all_user_tokens=revoke_all)
    )


class TestGenerate:
    """Tests for token generation."""

    async def test_response_fields(self, authority, clock):
        response = await authority.generate_token("alice", "ADMIN")

        assert response.type == "Bearer"
        assert response.expires_in == TEST_TTL
        assert response.username == "alice"
        assert response.role == "ADMIN"
        assert response.issued_at == clock.now()
        assert (response.expires_at - response.issued_at).total_seconds() == TEST_TTL

    async def test_token_is_indexed(self, authority, store):
        response = await authority.generate_token("alice", "USER")

        assert store.is_active(response.token)
        assert await store.members_of_user_set("alice") == {response.token}

    async def test_store_failure_does_not_block_issuance(self, codec, store):
        store.put_active = AsyncMock(side_effect=TokenStoreError("down"))
        authority = LocalAuthority(codec, store)

        response = await authority.generate_token("alice", "USER")

        assert response.token
        assert (await _validate(authority, response.token)).valid

    async def test_codec_failure_propagates(self, authority):
        with pytest.raises(ValueError):
            await authority.generate_token("", "USER")


class TestValidate:
    """Tests for validation outcomes."""

    async def test_valid_token(self, authority):
        token = (await authority.generate_token("alice", "ADMIN")).token

        result = await _validate(authority, token)

        assert result.valid
        assert result.outcome is ValidationOutcome.VALID
        assert result.username == "alice"
        assert result.role == "ADMIN"
        assert result.expires_at is not None

    async def test_remaining_seconds_follow_codec_clock(self, authority, clock):
        token = (await authority.generate_token("alice", "USER")).token
        clock.advance(3600)

        result = await _validate(authority, token)

        assert result.remaining_seconds == TEST_TTL - 3600
        assert result.validated_at == clock.now()

    async def test_expected_username_matches(self, authority):
        token = (await authority.generate_token("alice", "USER")).token

        assert (await _validate(authority, token, username="alice")).valid

    async def test_username_mismatch(self, authority):
        token = (await authority.generate_token("alice", "USER")).token

        result = await _validate(authority, token, username="mallory")

        assert not result.valid
        assert result.message == "Username mismatch"

    async def test_expired_token(self, authority, clock):
        token = (await authority.generate_token("alice", "USER")).token
        clock.advance(TEST_TTL + 1)

        result = await _validate(authority, token)

        assert not result.valid
        assert result.outcome is ValidationOutcome.EXPIRED

    async def test_malformed_token(self, authority):
        result = await _validate(authority, "definitely-not-a-jwt")

        assert not result.valid
        assert result.outcome is ValidationOutcome.MALFORMED

    async def test_foreign_signature(self, authority, clock):
        foreign = TokenCodec("some-other-secret-key-that-is-long-enough", TEST_TTL, clock=clock.now)

        result = await _validate(authority, foreign.encode("alice", "ADMIN"))

        assert not result.valid
        assert result.outcome is ValidationOutcome.INVALID

    async def test_unexpected_error_becomes_invalid_result(self, codec, store):
        store.is_blacklisted = AsyncMock(side_effect=RuntimeError("boom"))
        authority = LocalAuthority(codec, store)

        result = await _validate(authority, codec.encode("alice", "USER"))

        assert not result.valid
        assert "boom" in result.message

    async def test_is_token_valid_and_active(self, authority):
        token = (await authority.generate_token("alice", "USER")).token
        assert await authority.is_token_valid_and_active(token)

        await _revoke(authority, token)
        assert not await authority.is_token_valid_and_active(token)
        assert not await authority.is_token_valid_and_active("garbage")


class TestRevoke:
    """Tests for single and bulk revocation."""

    async def test_alice_scenario(self, authority):
        first = (await authority.generate_token("alice", "ADMIN")).token
        validation = await _validate(authority, first)
        assert validation.valid
        assert validation.role == "ADMIN"

        revocation = await _revoke(authority, first)
        assert revocation.revoked
        assert revocation.tokens_revoked == 1

        after = await _validate(authority, first)
        assert not after.valid
        assert after.outcome is ValidationOutcome.REVOKED
        assert after.message == "Token has been revoked"

        await authority.generate_token("alice", "ADMIN")
        assert await authority.active_token_count("alice") == 1

    async def test_revoke_is_idempotent(self, authority):
        token = (await authority.generate_token("alice", "USER")).token

        first = await _revoke(authority, token)
        second = await _revoke(authority, token)

        assert first.revoked is True
        assert second.revoked is False
        assert second.message == "Token was already revoked or invalid"

    async def test_blacklist_ttl_is_remaining_lifetime(self, authority, store, clock):
        token = (await authority.generate_token("alice", "USER")).token
        clock.advance(TEST_TTL - 10)

        await _revoke(authority, token)
        assert await store.is_blacklisted(token)

        clock.advance(10)
        assert not await store.is_blacklisted(token)

    async def test_revoke_in_last_second_of_lifetime(self, authority, store, clock):
        token = (await authority.generate_token("alice", "USER")).token
        clock.advance(TEST_TTL - 0.5)

        first = await _revoke(authority, token)
        after = await _validate(authority, token)
        second = await _revoke(authority, token)

        assert first.revoked is True
        assert await store.is_blacklisted(token)
        assert not after.valid
        assert after.outcome is ValidationOutcome.REVOKED
        assert second.revoked is False

    async def test_revoke_removes_from_indexes(self, authority, store):
        token = (await authority.generate_token("alice", "USER")).token

        await _revoke(authority, token)

        assert not store.is_active(token)
        assert token not in await store.members_of_user_set("alice")

    async def test_revoke_malformed_token_is_noop_failure(self, authority):
        result = await _revoke(authority, "garbage")

        assert result.revoked is False

    async def test_revoke_expired_token_succeeds_without_blacklisting(
        self, authority, store, clock
    ):
        token = (await authority.generate_token("alice", "USER")).token
        clock.advance(TEST_TTL + 5)

        result = await _revoke(authority, token)

        assert result.revoked
        assert not await store.is_blacklisted(token)

    async def test_blacklist_failure_reported_as_not_revoked(self, codec, store):
        authority = LocalAuthority(codec, store)
        token = (await authority.generate_token("alice", "USER")).token
        store.blacklist = AsyncMock(side_effect=TokenStoreError("down"))

        result = await _revoke(authority, token)

        assert result.revoked is False

    async def test_revoke_all_with_no_active_tokens(self, authority, codec):
        # A token that was never indexed, then already revoked
        token = codec.encode("alice", "USER")
        await _revoke(authority, token)

        result = await _revoke(authority, token, revoke_all=True)

        assert result.revoked
        assert result.tokens_revoked == 0

    async def test_revoke_all(self, authority):
        tokens = [(await authority.generate_token("alice", "USER")).token for _ in range(3)]
        other = (await authority.generate_token("bob", "USER")).token

        result = await _revoke(authority, tokens[0], revoke_all=True)

        assert result.revoked
        assert result.tokens_revoked == 3
        assert result.username == "alice"
        assert await authority.active_token_count("alice") == 0
        for token in tokens:
            assert (await _validate(authority, token)).outcome is ValidationOutcome.REVOKED
        assert (await _validate(authority, other)).valid

    async def test_concurrent_issuance_then_revoke_all(self, authority):
        responses = await asyncio.gather(
            *(authority.generate_token("alice", "USER") for _ in range(20))
        )
        assert await authority.active_token_count("alice") == 20

        result = await _revoke(authority, responses[0].token, revoke_all=True)

        assert result.tokens_revoked == 20
        assert await authority.active_token_count("alice") == 0

    async def test_active_token_count_zero_on_store_error(self, codec, store):
        store.members_of_user_set = AsyncMock(side_effect=TokenStoreError("down"))
        authority = LocalAuthority(codec, store)

        assert await authority.active_token_count("alice") == 0


class TestStatus:
    async def test_status_reports_storage(self, authority):
        status = await authority.status()

        assert status["authority"] == "local"
        assert status["storage_type"] == "IN_MEMORY"
        assert status["storage_connected"] is True


class TestSecretIsolation:
    """A token from another deployment is never accepted."""

    async def test_other_secret_rejected(self, store, clock):
        ours = LocalAuthority(TokenCodec(TEST_SECRET, TEST_TTL, clock=clock.now), store)
        theirs = TokenCodec("x" * 40, TEST_TTL, clock=clock.now)

        result = await _validate(ours, theirs.encode("alice", "ADMIN"))

        assert not result.valid
