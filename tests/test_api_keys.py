"""
Tests for API key issuance, validation and the /api-keys endpoints
"""
import pytest

from authguard.app.security.api_keys import (
    DISPLAY_PREFIX_LENGTH,
    KEY_PREFIX,
    ApiKeyError,
    ApiKeyManager,
)
from authguard.app.services.stores import SQLApiKeyStore

API = "/api/v1"
PEPPER = "test-pepper"


@pytest.fixture
def manager(sessionmaker, clock):
    return ApiKeyManager(SQLApiKeyStore(sessionmaker), pepper=PEPPER, clock=clock)


class TestIssuance:
    async def test_key_format_and_stored_record(self, manager, clock):
        api_key, record = await manager.generate_api_key(
            "user-1", "CI deploy", permissions=["read:profile", "read:analytics"], expires_days=30
        )
        assert api_key.startswith(KEY_PREFIX)
        assert len(api_key) == len(KEY_PREFIX) + 43

        assert record.id is not None
        assert record.key_prefix == api_key[:DISPLAY_PREFIX_LENGTH]
        assert record.key_hash != api_key
        assert api_key not in record.key_hash
        assert record.key_hash == manager.hash_key(api_key)
        assert record.permissions == ["read:analytics", "read:profile"]
        assert record.created_at == clock.now
        assert (record.expires_at - record.created_at).days == 30

    async def test_hash_depends_on_pepper(self, manager, sessionmaker):
        other = ApiKeyManager(SQLApiKeyStore(sessionmaker), pepper="another-pepper")
        assert manager.hash_key("ag_same") != other.hash_key("ag_same")

    async def test_name_is_sanitized(self, manager):
        _, record = await manager.generate_api_key("user-1", "  <b>build</b> ", ["read:profile"])
        assert record.key_name == "bbuild/b"

    @pytest.mark.parametrize("name", ["", "   ", "<>", "x" * 101])
    async def test_bad_names_rejected(self, manager, name):
        with pytest.raises(ApiKeyError):
            await manager.generate_api_key("user-1", name, ["read:profile"])

    async def test_unknown_permission_rejected(self, manager):
        with pytest.raises(ApiKeyError, match="root:everything"):
            await manager.generate_api_key("user-1", "ops", ["read:profile", "root:everything"])

    @pytest.mark.parametrize("days", [0, -1, 3651])
    async def test_lifetime_bounds(self, manager, days):
        with pytest.raises(ApiKeyError):
            await manager.generate_api_key("user-1", "ops", ["read:profile"], expires_days=days)

    async def test_key_without_expiry(self, manager, clock):
        api_key, record = await manager.generate_api_key(
            "user-1", "forever", ["read:profile"], expires_days=None
        )
        assert record.expires_at is None
        clock.advance(days=5000)
        assert (await manager.validate_api_key(api_key)).valid


class TestValidation:
    async def test_valid_key(self, manager, clock):
        api_key, record = await manager.generate_api_key("user-1", "ops", ["read:profile"])
        clock.advance(minutes=5)

        result = await manager.validate_api_key(api_key)
        assert result.valid
        assert result.account_id == "user-1"
        assert result.key_id == record.id
        assert result.permissions == ["read:profile"]

        [listed] = await manager.list_keys("user-1")
        assert listed.last_used_at == clock.now

    @pytest.mark.parametrize("candidate", [None, "", "not-a-key", "AG_uppercase"])
    async def test_malformed(self, manager, candidate):
        result = await manager.validate_api_key(candidate)
        assert not result.valid
        assert result.reason == "malformed"

    async def test_unknown(self, manager):
        result = await manager.validate_api_key(KEY_PREFIX + "x" * 43)
        assert not result.valid
        assert result.reason == "unknown"

    async def test_revoked(self, manager):
        api_key, record = await manager.generate_api_key("user-1", "ops", ["read:profile"])
        assert await manager.revoke("user-1", record.id)

        result = await manager.validate_api_key(api_key)
        assert not result.valid
        assert result.reason == "revoked"

        [listed] = await manager.list_keys("user-1")
        assert listed.is_active is False
        assert listed.last_used_at is None

    async def test_revoke_is_scoped_to_owner(self, manager):
        api_key, record = await manager.generate_api_key("user-1", "ops", ["read:profile"])
        assert not await manager.revoke("user-2", record.id)
        assert (await manager.validate_api_key(api_key)).valid

    async def test_revoke_twice(self, manager):
        _, record = await manager.generate_api_key("user-1", "ops", ["read:profile"])
        assert await manager.revoke("user-1", record.id)
        assert not await manager.revoke("user-1", record.id)

    async def test_expired(self, manager, clock):
        api_key, _ = await manager.generate_api_key("user-1", "ops", ["read:profile"], expires_days=1)
        clock.advance(hours=23, minutes=59)
        assert (await manager.validate_api_key(api_key)).valid

        clock.advance(minutes=1)
        result = await manager.validate_api_key(api_key)
        assert not result.valid
        assert result.reason == "expired"

    async def test_listing_is_newest_first(self, manager, clock):
        await manager.generate_api_key("user-1", "first", ["read:profile"])
        clock.advance(minutes=1)
        await manager.generate_api_key("user-1", "second", ["read:profile"])
        await manager.generate_api_key("user-2", "other", ["read:profile"])

        names = [record.key_name for record in await manager.list_keys("user-1")]
        assert names == ["second", "first"]


class TestApiKeyEndpoints:
    async def create(self, client, headers, **overrides):
        body = {"key_name": "reporting", "permissions": ["read:analytics"], **overrides}
        return await client.post(f"{API}/api-keys", json=body, headers=headers)

    async def test_create_and_authenticate(self, client, auth_headers):
        response = await self.create(client, auth_headers())
        assert response.status_code == 201
        data = response.json()
        api_key = data["api_key"]
        assert data["key"]["key_prefix"] == api_key[:DISPLAY_PREFIX_LENGTH]
        assert data["key"]["permissions"] == ["read:analytics"]
        assert "key_hash" not in data["key"]

        response = await client.get(f"{API}/2fa/status", headers={"X-API-Key": api_key})
        assert response.status_code == 200

    async def test_listing_never_shows_the_key(self, client, auth_headers):
        api_key = (await self.create(client, auth_headers())).json()["api_key"]

        response = await client.get(f"{API}/api-keys", headers=auth_headers())
        assert response.status_code == 200
        [listed] = response.json()
        assert listed["key_name"] == "reporting"
        assert api_key not in response.text

    async def test_invalid_request(self, client, auth_headers):
        response = await self.create(client, auth_headers(), permissions=["admin:everything"])
        assert response.status_code == 400
        assert "admin:everything" in response.json()["detail"]

        response = await self.create(client, auth_headers(), expires_days=0)
        assert response.status_code == 400

    async def test_revoked_key_stops_authenticating(self, client, auth_headers):
        created = (await self.create(client, auth_headers())).json()
        key_headers = {"X-API-Key": created["api_key"]}
        assert (await client.get(f"{API}/2fa/status", headers=key_headers)).status_code == 200

        response = await client.delete(f"{API}/api-keys/{created['key']['id']}", headers=auth_headers())
        assert response.status_code == 200

        response = await client.get(f"{API}/2fa/status", headers=key_headers)
        assert response.status_code == 401

        response = await client.delete(f"{API}/api-keys/{created['key']['id']}", headers=auth_headers())
        assert response.status_code == 404
        assert response.json()["detail"] == "API key not found"

    async def test_unknown_key_is_unauthenticated(self, client):
        response = await client.get(f"{API}/2fa/status", headers={"X-API-Key": KEY_PREFIX + "x" * 43})
        assert response.status_code == 401

    async def test_api_key_cannot_manage_keys(self, client, auth_headers):
        api_key = (await self.create(client, auth_headers())).json()["api_key"]

        response = await client.get(f"{API}/api-keys", headers={"X-API-Key": api_key})
        assert response.status_code == 403
        assert response.json()["detail"] == "API keys cannot manage API keys"

    async def test_other_accounts_keys_are_hidden(self, client, auth_headers, services):
        await services.api_keys.generate_api_key("user-2", "theirs", ["read:profile"])
        response = await client.get(f"{API}/api-keys", headers=auth_headers())
        assert response.json() == []
