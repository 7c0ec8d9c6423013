"""
Tests for API key generation and fingerprinting.
"""

from uuid import uuid4

from hypothesis import given
from hypothesis import strategies as st

from mcp_gateway.services.api_key import APIKeyService, GeneratedAPIKey, hash_api_key


class TestHashApiKey:
    """The fingerprint must be pure so lookups by hash work."""

    @given(st.text(min_size=1, max_size=200))
    def test_same_key_same_fingerprint(self, raw_key):
        assert hash_api_key(raw_key) == hash_api_key(raw_key)

    def test_different_keys_differ(self):
        assert hash_api_key("sk_live_a") != hash_api_key("sk_live_b")

    def test_hex_sha256(self):
        fingerprint = hash_api_key("sk_live_example")
        assert len(fingerprint) == 64
        int(fingerprint, 16)


class TestGenerateApiKey:
    def test_format(self):
        plaintext, key_hash, prefix = APIKeyService.generate_api_key()

        assert plaintext.startswith("sk_live_")
        assert len(plaintext) > 40
        assert key_hash == hash_api_key(plaintext)
        assert prefix == plaintext[:12]

    def test_keys_are_unique(self):
        keys = {APIKeyService.generate_api_key()[0] for _ in range(50)}
        assert len(keys) == 50


class TestCreateApiKey:
    async def test_stores_fingerprint_only(self, store):
        key_id = uuid4()
        user_id = uuid4()
        store.create_api_key.return_value = key_id

        generated = await APIKeyService(store).create_api_key(user_id, name="Desktop")

        assert isinstance(generated, GeneratedAPIKey)
        assert generated.key_id == key_id
        kwargs = store.create_api_key.await_args.kwargs
        assert kwargs["user_id"] == user_id
        assert kwargs["key_hash"] == hash_api_key(generated.plaintext_key)
        assert generated.plaintext_key not in kwargs.values()
        assert generated.plaintext_key not in repr(generated)
