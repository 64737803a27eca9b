"""Tests for identifier canonicalization and hashing."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from hooklink.identity.errors import HashKeyMissingError
from hooklink.identity.hashing import (
    DEFAULT_HASH_KEY_SECRET_ID,
    IdentifierHasher,
    canonicalize_identifiers,
    load_or_create_hash_key,
)
from hooklink.secrets.store import SqliteSecretStore
from tests.conftest import HASH_KEY


class TestCanonicalize:
    def test_keys_sorted_and_compact(self) -> None:
        text = canonicalize_identifiers({"phone_number": "+15550100", "email": "a@x.com"})
        assert text == '{"email":"a@x.com","phone_number":"+15550100"}'

    def test_empty_mapping(self) -> None:
        assert canonicalize_identifiers({}) == "{}"

    def test_none_values_dropped(self) -> None:
        assert canonicalize_identifiers({"email": None, "user_id": "u1"}) == '{"user_id":"u1"}'

    def test_scalars_coerced_to_strings(self) -> None:
        text = canonicalize_identifiers({"a": True, "b": False, "c": 42, "d": 7.0, "e": 1.5})
        assert text == '{"a":"true","b":"false","c":"42","d":"7","e":"1.5"}'

    def test_non_ascii_kept_verbatim(self) -> None:
        assert canonicalize_identifiers({"email": "é@x.com"}) == '{"email":"é@x.com"}'

    def test_non_scalar_rejected(self) -> None:
        with pytest.raises(TypeError):
            canonicalize_identifiers({"email": ["a@x.com"]})  # type: ignore[dict-item]


class TestIdentifierHasher:
    def test_hash_is_64_lowercase_hex(self) -> None:
        digest = IdentifierHasher(HASH_KEY).hash({"email": "a@x.com"})
        assert len(digest) == 64
        assert digest == digest.lower()
        int(digest, 16)

    def test_hash_independent_of_key_order(self) -> None:
        hasher = IdentifierHasher(HASH_KEY)
        first = hasher.hash({"email": "a@x.com", "user_id": "42"})
        second = hasher.hash({"user_id": "42", "email": "a@x.com"})
        assert first == second

    def test_int_and_string_forms_collide(self) -> None:
        hasher = IdentifierHasher(HASH_KEY)
        assert hasher.hash({"user_id": 42}) == hasher.hash({"user_id": "42"})

    def test_value_change_changes_hash(self) -> None:
        hasher = IdentifierHasher(HASH_KEY)
        assert hasher.hash({"email": "a@x.com"}) != hasher.hash({"email": "b@x.com"})

    def test_key_change_changes_hash(self) -> None:
        other = IdentifierHasher("0" * 64)
        assert IdentifierHasher(HASH_KEY).hash({"email": "a@x.com"}) != other.hash(
            {"email": "a@x.com"}
        )

    def test_empty_key_rejected(self) -> None:
        with pytest.raises(HashKeyMissingError) as exc_info:
            IdentifierHasher("")
        assert exc_info.value.status_code == 500

    def test_short_key_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        IdentifierHasher("abc123")
        assert "shorter than" in caplog.text


class TestLoadOrCreateHashKey:
    @pytest.mark.asyncio
    async def test_generates_and_persists_key(self, secret_store: SqliteSecretStore) -> None:
        key = await load_or_create_hash_key(secret_store)
        assert len(key) == 64
        assert await secret_store.read(DEFAULT_HASH_KEY_SECRET_ID) == key

    @pytest.mark.asyncio
    async def test_reuses_existing_key(self, secret_store: SqliteSecretStore) -> None:
        await secret_store.put("custom-key-id", HASH_KEY)
        assert await load_or_create_hash_key(secret_store, "custom-key-id") == HASH_KEY

    @pytest.mark.asyncio
    async def test_second_call_returns_same_key(self, secret_store: SqliteSecretStore) -> None:
        first = await load_or_create_hash_key(secret_store)
        second = await load_or_create_hash_key(secret_store)
        assert first == second

    @pytest.mark.asyncio
    async def test_does_not_overwrite_existing_key(self) -> None:
        store = AsyncMock()
        store.read.return_value = HASH_KEY
        await load_or_create_hash_key(store)
        store.put.assert_not_called()
