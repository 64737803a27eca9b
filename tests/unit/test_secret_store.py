"""Tests for the secret stores."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from hooklink.identity.errors import SecretStoreError
from hooklink.identity.models import UserType
from hooklink.secrets.http import HttpSecretStore
from hooklink.secrets.store import SecretRef, SqliteSecretStore, sanitize_secret_id


class TestSecretRef:
    def test_secret_id_format(self) -> None:
        ref = SecretRef(UserType.CLIENT, "User-1", "github", "push", "email")
        assert ref.secret_id == "client_user-1_github_push_email"

    def test_unsafe_characters_replaced(self) -> None:
        ref = SecretRef(UserType.CLIENT, "a@b.com", "mailer", "message.received", "email")
        assert ref.secret_id == "client_a-b-com_mailer_message-received_email"

    def test_truncated_to_255(self) -> None:
        assert len(sanitize_secret_id("x" * 300)) == 255


class TestSqliteSecretStore:
    @pytest.mark.asyncio
    async def test_missing_secret(self, secret_store: SqliteSecretStore) -> None:
        ref = SecretRef(UserType.CLIENT, "u1", "github", "push", "email")
        assert await secret_store.exists(ref) is False
        assert await secret_store.get(ref) is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, secret_store: SqliteSecretStore) -> None:
        ref = SecretRef(UserType.CLIENT, "u1", "github", "push", "email")
        await secret_store.set(ref, "a@x.com")
        assert await secret_store.exists(ref) is True
        assert await secret_store.get(ref) == "a@x.com"

    @pytest.mark.asyncio
    async def test_put_overwrites(self, secret_store: SqliteSecretStore) -> None:
        await secret_store.put("k", "one")
        await secret_store.put("k", "two")
        assert await secret_store.read("k") == "two"

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path: Path) -> None:
        path = str(tmp_path / "secrets.db")
        first = SqliteSecretStore(path)
        await first.put("k", "v")
        first.close()
        second = SqliteSecretStore(path)
        assert await second.read("k") == "v"
        second.close()

    @pytest.mark.asyncio
    async def test_closed_store_raises_secret_store_error(self, tmp_path: Path) -> None:
        store = SqliteSecretStore(str(tmp_path / "secrets.db"))
        store.close()
        with pytest.raises(SecretStoreError):
            await store.read("k")


def _secret_service(secrets: dict[str, str], seen: list[httpx.Request]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        secret_id = request.url.path.rsplit("/", 1)[-1]
        if request.method == "PUT":
            secrets[secret_id] = json.loads(request.content)["value"]
            return httpx.Response(204)
        if secret_id not in secrets:
            return httpx.Response(404)
        if request.method == "HEAD":
            return httpx.Response(200)
        return httpx.Response(200, json={"value": secrets[secret_id]})

    return httpx.MockTransport(handler)


class TestHttpSecretStore:
    @pytest.mark.asyncio
    async def test_round_trip(self) -> None:
        seen: list[httpx.Request] = []
        store = HttpSecretStore(
            "http://secrets.test/", token="tok", transport=_secret_service({}, seen),
        )
        ref = SecretRef(UserType.CLIENT, "u1", "github", "push", "email")

        assert await store.exists(ref) is False
        await store.set(ref, "a@x.com")
        assert await store.exists(ref) is True
        assert await store.get(ref) == "a@x.com"
        assert seen[0].headers["authorization"] == "Bearer tok"
        assert seen[0].url.path == f"/secrets/{ref.secret_id}"

    @pytest.mark.asyncio
    async def test_missing_secret_reads_none(self) -> None:
        store = HttpSecretStore("http://secrets.test", transport=_secret_service({}, []))
        assert await store.read("nope") is None

    @pytest.mark.asyncio
    async def test_server_error_raises(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        store = HttpSecretStore("http://secrets.test", transport=transport)
        with pytest.raises(SecretStoreError) as exc_info:
            await store.read("k")
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_connection_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        store = HttpSecretStore("http://secrets.test", transport=httpx.MockTransport(handler))
        with pytest.raises(SecretStoreError):
            await store.contains("k")
