"""Remote secret store over HTTP.

Talks to a secret service exposing:
- GET  /secrets/{secret_id}  -> {"value": "..."} or 404
- HEAD /secrets/{secret_id}  -> 200 or 404
- PUT  /secrets/{secret_id}  <- {"value": "..."}
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from hooklink.identity.errors import SecretStoreError
from hooklink.secrets.store import SecretStore

logger = logging.getLogger(__name__)


class HttpSecretStore(SecretStore):
    """Secret store client for a remote secret service."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _url(self, secret_id: str) -> str:
        return f"{self._base_url}/secrets/{quote(secret_id, safe='')}"

    async def _request(
        self, method: str, secret_id: str, json_body: dict[str, str] | None = None
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                return await client.request(
                    method,
                    self._url(secret_id),
                    json=json_body,
                    headers=self._headers(),
                    timeout=self._timeout,
                )
        except httpx.HTTPError as exc:
            logger.error("Secret store %s %s failed: %s", method, secret_id, exc)
            raise SecretStoreError(
                f"Secret store request failed for {secret_id}.",
                hint="Check SECRET_STORE_URL and that the secret service is reachable.",
            ) from exc

    def _raise_for_status(self, method: str, secret_id: str, response: httpx.Response) -> None:
        if response.status_code >= 400:
            logger.error(
                "Secret store %s %s returned %d", method, secret_id, response.status_code,
            )
            raise SecretStoreError(
                f"Secret store returned {response.status_code} for {secret_id}.",
            )

    async def read(self, secret_id: str) -> str | None:
        response = await self._request("GET", secret_id)
        if response.status_code == 404:
            return None
        self._raise_for_status("GET", secret_id, response)
        try:
            data = response.json()
        except ValueError as exc:
            raise SecretStoreError(f"Secret store returned invalid JSON for {secret_id}.") from exc
        value = data.get("value") if isinstance(data, dict) else None
        if value is None:
            return None
        return str(value)

    async def put(self, secret_id: str, value: str) -> None:
        response = await self._request("PUT", secret_id, {"value": value})
        self._raise_for_status("PUT", secret_id, response)

    async def contains(self, secret_id: str) -> bool:
        response = await self._request("HEAD", secret_id)
        if response.status_code == 404:
            return False
        self._raise_for_status("HEAD", secret_id, response)
        return True
