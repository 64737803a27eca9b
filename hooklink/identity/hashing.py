"""Identifier canonicalization and keyed hashing.

The identifier hash is the only durable trace of the identifiers a provider
embeds in its payloads. Activation writes it and resolution looks it up, so
both go through IdentifierHasher and nothing else.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
from collections.abc import Mapping
from typing import TYPE_CHECKING

from hooklink.identity.errors import HashKeyMissingError

if TYPE_CHECKING:
    from hooklink.secrets.store import SecretStore

logger = logging.getLogger(__name__)

Scalar = str | int | float | bool

DEFAULT_HASH_KEY_SECRET_ID = "webhook-identifier-hmac-key"

_MIN_KEY_HEX_CHARS = 64  # 32 bytes


def stringify_scalar(value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, str):
        return value
    raise TypeError(f"Identifier values must be scalars, got {type(value).__name__}")


def canonicalize_identifiers(identifiers: Mapping[str, Scalar | None]) -> str:
    """Return the canonical text of an identifier mapping.

    Keys are sorted, values coerced to strings, and None values dropped.
    An empty mapping canonicalizes to "{}".
    """
    normalized: dict[str, str] = {}
    for key in sorted(identifiers):
        value = identifiers[key]
        if value is None:
            logger.debug("Identifier '%s' is None and is excluded from the hash", key)
            continue
        normalized[key] = stringify_scalar(value)
    return json.dumps(normalized, separators=(",", ":"), ensure_ascii=False)


class IdentifierHasher:
    """HMAC-SHA256 over canonicalized identifiers.

    The key is passed in explicitly; there is no module-level key state.
    """

    def __init__(self, key: str) -> None:
        if not key:
            raise HashKeyMissingError(
                "The identifier hashing key is missing.",
                hint="Provision the HMAC key in the secret store before serving resolution.",
            )
        if len(key) < _MIN_KEY_HEX_CHARS:
            logger.warning(
                "Identifier hashing key is shorter than %d hex characters", _MIN_KEY_HEX_CHARS,
            )
        self._key = key.encode()

    def hash(self, identifiers: Mapping[str, Scalar | None]) -> str:
        """Hash an identifier mapping; returns 64 lowercase hex characters."""
        return self.hash_canonical(canonicalize_identifiers(identifiers))

    def hash_canonical(self, canonical: str) -> str:
        return hmac.new(self._key, canonical.encode(), hashlib.sha256).hexdigest()


async def load_or_create_hash_key(
    secret_store: SecretStore,
    secret_id: str = DEFAULT_HASH_KEY_SECRET_ID,
) -> str:
    """Load the process-wide hashing key, generating and storing it on first boot."""
    key = await secret_store.read(secret_id)
    if key:
        return key

    logger.info("Identifier hashing key not found; generating a new one")
    key = secrets.token_hex(32)
    await secret_store.put(secret_id, key)
    return key
