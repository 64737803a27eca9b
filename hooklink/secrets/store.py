"""Secret store interface and local SQLite implementation.

Secrets are addressed by a flat secret id. Per-user secrets derive their id
from a SecretRef so the same (user, provider, sub-provider, key) always maps
to the same entry.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from hooklink.identity.errors import SecretStoreError
from hooklink.identity.models import UserType

logger = logging.getLogger(__name__)

_SECRET_ID_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")
_SECRET_ID_MAX_LENGTH = 255

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS secrets (
    secret_id TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def sanitize_secret_id(raw: str) -> str:
    """Replace unsupported characters with '-', lowercase, and truncate."""
    return _SECRET_ID_UNSAFE.sub("-", raw).lower()[:_SECRET_ID_MAX_LENGTH]


@dataclass(frozen=True)
class SecretRef:
    """Address of a per-user secret."""

    user_type: UserType
    user_id: str
    provider: str
    sub_provider: str
    key: str

    @property
    def secret_id(self) -> str:
        raw = "_".join(
            [self.user_type.value, self.user_id, self.provider, self.sub_provider, self.key]
        )
        return sanitize_secret_id(raw)


class SecretStore(ABC):
    """Async key/value secret storage.

    Implementations raise SecretStoreError when the backend fails; a missing
    secret is not a failure.
    """

    @abstractmethod
    async def read(self, secret_id: str) -> str | None:
        """Return the secret value, or None if it does not exist."""

    @abstractmethod
    async def put(self, secret_id: str, value: str) -> None:
        """Create or overwrite a secret."""

    @abstractmethod
    async def contains(self, secret_id: str) -> bool:
        """Return True if the secret exists."""

    async def exists(self, ref: SecretRef) -> bool:
        return await self.contains(ref.secret_id)

    async def get(self, ref: SecretRef) -> str | None:
        return await self.read(ref.secret_id)

    async def set(self, ref: SecretRef, value: str) -> None:
        await self.put(ref.secret_id, value)


class SqliteSecretStore(SecretStore):
    """Secret store backed by a local SQLite file."""

    def __init__(self, db_path: str) -> None:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = sqlite3.connect(db_path)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA_SQL)
        self._conn.commit()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise SecretStoreError("Secret store connection is closed.")
        return self._conn

    async def read(self, secret_id: str) -> str | None:
        try:
            row = self._connection().execute(
                "SELECT value FROM secrets WHERE secret_id = ?", (secret_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise SecretStoreError(f"Failed to read secret {secret_id}.") from exc
        if row is None:
            return None
        return row[0]

    async def put(self, secret_id: str, value: str) -> None:
        conn = self._connection()
        try:
            conn.execute(
                """INSERT INTO secrets (secret_id, value, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT (secret_id) DO UPDATE SET
                     value = excluded.value,
                     updated_at = excluded.updated_at""",
                (secret_id, value, datetime.now(UTC).isoformat()),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise SecretStoreError(f"Failed to store secret {secret_id}.") from exc
        logger.debug("Stored secret %s", secret_id)

    async def contains(self, secret_id: str) -> bool:
        try:
            row = self._connection().execute(
                "SELECT 1 FROM secrets WHERE secret_id = ?", (secret_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise SecretStoreError(f"Failed to look up secret {secret_id}.") from exc
        return row is not None

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
