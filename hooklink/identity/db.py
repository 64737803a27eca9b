"""SQLite database operations for the identity layer.

This module provides the IdentityDB class for persistent storage of:
- Webhook definitions
- User/webhook links and their identifier hashes
- Agent/webhook links
- Resolved webhook events
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

# Organization ids are stored as '' when absent so they can take part in
# primary keys (SQLite treats NULLs in a key as distinct).
SCHEMA_SQL = """
-- Definitions table: one row per registered (provider, event) configuration
CREATE TABLE IF NOT EXISTS webhooks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    webhook_provider_id TEXT NOT NULL,
    subscribed_event_id TEXT NOT NULL,
    required_secrets_json TEXT NOT NULL DEFAULT '[]',
    identifier_mapping_json TEXT NOT NULL DEFAULT '{}',
    conversation_mapping TEXT NOT NULL,
    creator_client_user_id TEXT NOT NULL,
    creator_client_organization_id TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Index for candidate lookups at resolution time
CREATE INDEX IF NOT EXISTS idx_webhooks_provider_event
    ON webhooks(webhook_provider_id, subscribed_event_id);

-- User links table: activation status and identifier hash per user
CREATE TABLE IF NOT EXISTS user_webhooks (
    webhook_id TEXT NOT NULL,
    client_user_id TEXT NOT NULL,
    client_organization_id TEXT NOT NULL DEFAULT '',
    platform_user_id TEXT NOT NULL,
    status TEXT NOT NULL,
    client_user_identification_hash TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (webhook_id, client_user_id, client_organization_id),
    FOREIGN KEY (webhook_id) REFERENCES webhooks(id) ON DELETE CASCADE
);

-- Index for hash lookups at resolution time
CREATE INDEX IF NOT EXISTS idx_user_webhooks_hash
    ON user_webhooks(webhook_id, client_user_identification_hash);

-- Agent links table: which agent handles a user's events
CREATE TABLE IF NOT EXISTS webhook_agent_links (
    webhook_id TEXT NOT NULL,
    client_user_id TEXT NOT NULL,
    client_organization_id TEXT NOT NULL DEFAULT '',
    platform_user_id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (webhook_id, client_user_id, client_organization_id, agent_id),
    FOREIGN KEY (webhook_id) REFERENCES webhooks(id) ON DELETE CASCADE
);

-- Events table: resolved inbound events handed to dispatch
CREATE TABLE IF NOT EXISTS webhook_events (
    id TEXT PRIMARY KEY,
    webhook_id TEXT NOT NULL,
    provider_id TEXT NOT NULL,
    subscribed_event_id TEXT NOT NULL,
    client_user_id TEXT NOT NULL,
    client_organization_id TEXT NOT NULL DEFAULT '',
    platform_user_id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    conversation_id TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    created_at TEXT NOT NULL
);

-- Index for per-user event listing
CREATE INDEX IF NOT EXISTS idx_webhook_events_user
    ON webhook_events(webhook_id, client_user_id);
"""


class IdentityDB:
    """SQLite database wrapper for identity layer persistence.

    Provides:
    - WAL mode for crash recovery
    - Parameterized queries for SQL injection prevention
    - Schema initialization on first use
    - Context manager support for connection lifecycle
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the identity database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._initialize()

    def _initialize(self) -> None:
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self._db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._conn

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        """Execute a SQL statement with parameters and commit.

        Args:
            sql: SQL statement with ? placeholders.
            params: Tuple of parameter values.

        Returns:
            The cursor after execution.
        """
        conn = self._connection()
        cursor = conn.execute(sql, params)
        conn.commit()
        return cursor

    def execute_returning(
        self, sql: str, params: tuple[Any, ...] = ()
    ) -> dict[str, Any] | None:
        """Execute a statement with a RETURNING clause, fetching before commit.

        SQLite only yields RETURNING rows if they are fetched before the
        transaction is committed.
        """
        conn = self._connection()
        cursor = conn.execute(sql, params)
        row = cursor.fetchone()
        conn.commit()
        if row is None:
            return None
        return dict(row)

    def fetch_one(self, sql: str, params: tuple[Any, ...] = ()) -> dict[str, Any] | None:
        """Fetch a single row as a dictionary, or None."""
        cursor = self._connection().execute(sql, params)
        row = cursor.fetchone()
        if row is None:
            return None
        return dict(row)

    def fetch_all(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        """Fetch all rows as a list of dictionaries."""
        cursor = self._connection().execute(sql, params)
        return [dict(row) for row in cursor.fetchall()]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> IdentityDB:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()
