"""Tests for identity database operations."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from hooklink.identity.db import IdentityDB


class TestIdentityDBInit:
    """Tests for database initialization."""

    def test_init_creates_database_file(self, tmp_path: Path):
        db_path = tmp_path / "nested" / "identity.db"
        IdentityDB(str(db_path)).close()
        assert db_path.exists()

    def test_init_creates_schema(self, identity_db: IdentityDB):
        result = identity_db.fetch_all("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {r["name"] for r in result}
        assert {"webhooks", "user_webhooks", "webhook_agent_links", "webhook_events"} <= tables

    def test_wal_mode_enabled(self, identity_db: IdentityDB):
        result = identity_db.fetch_one("PRAGMA journal_mode")
        assert result["journal_mode"] == "wal"

    def test_foreign_keys_enabled(self, identity_db: IdentityDB):
        result = identity_db.fetch_one("PRAGMA foreign_keys")
        assert result["foreign_keys"] == 1

    def test_reopen_keeps_data(self, tmp_path: Path):
        db_path = str(tmp_path / "identity.db")
        with IdentityDB(db_path) as db:
            _insert_webhook(db, "wh-1")
        with IdentityDB(db_path) as db:
            assert db.fetch_one("SELECT id FROM webhooks WHERE id = ?", ("wh-1",)) is not None


class TestIdentityDBOperations:
    """Tests for basic database operations."""

    def test_fetch_one_missing_returns_none(self, identity_db: IdentityDB):
        assert identity_db.fetch_one("SELECT * FROM webhooks WHERE id = ?", ("nope",)) is None

    def test_execute_returning_fetches_row(self, identity_db: IdentityDB):
        _insert_webhook(identity_db, "wh-1")
        row = identity_db.execute_returning(
            "UPDATE webhooks SET name = ? WHERE id = ? RETURNING name",
            ("renamed", "wh-1"),
        )
        assert row == {"name": "renamed"}

    def test_user_link_requires_existing_webhook(self, identity_db: IdentityDB):
        with pytest.raises(sqlite3.IntegrityError):
            identity_db.execute(
                """INSERT INTO user_webhooks
                   (webhook_id, client_user_id, platform_user_id, status,
                    created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                ("missing", "u1", "p1", "pending", "t", "t"),
            )

    def test_closed_database_raises(self, tmp_path: Path):
        db = IdentityDB(str(tmp_path / "identity.db"))
        db.close()
        with pytest.raises(sqlite3.ProgrammingError):
            db.fetch_all("SELECT * FROM webhooks")


def _insert_webhook(db: IdentityDB, webhook_id: str) -> None:
    db.execute(
        """INSERT INTO webhooks
           (id, name, description, webhook_provider_id, subscribed_event_id,
            conversation_mapping, creator_client_user_id, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (webhook_id, "n", "d", "github", "push", "repo.id", "creator", "t", "t"),
    )
