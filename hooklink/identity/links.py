"""User and agent link storage.

This module provides:
- UserLinkStore: activation status and identifier hash per (webhook, user, org)
- AgentLinkStore: agents assigned to an active user link

The identifier hash is non-null exactly when a link is ACTIVE. UserLinkStore
checks this on every write, so no caller can persist a hash on an inactive
link or an active link without one.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from hooklink.identity.db import IdentityDB
from hooklink.identity.models import AgentWebhookLink, UserWebhookLink, WebhookStatus


def _check_hash_invariant(status: WebhookStatus, identifier_hash: str | None) -> None:
    if status == WebhookStatus.ACTIVE and not identifier_hash:
        raise ValueError("An active link requires an identifier hash")
    if status != WebhookStatus.ACTIVE and identifier_hash is not None:
        raise ValueError(f"A {status.value} link cannot carry an identifier hash")


class UserLinkStore:
    """Persists user/webhook links."""

    def __init__(self, db: IdentityDB) -> None:
        self._db = db

    def get(
        self,
        webhook_id: str,
        client_user_id: str,
        organization_id: str | None = None,
    ) -> UserWebhookLink | None:
        row = self._db.fetch_one(
            """SELECT * FROM user_webhooks
               WHERE webhook_id = ? AND client_user_id = ? AND client_organization_id = ?""",
            (webhook_id, client_user_id, organization_id or ""),
        )
        if row is None:
            return None
        return self._row_to_link(row)

    def create_pending(
        self,
        webhook_id: str,
        client_user_id: str,
        platform_user_id: str,
        organization_id: str | None = None,
    ) -> tuple[UserWebhookLink, bool]:
        """Create the link as PENDING unless it already exists.

        Returns:
            Tuple of (link, created). An existing link is returned unchanged.
        """
        now = datetime.now(UTC).isoformat()
        row = self._db.execute_returning(
            """INSERT INTO user_webhooks
               (webhook_id, client_user_id, client_organization_id, platform_user_id,
                status, client_user_identification_hash, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, NULL, ?, ?)
               ON CONFLICT (webhook_id, client_user_id, client_organization_id) DO NOTHING
               RETURNING *""",
            (
                webhook_id,
                client_user_id,
                organization_id or "",
                platform_user_id,
                WebhookStatus.PENDING.value,
                now,
                now,
            ),
        )
        if row is not None:
            return self._row_to_link(row), True

        existing = self.get(webhook_id, client_user_id, organization_id)
        if existing is None:
            raise RuntimeError(f"User link for webhook {webhook_id} vanished after insert")
        return existing, False

    def upsert_status(
        self,
        webhook_id: str,
        client_user_id: str,
        platform_user_id: str,
        status: WebhookStatus,
        identifier_hash: str | None,
        organization_id: str | None = None,
    ) -> UserWebhookLink:
        """Atomically write status and hash for a link, creating it if needed.

        Raises:
            ValueError: If the hash does not agree with the status.
        """
        _check_hash_invariant(status, identifier_hash)

        now = datetime.now(UTC).isoformat()
        row = self._db.execute_returning(
            """INSERT INTO user_webhooks
               (webhook_id, client_user_id, client_organization_id, platform_user_id,
                status, client_user_identification_hash, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT (webhook_id, client_user_id, client_organization_id) DO UPDATE SET
                 platform_user_id = excluded.platform_user_id,
                 status = excluded.status,
                 client_user_identification_hash = excluded.client_user_identification_hash,
                 updated_at = excluded.updated_at
               RETURNING *""",
            (
                webhook_id,
                client_user_id,
                organization_id or "",
                platform_user_id,
                status.value,
                identifier_hash,
                now,
                now,
            ),
        )
        if row is None:
            raise RuntimeError(f"Upsert of user link for webhook {webhook_id} returned no row")
        return self._row_to_link(row)

    def find_by_hash(self, webhook_id: str, identifier_hash: str) -> UserWebhookLink | None:
        """Find the link whose stored hash matches, whatever its status."""
        row = self._db.fetch_one(
            """SELECT * FROM user_webhooks
               WHERE webhook_id = ? AND client_user_identification_hash = ?
               ORDER BY created_at ASC
               LIMIT 1""",
            (webhook_id, identifier_hash),
        )
        if row is None:
            return None
        return self._row_to_link(row)

    def _row_to_link(self, row: dict[str, Any]) -> UserWebhookLink:
        return UserWebhookLink(
            webhook_id=row["webhook_id"],
            client_user_id=row["client_user_id"],
            client_organization_id=row["client_organization_id"] or None,
            platform_user_id=row["platform_user_id"],
            status=WebhookStatus(row["status"]),
            identifier_hash=row["client_user_identification_hash"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class AgentLinkStore:
    """Persists agent/webhook links."""

    def __init__(self, db: IdentityDB) -> None:
        self._db = db

    def link(
        self,
        webhook_id: str,
        client_user_id: str,
        platform_user_id: str,
        agent_id: str,
        organization_id: str | None = None,
    ) -> tuple[AgentWebhookLink, bool]:
        """Link an agent; linking the same agent twice is a no-op.

        Returns:
            Tuple of (link, created).
        """
        now = datetime.now(UTC).isoformat()
        row = self._db.execute_returning(
            """INSERT INTO webhook_agent_links
               (webhook_id, client_user_id, client_organization_id, platform_user_id,
                agent_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT (webhook_id, client_user_id, client_organization_id, agent_id)
               DO NOTHING
               RETURNING *""",
            (webhook_id, client_user_id, organization_id or "", platform_user_id, agent_id, now),
        )
        if row is not None:
            return self._row_to_link(row), True

        existing = self._db.fetch_one(
            """SELECT * FROM webhook_agent_links
               WHERE webhook_id = ? AND client_user_id = ? AND client_organization_id = ?
                 AND agent_id = ?""",
            (webhook_id, client_user_id, organization_id or "", agent_id),
        )
        if existing is None:
            raise RuntimeError(f"Agent link for webhook {webhook_id} vanished after insert")
        return self._row_to_link(existing), False

    def find_for_user(
        self,
        webhook_id: str,
        client_user_id: str,
        organization_id: str | None = None,
    ) -> AgentWebhookLink | None:
        """Return the oldest agent link for a user link, or None."""
        row = self._db.fetch_one(
            """SELECT * FROM webhook_agent_links
               WHERE webhook_id = ? AND client_user_id = ? AND client_organization_id = ?
               ORDER BY created_at ASC, agent_id ASC
               LIMIT 1""",
            (webhook_id, client_user_id, organization_id or ""),
        )
        if row is None:
            return None
        return self._row_to_link(row)

    def _row_to_link(self, row: dict[str, Any]) -> AgentWebhookLink:
        return AgentWebhookLink(
            webhook_id=row["webhook_id"],
            client_user_id=row["client_user_id"],
            client_organization_id=row["client_organization_id"] or None,
            platform_user_id=row["platform_user_id"],
            agent_id=row["agent_id"],
            created_at=row["created_at"],
        )
