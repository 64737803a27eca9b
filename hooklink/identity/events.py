"""Log of resolved webhook events."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

from hooklink.identity.db import IdentityDB
from hooklink.identity.models import ResolvedIdentity, WebhookEvent


class EventLog:
    """Records resolved inbound events and lists them per user."""

    DEFAULT_LIMIT = 100
    MAX_LIMIT = 100

    def __init__(self, db: IdentityDB) -> None:
        self._db = db

    def record(
        self,
        identity: ResolvedIdentity,
        provider_id: str,
        subscribed_event_id: str,
        payload: dict[str, Any],
    ) -> WebhookEvent:
        event_id = str(uuid.uuid4())
        now = datetime.now(UTC).isoformat()

        self._db.execute(
            """INSERT INTO webhook_events
               (id, webhook_id, provider_id, subscribed_event_id, client_user_id,
                client_organization_id, platform_user_id, agent_id, conversation_id,
                payload_json, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                event_id,
                identity.webhook_id,
                provider_id,
                subscribed_event_id,
                identity.client_user_id,
                identity.client_organization_id or "",
                identity.platform_user_id,
                identity.agent_id,
                identity.conversation_id,
                json.dumps(payload),
                now,
            ),
        )

        return WebhookEvent(
            event_id=event_id,
            webhook_id=identity.webhook_id,
            provider_id=provider_id,
            subscribed_event_id=subscribed_event_id,
            client_user_id=identity.client_user_id,
            client_organization_id=identity.client_organization_id,
            platform_user_id=identity.platform_user_id,
            agent_id=identity.agent_id,
            conversation_id=identity.conversation_id,
            payload=payload,
            created_at=now,
        )

    def list_for_user(
        self,
        webhook_id: str,
        client_user_id: str,
        organization_id: str | None = None,
        limit: int | None = None,
    ) -> list[WebhookEvent]:
        """List a user's events for a webhook, newest first, at most MAX_LIMIT."""
        limit = min(limit or self.DEFAULT_LIMIT, self.MAX_LIMIT)
        rows = self._db.fetch_all(
            """SELECT * FROM webhook_events
               WHERE webhook_id = ? AND client_user_id = ? AND client_organization_id = ?
               ORDER BY created_at DESC, id DESC
               LIMIT ?""",
            (webhook_id, client_user_id, organization_id or "", limit),
        )
        return [self._row_to_event(row) for row in rows]

    def _row_to_event(self, row: dict[str, Any]) -> WebhookEvent:
        return WebhookEvent(
            event_id=row["id"],
            webhook_id=row["webhook_id"],
            provider_id=row["provider_id"],
            subscribed_event_id=row["subscribed_event_id"],
            client_user_id=row["client_user_id"],
            client_organization_id=row["client_organization_id"] or None,
            platform_user_id=row["platform_user_id"],
            agent_id=row["agent_id"],
            conversation_id=row["conversation_id"],
            payload=json.loads(row["payload_json"]),
            created_at=row["created_at"],
        )
