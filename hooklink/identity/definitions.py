"""Webhook definition storage.

This module provides the DefinitionStore class for:
- Registering webhook definitions
- Looking definitions up by id or by (provider, event)
- Listing definitions created by a client user
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

from hooklink.identity.db import IdentityDB
from hooklink.identity.models import SecretKind, WebhookDefinition, WebhookDefinitionInput


class DefinitionNotFoundError(Exception):
    """Raised when a webhook definition is not found in the store."""

    pass


class DefinitionStore:
    """Persists webhook definitions.

    Several definitions may share a (provider, event) pair; lookups by pair
    return all of them ordered by (created_at, id).
    """

    def __init__(self, db: IdentityDB) -> None:
        self._db = db

    def create(
        self,
        data: WebhookDefinitionInput,
        creator_client_user_id: str,
        creator_organization_id: str | None = None,
    ) -> WebhookDefinition:
        """Store a validated definition and return it with its new id."""
        webhook_id = str(uuid.uuid4())
        now = datetime.now(UTC).isoformat()

        self._db.execute(
            """INSERT INTO webhooks
               (id, name, description, webhook_provider_id, subscribed_event_id,
                required_secrets_json, identifier_mapping_json, conversation_mapping,
                creator_client_user_id, creator_client_organization_id,
                created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                webhook_id,
                data.name,
                data.description,
                data.provider_id,
                data.subscribed_event_id,
                json.dumps([kind.value for kind in data.required_secrets]),
                json.dumps({kind.value: path for kind, path in data.identifier_mapping.items()}),
                data.conversation_mapping,
                creator_client_user_id,
                creator_organization_id or "",
                now,
                now,
            ),
        )

        return WebhookDefinition(
            id=webhook_id,
            name=data.name,
            description=data.description,
            provider_id=data.provider_id,
            subscribed_event_id=data.subscribed_event_id,
            required_secrets=list(data.required_secrets),
            identifier_mapping=dict(data.identifier_mapping),
            conversation_mapping=data.conversation_mapping,
            creator_client_user_id=creator_client_user_id,
            creator_organization_id=creator_organization_id,
            created_at=now,
        )

    def get(self, webhook_id: str) -> WebhookDefinition:
        """Retrieve a definition by id.

        Raises:
            DefinitionNotFoundError: If no definition has this id.
        """
        row = self._db.fetch_one("SELECT * FROM webhooks WHERE id = ?", (webhook_id,))
        if row is None:
            raise DefinitionNotFoundError(f"Webhook {webhook_id} not found")
        return self._row_to_definition(row)

    def find_by_provider_event(
        self, provider_id: str, subscribed_event_id: str
    ) -> list[WebhookDefinition]:
        rows = self._db.fetch_all(
            """SELECT * FROM webhooks
               WHERE webhook_provider_id = ? AND subscribed_event_id = ?
               ORDER BY created_at ASC, id ASC""",
            (provider_id, subscribed_event_id),
        )
        return [self._row_to_definition(row) for row in rows]

    def list_created_by(
        self, client_user_id: str, organization_id: str | None = None
    ) -> list[WebhookDefinition]:
        """List definitions created by a client user, newest first."""
        rows = self._db.fetch_all(
            """SELECT * FROM webhooks
               WHERE creator_client_user_id = ? AND creator_client_organization_id = ?
               ORDER BY created_at DESC, id DESC""",
            (client_user_id, organization_id or ""),
        )
        return [self._row_to_definition(row) for row in rows]

    def _row_to_definition(self, row: dict[str, Any]) -> WebhookDefinition:
        # Unknown kinds raise ValueError.
        required: list[str] = json.loads(row["required_secrets_json"])
        mapping: dict[str, str] = json.loads(row["identifier_mapping_json"])
        return WebhookDefinition(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            provider_id=row["webhook_provider_id"],
            subscribed_event_id=row["subscribed_event_id"],
            required_secrets=[SecretKind(kind) for kind in required],
            identifier_mapping={SecretKind(kind): path for kind, path in mapping.items()},
            conversation_mapping=row["conversation_mapping"],
            creator_client_user_id=row["creator_client_user_id"],
            creator_organization_id=row["creator_client_organization_id"] or None,
            created_at=row["created_at"],
        )
