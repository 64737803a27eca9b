"""Shared test fixtures for hooklink."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from hooklink.audit.logger import AuditLogger
from hooklink.identity.activation import confirmation_ref, user_secret_ref
from hooklink.identity.db import IdentityDB
from hooklink.identity.definitions import DefinitionStore
from hooklink.identity.hashing import IdentifierHasher
from hooklink.identity.links import AgentLinkStore, UserLinkStore
from hooklink.identity.models import (
    ActionConfirmation,
    SecretKind,
    WebhookDefinition,
    WebhookDefinitionInput,
)
from hooklink.models import AuditEvent, AuditEventType, RiskLevel
from hooklink.secrets.store import SecretStore, SqliteSecretStore

# 32 random bytes as hex
HASH_KEY = "3f1c9a7e5b2d4086a1e7c3f95b0d2e4a6c8e0f1a3b5d7f9e1c3a5b7d9f0e2c4a"


@pytest.fixture
def identity_db(tmp_path: Path) -> Iterator[IdentityDB]:
    db = IdentityDB(str(tmp_path / "identity.db"))
    yield db
    db.close()


@pytest.fixture
def secret_store(tmp_path: Path) -> Iterator[SqliteSecretStore]:
    store = SqliteSecretStore(str(tmp_path / "secrets.db"))
    yield store
    store.close()


@pytest.fixture
def hasher() -> IdentifierHasher:
    return IdentifierHasher(HASH_KEY)


@pytest.fixture
def definitions(identity_db: IdentityDB) -> DefinitionStore:
    return DefinitionStore(identity_db)


@pytest.fixture
def user_links(identity_db: IdentityDB) -> UserLinkStore:
    return UserLinkStore(identity_db)


@pytest.fixture
def agent_links(identity_db: IdentityDB) -> AgentLinkStore:
    return AgentLinkStore(identity_db)


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


# --- Factory functions for test data ---


def make_definition_input(**kwargs) -> WebhookDefinitionInput:
    """Factory for WebhookDefinitionInput with an email identifier."""
    defaults: dict[str, object] = {
        "name": "Support inbox",
        "description": "Inbound support emails",
        "provider_id": "mailer",
        "subscribed_event_id": "message.received",
        "required_secrets": [SecretKind.EMAIL],
        "identifier_mapping": {SecretKind.EMAIL: "user.email"},
        "conversation_mapping": "thread.id",
    }
    defaults.update(kwargs)
    return WebhookDefinitionInput(**defaults)  # type: ignore[arg-type]


def make_definition(**kwargs) -> WebhookDefinition:
    """Factory for an in-memory WebhookDefinition (not persisted)."""
    defaults: dict[str, object] = {
        "id": "wh-1",
        "name": "Support inbox",
        "description": "Inbound support emails",
        "provider_id": "mailer",
        "subscribed_event_id": "message.received",
        "required_secrets": [SecretKind.EMAIL],
        "identifier_mapping": {SecretKind.EMAIL: "user.email"},
        "conversation_mapping": "thread.id",
        "creator_client_user_id": "creator-1",
        "created_at": "2026-01-01T00:00:00+00:00",
    }
    defaults.update(kwargs)
    return WebhookDefinition(**defaults)  # type: ignore[arg-type]


def make_audit_event(**kwargs) -> AuditEvent:
    """Factory for AuditEvent with sensible defaults."""
    defaults: dict[str, object] = {
        "event_type": AuditEventType.AUTH_FAILURE,
        "action": "test_action",
        "result": "failure",
        "risk_level": RiskLevel.HIGH,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)  # type: ignore[arg-type]


async def provision_user(
    store: SecretStore,
    definition: WebhookDefinition,
    client_user_id: str,
    secrets: dict[SecretKind, str],
    confirm_url: bool = True,
) -> None:
    """Store the secrets and URL confirmation a user needs to activate a link."""
    for kind, value in secrets.items():
        await store.set(user_secret_ref(definition, client_user_id, kind), value)
    if confirm_url:
        ref = confirmation_ref(definition, client_user_id, ActionConfirmation.WEBHOOK_URL_INPUTED)
        await store.set(ref, "true")
