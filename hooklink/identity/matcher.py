"""Definition lookup and structural validation."""

from __future__ import annotations

from hooklink.identity.definitions import DefinitionStore
from hooklink.identity.errors import WebhookConfigurationError
from hooklink.identity.models import WebhookDefinition


class DefinitionMatcher:
    """Finds candidate definitions for an inbound (provider, event) pair."""

    def __init__(self, definitions: DefinitionStore) -> None:
        self._definitions = definitions

    def find_candidates(self, provider_id: str, event_id: str) -> list[WebhookDefinition]:
        """Return every definition for the pair, ordered by (created_at, id)."""
        candidates = self._definitions.find_by_provider_event(provider_id, event_id)
        return sorted(candidates, key=lambda d: (d.created_at, d.id))

    def validate(self, definition: WebhookDefinition) -> None:
        """Check that a definition can be used to hash and route payloads.

        Raises:
            WebhookConfigurationError: If the identifier mapping is empty, maps
                a key to an empty path, or the conversation mapping is empty.
        """
        if not definition.identifier_mapping:
            raise WebhookConfigurationError(
                f"Webhook {definition.id} has no identifier mapping.",
                hint="Add at least one identifier mapping to the webhook definition.",
            )

        for kind, path in definition.identifier_mapping.items():
            if not path or not path.strip():
                raise WebhookConfigurationError(
                    f"Webhook {definition.id} maps '{kind.value}' to an empty path.",
                    hint="Every identifier mapping must point at a payload field.",
                )

        if not definition.conversation_mapping or not definition.conversation_mapping.strip():
            raise WebhookConfigurationError(
                f"Webhook {definition.id} has no conversation mapping.",
                hint="Set conversation_mapping to the payload field that names the conversation.",
            )
