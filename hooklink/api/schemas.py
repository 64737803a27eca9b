"""Request bodies for the HTTP API.

Bodies accept the camelCase field names used by API clients as well as the
snake_case attribute names.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hooklink.identity.models import SecretKind, WebhookDefinitionInput


class CreateWebhookRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    description: str
    provider_id: str = Field(alias="webhookProviderId")
    subscribed_event_id: str = Field(alias="subscribedEventId")
    required_secrets: list[SecretKind] = Field(default_factory=list, alias="requiredSecrets")
    identifier_mapping: dict[SecretKind, str] = Field(
        alias="clientUserIdentificationMapping",
    )
    conversation_mapping: str = Field(alias="conversationIdIdentificationMapping")

    def to_input(self) -> WebhookDefinitionInput:
        """Validate the request as a definition.

        Raises:
            ValidationError: If the mappings break definition rules.
        """
        return WebhookDefinitionInput(
            name=self.name,
            description=self.description,
            provider_id=self.provider_id,
            subscribed_event_id=self.subscribed_event_id,
            required_secrets=self.required_secrets,
            identifier_mapping=self.identifier_mapping,
            conversation_mapping=self.conversation_mapping,
        )


class ResolveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    provider_id: str = Field(min_length=1, alias="webhookProviderId")
    subscribed_event_id: str = Field(min_length=1, alias="subscribedEventId")
    payload: dict[str, Any]


class LinkAgentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    agent_id: str = Field(min_length=1, alias="agentId")


def format_validation_error(exc: ValidationError) -> str:
    """Flatten pydantic errors into one readable line."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)
