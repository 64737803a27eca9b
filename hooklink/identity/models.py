"""Identity layer Pydantic models.

This module defines the data models for webhook identity resolution:
- Closed vocabularies (WebhookStatus, SecretKind, ActionConfirmation, UserType)
- Stored records (WebhookDefinition, UserWebhookLink, AgentWebhookLink, WebhookEvent)
- Transient results (ResolvedIdentity, SetupNeeded)
- Definition input validation (WebhookDefinitionInput)
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

# --- Enums ---


class WebhookStatus(str, Enum):
    """Activation status of a user/webhook link."""

    UNSET = "unset"
    PENDING = "pending"
    ACTIVE = "active"


class SecretKind(str, Enum):
    """Recognized secret and identifier kinds.

    Identifier-mapping keys and required secrets of a definition are drawn
    from this set; anything else is rejected when the definition is created.
    """

    API_SECRET_KEY = "api_secret_key"
    API_PUBLISHABLE_KEY = "api_publishable_key"
    WEBHOOK_SIGNING_SECRET = "webhook_signing_secret"
    ACCOUNT_ID = "account_id"
    USER_ID = "user_id"
    EMAIL = "email"
    PHONE_NUMBER = "phone_number"
    PHONE_NUMBER_ID = "phone_number_id"
    WORKSPACE_ID = "workspace_id"
    ORGANIZATION_ID = "organization_id"
    REPOSITORY_ID = "repository_id"
    INSTALLATION_ID = "installation_id"
    CHANNEL_ID = "channel_id"
    PAGE_ID = "page_id"
    STORE_ID = "store_id"


class ActionConfirmation(str, Enum):
    """Actions the end-user confirms out of band before a link can activate."""

    WEBHOOK_URL_INPUTED = "webhook_url_inputed"


class UserType(str, Enum):
    """Namespace of the user a secret belongs to."""

    CLIENT = "client"
    PLATFORM = "platform"


# --- Stored Records ---


class WebhookDefinition(BaseModel):
    """A registered (provider, event) webhook configuration."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    provider_id: str
    subscribed_event_id: str
    required_secrets: list[SecretKind] = Field(default_factory=list)
    identifier_mapping: dict[SecretKind, str]
    conversation_mapping: str
    creator_client_user_id: str
    creator_organization_id: str | None = None
    created_at: str


class UserWebhookLink(BaseModel):
    """Activation record linking a client user to a webhook definition."""

    model_config = ConfigDict(frozen=True)

    webhook_id: str
    client_user_id: str
    client_organization_id: str | None = None
    platform_user_id: str
    status: WebhookStatus
    identifier_hash: str | None = None
    created_at: str
    updated_at: str


class AgentWebhookLink(BaseModel):
    """Agent assigned to handle a user's events for a webhook."""

    model_config = ConfigDict(frozen=True)

    webhook_id: str
    client_user_id: str
    client_organization_id: str | None = None
    platform_user_id: str
    agent_id: str
    created_at: str


class WebhookEvent(BaseModel):
    """A resolved inbound event recorded at dispatch time."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    webhook_id: str
    provider_id: str
    subscribed_event_id: str
    client_user_id: str
    client_organization_id: str | None = None
    platform_user_id: str
    agent_id: str
    conversation_id: str
    payload: dict[str, object]
    created_at: str


# --- Transient Results ---


class ResolvedIdentity(BaseModel):
    """Who should handle an inbound payload."""

    model_config = ConfigDict(frozen=True)

    webhook_id: str
    client_user_id: str
    client_organization_id: str | None = None
    platform_user_id: str
    agent_id: str
    conversation_id: str


class SetupNeeded(BaseModel):
    """Outstanding prerequisites before a link can activate."""

    model_config = ConfigDict(frozen=True)

    needs_setup: bool = True
    title: str
    message: str
    description: str
    provider_id: str
    subscribed_event_id: str
    webhook_url_to_input: str
    required_secret_inputs: list[SecretKind] = Field(default_factory=list)
    required_action_confirmations: list[ActionConfirmation] = Field(default_factory=list)


# --- Input Models ---


class WebhookDefinitionInput(BaseModel):
    """Validated input for creating a webhook definition."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    provider_id: str = Field(min_length=1)
    subscribed_event_id: str = Field(min_length=1)
    required_secrets: list[SecretKind] = Field(default_factory=list)
    identifier_mapping: dict[SecretKind, str] = Field(min_length=1)
    conversation_mapping: str = Field(min_length=1)

    @model_validator(mode="after")
    def _check_mappings(self) -> WebhookDefinitionInput:
        for kind, path in self.identifier_mapping.items():
            if not path or not path.strip():
                raise ValueError(f"identifier_mapping path for '{kind.value}' is empty")
            if kind not in self.required_secrets:
                raise ValueError(
                    f"Secret '{kind.value}' is used in identifier_mapping "
                    "but not listed in required_secrets"
                )
        if not self.conversation_mapping.strip():
            raise ValueError("conversation_mapping is empty")
        return self
