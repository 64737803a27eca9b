"""Link activation state machine.

A user link only becomes ACTIVE once the user has confirmed entering the
target URL in the provider's dashboard and every required secret is in the
secret store. Activation hashes the stored identifier values and writes the
hash together with the ACTIVE status; losing a prerequisite demotes the link
back to PENDING and clears the hash.

LinkActivator is the only writer of identifier hashes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from hooklink.identity.errors import SecretStoreMismatchError
from hooklink.identity.hashing import IdentifierHasher
from hooklink.identity.links import UserLinkStore
from hooklink.identity.models import (
    ActionConfirmation,
    SecretKind,
    SetupNeeded,
    UserType,
    UserWebhookLink,
    WebhookDefinition,
    WebhookStatus,
)
from hooklink.models import AuditEvent, AuditEventType, RiskLevel
from hooklink.secrets.store import SecretRef, SecretStore

if TYPE_CHECKING:
    from hooklink.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

CONFIRMED_VALUE = "true"

_SETUP_STEPS = """\
1. Provide a clickable link for the user to input the webhook URL into {provider}'s dashboard.
2. Provide guidance for the user to enable the event {event}.
3. Ask the user to store the required secrets and confirm once the URL is entered.
4. Once the user confirms, evaluate the webhook link again to check its status."""


@dataclass
class ActivationOutcome:
    """Result of evaluating a user link.

    Exactly one of ``setup_needed`` (prerequisites outstanding) or an ACTIVE
    ``link`` is meaningful; ``link`` is always the stored row after evaluation.
    """

    link: UserWebhookLink
    setup_needed: SetupNeeded | None = None
    created: bool = False
    newly_activated: bool = False

    @property
    def active(self) -> bool:
        return self.setup_needed is None and self.link.status == WebhookStatus.ACTIVE


def build_target_url(webhook_base_url: str, definition: WebhookDefinition) -> str:
    """Return the URL the user must enter in the provider's dashboard."""
    return (
        f"{webhook_base_url.rstrip('/')}/"
        f"{definition.provider_id}/{definition.subscribed_event_id}"
    )


def confirmation_ref(
    definition: WebhookDefinition, client_user_id: str, confirmation: ActionConfirmation
) -> SecretRef:
    return SecretRef(
        user_type=UserType.CLIENT,
        user_id=client_user_id,
        provider=definition.provider_id,
        sub_provider=definition.subscribed_event_id,
        key=confirmation.value,
    )


def user_secret_ref(
    definition: WebhookDefinition, client_user_id: str, kind: SecretKind
) -> SecretRef:
    return SecretRef(
        user_type=UserType.CLIENT,
        user_id=client_user_id,
        provider=definition.provider_id,
        sub_provider=definition.subscribed_event_id,
        key=kind.value,
    )


def required_secret_kinds(definition: WebhookDefinition) -> list[SecretKind]:
    """Required secrets followed by identifier keys, deduplicated in order."""
    kinds: list[SecretKind] = []
    for kind in [*definition.required_secrets, *definition.identifier_mapping]:
        if kind not in kinds:
            kinds.append(kind)
    return kinds


class LinkActivator:
    """Evaluates and transitions user/webhook links.

    Repeated evaluation with unchanged secrets yields the same status and the
    same hash.
    """

    def __init__(
        self,
        links: UserLinkStore,
        secret_store: SecretStore,
        hasher: IdentifierHasher,
        webhook_base_url: str,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._links = links
        self._secrets = secret_store
        self._hasher = hasher
        self._webhook_base_url = webhook_base_url
        self._audit = audit_logger

    async def evaluate(
        self,
        definition: WebhookDefinition,
        client_user_id: str,
        platform_user_id: str,
        organization_id: str | None = None,
    ) -> ActivationOutcome:
        """Activate the link if every prerequisite is met, else report what is missing.

        Raises:
            SecretStoreError: If the secret store fails.
            SecretStoreMismatchError: If a secret reported as present has no value.
        """
        link, created = self._links.create_pending(
            definition.id, client_user_id, platform_user_id, organization_id,
        )

        missing_confirmations: list[ActionConfirmation] = []
        confirmation = ActionConfirmation.WEBHOOK_URL_INPUTED
        confirmed = await self._secrets.get(
            confirmation_ref(definition, client_user_id, confirmation)
        )
        if confirmed != CONFIRMED_VALUE:
            missing_confirmations.append(confirmation)

        missing_secrets: list[SecretKind] = []
        staged: dict[str, str | None] = {}
        for kind in required_secret_kinds(definition):
            ref = user_secret_ref(definition, client_user_id, kind)
            if not await self._secrets.exists(ref):
                missing_secrets.append(kind)
                continue
            if kind in definition.identifier_mapping:
                staged[kind.value] = await self._secrets.get(ref)

        if missing_confirmations or missing_secrets:
            return self._setup_needed(
                definition, link, created, missing_secrets, missing_confirmations,
            )

        present = {key: value for key, value in staged.items() if value is not None}
        if len(present) != len(definition.identifier_mapping):
            logger.error(
                "Secret store returned %d of %d identifier values for webhook %s",
                len(present), len(definition.identifier_mapping), definition.id,
            )
            raise SecretStoreMismatchError(
                "The secret store reported identifier secrets that it could not return.",
                hint="Re-store the identifier secrets for this webhook and try again.",
            )

        identifier_hash = self._hasher.hash(present)
        was_active = link.status == WebhookStatus.ACTIVE
        link = self._links.upsert_status(
            definition.id,
            client_user_id,
            platform_user_id,
            WebhookStatus.ACTIVE,
            identifier_hash,
            organization_id,
        )

        if not was_active:
            logger.info("Activated user link for webhook %s", definition.id)
            self._log(
                AuditEventType.LINK_ACTIVATED, definition, client_user_id, "success",
                RiskLevel.INFO,
            )
        return ActivationOutcome(link=link, created=created, newly_activated=not was_active)

    def _setup_needed(
        self,
        definition: WebhookDefinition,
        link: UserWebhookLink,
        created: bool,
        missing_secrets: list[SecretKind],
        missing_confirmations: list[ActionConfirmation],
    ) -> ActivationOutcome:
        if link.status == WebhookStatus.ACTIVE:
            link = self._links.upsert_status(
                definition.id,
                link.client_user_id,
                link.platform_user_id,
                WebhookStatus.PENDING,
                None,
                link.client_organization_id,
            )
            logger.warning(
                "Demoted user link for webhook %s to pending; prerequisites missing",
                definition.id,
            )
            self._log(
                AuditEventType.LINK_DEMOTED, definition, link.client_user_id, "demoted",
                RiskLevel.MEDIUM,
                {
                    "missing_secrets": [kind.value for kind in missing_secrets],
                    "missing_confirmations": [c.value for c in missing_confirmations],
                },
            )

        self._log(
            AuditEventType.SETUP_NEEDED, definition, link.client_user_id, "pending",
            RiskLevel.INFO,
            {
                "missing_secrets": [kind.value for kind in missing_secrets],
                "missing_confirmations": [c.value for c in missing_confirmations],
            },
        )

        setup = SetupNeeded(
            title=f"Webhook Setup Required for {definition.name}",
            message="Additional setup is needed to activate this webhook",
            description=_SETUP_STEPS.format(
                provider=definition.provider_id, event=definition.subscribed_event_id,
            ),
            provider_id=definition.provider_id,
            subscribed_event_id=definition.subscribed_event_id,
            webhook_url_to_input=build_target_url(self._webhook_base_url, definition),
            required_secret_inputs=missing_secrets,
            required_action_confirmations=missing_confirmations,
        )
        return ActivationOutcome(link=link, setup_needed=setup, created=created)

    def _log(
        self,
        event_type: AuditEventType,
        definition: WebhookDefinition,
        client_user_id: str,
        result: str,
        risk_level: RiskLevel,
        details: dict[str, object] | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._audit.log(AuditEvent(
            event_type=event_type,
            user_id=client_user_id,
            webhook_id=definition.id,
            action="evaluate_link",
            result=result,
            risk_level=risk_level,
            details=details,
        ))
