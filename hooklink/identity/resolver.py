"""Resolution of inbound webhook payloads to a user, agent and conversation.

Every candidate definition for the (provider, event) pair is tried in
matcher order. A malformed definition aborts the whole resolution; missing
payload data, an unknown hash, an inactive link or a missing agent only
eliminate the candidate they were found on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from hooklink.identity.errors import (
    BadRequestError,
    LinkForbiddenError,
    NotFoundError,
    WebhookIdentityError,
)
from hooklink.identity.hashing import IdentifierHasher, Scalar, stringify_scalar
from hooklink.identity.links import AgentLinkStore, UserLinkStore
from hooklink.identity.matcher import DefinitionMatcher
from hooklink.identity.models import (
    AgentWebhookLink,
    ResolvedIdentity,
    UserWebhookLink,
    WebhookDefinition,
    WebhookStatus,
)
from hooklink.identity.paths import extract_value

logger = logging.getLogger(__name__)


def _is_scalar(value: Any) -> bool:
    if isinstance(value, str):
        # Lone surrogates survive json.loads but cannot be hashed or stored.
        try:
            value.encode()
        except UnicodeEncodeError:
            return False
        return True
    return isinstance(value, (int, float, bool))


@dataclass
class _CandidateMatch:
    definition: WebhookDefinition
    link: UserWebhookLink
    agent_link: AgentWebhookLink


class WebhookResolver:
    """Maps a (provider, event, payload) triple to a ResolvedIdentity.

    Read-only: resolution never writes links, hashes or events.
    """

    def __init__(
        self,
        matcher: DefinitionMatcher,
        links: UserLinkStore,
        agent_links: AgentLinkStore,
        hasher: IdentifierHasher,
    ) -> None:
        self._matcher = matcher
        self._links = links
        self._agent_links = agent_links
        self._hasher = hasher

    def resolve(
        self, provider_id: str, event_id: str, payload: dict[str, Any]
    ) -> ResolvedIdentity:
        """Resolve a payload.

        Raises:
            NotFoundError: No definition, link or agent link matched.
            BadRequestError: The payload lacks identifier or conversation data.
            LinkForbiddenError: The matching link is not active.
            WebhookConfigurationError: A candidate definition is malformed.
        """
        candidates = self._matcher.find_candidates(provider_id, event_id)
        if not candidates:
            raise NotFoundError(
                f"No webhook definition found for provider '{provider_id}' "
                f"and event '{event_id}'.",
            )

        matches: list[_CandidateMatch] = []
        failures: list[WebhookIdentityError] = []
        for definition in candidates:
            self._matcher.validate(definition)
            try:
                matches.append(self._match_candidate(definition, payload))
            except (BadRequestError, LinkForbiddenError, NotFoundError) as exc:
                logger.debug(
                    "Webhook %s did not match: %s", definition.id, exc.__class__.__name__,
                )
                failures.append(exc)

        if not matches:
            raise self._select_failure(candidates, failures)

        winner = matches[0]
        if len(matches) > 1:
            logger.warning(
                "Payload for %s/%s matched %d webhooks; using %s, discarding %s",
                provider_id,
                event_id,
                len(matches),
                winner.definition.id,
                ", ".join(m.definition.id for m in matches[1:]),
            )

        conversation_id = self._extract_conversation_id(winner.definition, payload)
        return ResolvedIdentity(
            webhook_id=winner.definition.id,
            client_user_id=winner.link.client_user_id,
            client_organization_id=winner.link.client_organization_id,
            platform_user_id=winner.link.platform_user_id,
            agent_id=winner.agent_link.agent_id,
            conversation_id=conversation_id,
        )

    def _match_candidate(
        self, definition: WebhookDefinition, payload: dict[str, Any]
    ) -> _CandidateMatch:
        identifiers: dict[str, Scalar] = {}
        for kind, path in definition.identifier_mapping.items():
            value = extract_value(payload, path)
            if value is None or not _is_scalar(value):
                raise BadRequestError(
                    f"Missing or invalid identifier '{kind.value}' at '{path}' in the payload.",
                    hint="Ensure the payload contains every field the webhook maps.",
                )
            identifiers[kind.value] = value

        identifier_hash = self._hasher.hash(identifiers)
        link = self._links.find_by_hash(definition.id, identifier_hash)
        if link is None:
            raise NotFoundError("No user link matches the payload identifiers.")
        if link.status != WebhookStatus.ACTIVE:
            raise LinkForbiddenError(
                f"The user link for webhook {definition.id} is {link.status.value}.",
                hint="Complete the webhook setup to activate the link.",
            )

        agent_link = self._agent_links.find_for_user(
            definition.id, link.client_user_id, link.client_organization_id,
        )
        if agent_link is None:
            raise NotFoundError(
                f"No agent is linked to the user link for webhook {definition.id}.",
                hint="Link an agent to this webhook before sending events.",
            )
        return _CandidateMatch(definition=definition, link=link, agent_link=agent_link)

    def _select_failure(
        self, candidates: list[WebhookDefinition], failures: list[WebhookIdentityError]
    ) -> WebhookIdentityError:
        if len(candidates) == 1:
            return failures[0]
        for failure in failures:
            if isinstance(failure, LinkForbiddenError):
                return failure
        if all(isinstance(failure, BadRequestError) for failure in failures):
            return failures[-1]
        return NotFoundError("No webhook definition matched the payload.")

    def _extract_conversation_id(
        self, definition: WebhookDefinition, payload: dict[str, Any]
    ) -> str:
        value = extract_value(payload, definition.conversation_mapping)
        conversation_id = stringify_scalar(value) if _is_scalar(value) else ""
        if not conversation_id:
            raise BadRequestError(
                f"Missing conversation id at '{definition.conversation_mapping}' in the payload.",
                hint="Ensure the payload contains the field named by conversation_mapping.",
            )
        return conversation_id
