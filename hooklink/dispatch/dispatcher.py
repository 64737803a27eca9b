"""Outbound dispatch of resolved webhook events to the agent service.

Pipeline stages:
1. Sanitize the conversation id
2. Record the event in the event log
3. Get or create the agent conversation
4. Trigger an agent run with a message describing the payload

Dispatch runs after the inbound response has been sent. Failures are logged
and audited; nothing is raised to the caller.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

from hooklink.models import AuditEvent, AuditEventType, RiskLevel

if TYPE_CHECKING:
    from hooklink.audit.logger import AuditLogger
    from hooklink.identity.events import EventLog
    from hooklink.identity.models import ResolvedIdentity, WebhookDefinition

logger = logging.getLogger(__name__)

_CONVERSATION_ID_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")

_MESSAGE_TEMPLATE = """\
This is an automated message from {provider}/{event}.
You received this webhook event with the following payload:
{payload}
If you need more context about the event, you may want to retrieve past tool calls
and past webhook events to get the relevant context."""


def sanitize_conversation_id(conversation_id: str) -> str:
    """Replace characters outside [A-Za-z0-9_-] with '-'."""
    return _CONVERSATION_ID_UNSAFE.sub("-", conversation_id)


class DispatchError(Exception):
    """Raised internally when the agent service rejects a dispatch step."""

    pass


class AgentDispatcher:
    """Hands resolved events to the agent-execution service."""

    def __init__(
        self,
        event_log: EventLog,
        agent_service_url: str | None = None,
        agent_service_api_key: str | None = None,
        audit_logger: AuditLogger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._events = event_log
        self._base_url = agent_service_url.rstrip("/") if agent_service_url else None
        self._api_key = agent_service_api_key
        self._audit = audit_logger
        self._transport = transport
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return self._base_url is not None

    async def dispatch(
        self,
        identity: ResolvedIdentity,
        definition: WebhookDefinition,
        payload: dict[str, Any],
    ) -> bool:
        """Record and forward a resolved event. Returns True if the agent run was triggered."""
        conversation_id = sanitize_conversation_id(identity.conversation_id)
        identity = identity.model_copy(update={"conversation_id": conversation_id})

        try:
            self._events.record(
                identity, definition.provider_id, definition.subscribed_event_id, payload,
            )
        except sqlite3.Error:
            logger.exception("Failed to record event for webhook %s", identity.webhook_id)

        if not self.enabled:
            logger.info(
                "Agent service not configured; event for webhook %s recorded only",
                identity.webhook_id,
            )
            return False

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                await self._post(client, "/conversations/get-or-create", identity, {
                    "agentId": identity.agent_id,
                    "channelId": definition.provider_id,
                    "conversationId": conversation_id,
                })
                await self._post(client, "/runs/trigger", identity, {
                    "conversationId": conversation_id,
                    "message": self._build_message(definition, payload),
                })
        except (httpx.HTTPError, DispatchError) as exc:
            logger.error(
                "Dispatch for webhook %s to agent %s failed: %s",
                identity.webhook_id, identity.agent_id, exc,
            )
            self._log_failure(identity, str(exc))
            return False

        logger.info(
            "Triggered agent %s for webhook %s", identity.agent_id, identity.webhook_id,
        )
        return True

    async def _post(
        self,
        client: httpx.AsyncClient,
        path: str,
        identity: ResolvedIdentity,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "x-client-user-id": identity.client_user_id,
            "x-platform-user-id": identity.platform_user_id,
        }
        if identity.client_organization_id:
            headers["x-client-organization-id"] = identity.client_organization_id
        if self._api_key:
            headers["x-platform-api-key"] = self._api_key

        resp = await client.post(
            f"{self._base_url}{path}", json=body, headers=headers, timeout=self._timeout,
        )
        if resp.status_code >= 400:
            raise DispatchError(f"{path} returned {resp.status_code}")

        try:
            data = resp.json()
        except json.JSONDecodeError:
            return {}
        if isinstance(data, dict) and data.get("success") is False:
            raise DispatchError(f"{path} reported failure: {data.get('error', 'unknown')}")
        return data if isinstance(data, dict) else {}

    def _build_message(
        self, definition: WebhookDefinition, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return {
            "id": str(uuid.uuid4()),
            "role": "user",
            "content": _MESSAGE_TEMPLATE.format(
                provider=definition.provider_id,
                event=definition.subscribed_event_id,
                payload=json.dumps(payload, indent=2),
            ),
            "createdAt": datetime.now(UTC).isoformat(),
        }

    def _log_failure(self, identity: ResolvedIdentity, reason: str) -> None:
        if self._audit is None:
            return
        self._audit.log(AuditEvent(
            event_type=AuditEventType.DISPATCH_FAILED,
            user_id=identity.client_user_id,
            webhook_id=identity.webhook_id,
            action="dispatch",
            result="failure",
            risk_level=RiskLevel.MEDIUM,
            details={"agent_id": identity.agent_id, "reason": reason},
        ))
