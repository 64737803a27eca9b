"""Webhook API endpoints.

Provides endpoints for:
- Creating and listing webhook definitions
- Evaluating user links and linking agents
- Resolving payloads (service API and public provider callbacks)
- Listing a user's resolved events
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from hooklink.api.schemas import (
    CreateWebhookRequest,
    LinkAgentRequest,
    ResolveRequest,
    format_validation_error,
)
from hooklink.identity.definitions import DefinitionNotFoundError
from hooklink.identity.errors import WebhookIdentityError
from hooklink.identity.models import WebhookStatus
from hooklink.models import AuditEvent, AuditEventType, RiskLevel

if TYPE_CHECKING:
    from hooklink.api.app import AppServices
    from hooklink.identity.models import ResolvedIdentity, WebhookDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    """Caller identity taken from the credential headers."""

    platform_user_id: str
    client_user_id: str
    client_organization_id: str | None = None


def _ok(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse({"success": True, "data": data}, status_code=status_code)


def _error(error: str, details: str, status_code: int, hint: str | None = None) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "error": error, "details": details}
    if hint:
        body["hint"] = hint
    return JSONResponse(body, status_code=status_code)


def _identity_error(exc: WebhookIdentityError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


def _services(request: Request) -> AppServices:
    return request.app.state.services


def _credentials(request: Request) -> Credentials | JSONResponse:
    platform_user_id = request.headers.get("x-platform-user-id", "").strip()
    client_user_id = request.headers.get("x-client-user-id", "").strip()
    organization_id = request.headers.get("x-client-organization-id", "").strip()
    if not platform_user_id:
        return _error("Unauthorized", "Platform User ID header is required.", 401)
    if not client_user_id:
        return _error("Unauthorized", "Client User ID header is required.", 401)
    return Credentials(
        platform_user_id=platform_user_id,
        client_user_id=client_user_id,
        client_organization_id=organization_id or None,
    )


async def _json_object(request: Request) -> dict[str, Any] | JSONResponse:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error(
            "Bad Request", "Request body must be valid JSON.", 400,
            hint="Send a JSON object with Content-Type: application/json.",
        )
    if not isinstance(body, dict):
        return _error("Bad Request", "Request body must be a JSON object.", 400)
    return body


def _definition(services: AppServices, webhook_id: str) -> WebhookDefinition | JSONResponse:
    try:
        return services.definitions.get(webhook_id)
    except DefinitionNotFoundError:
        return _error("Not Found", "Webhook definition not found.", 404)


def create_webhook_router() -> APIRouter:
    """Create the authenticated webhook API router."""
    router = APIRouter(prefix="/api/v1/webhooks")

    @router.post("")
    async def create_webhook(request: Request) -> JSONResponse:
        creds = _credentials(request)
        if isinstance(creds, JSONResponse):
            return creds
        body = await _json_object(request)
        if isinstance(body, JSONResponse):
            return body

        try:
            data = CreateWebhookRequest.model_validate(body).to_input()
        except ValidationError as exc:
            return _error("Bad Request", format_validation_error(exc), 400)

        services = _services(request)
        definition = services.definitions.create(
            data, creds.client_user_id, creds.client_organization_id,
        )
        logger.info(
            "Created webhook %s for %s/%s",
            definition.id, definition.provider_id, definition.subscribed_event_id,
        )
        if services.audit_logger:
            services.audit_logger.log(AuditEvent(
                event_type=AuditEventType.DEFINITION_CREATED,
                user_id=creds.client_user_id,
                webhook_id=definition.id,
                action="create_webhook",
                result="success",
                risk_level=RiskLevel.LOW,
                details={
                    "provider_id": definition.provider_id,
                    "subscribed_event_id": definition.subscribed_event_id,
                },
            ))
        return _ok(definition.model_dump(mode="json"), status_code=201)

    @router.get("")
    async def list_webhooks(request: Request) -> JSONResponse:
        creds = _credentials(request)
        if isinstance(creds, JSONResponse):
            return creds
        definitions = _services(request).definitions.list_created_by(
            creds.client_user_id, creds.client_organization_id,
        )
        return _ok([d.model_dump(mode="json") for d in definitions])

    @router.post("/resolve")
    async def resolve_webhook(request: Request) -> JSONResponse:
        body = await _json_object(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            req = ResolveRequest.model_validate(body)
        except ValidationError as exc:
            return _error("Bad Request", format_validation_error(exc), 400)

        services = _services(request)
        try:
            identity = services.resolver.resolve(
                req.provider_id, req.subscribed_event_id, req.payload,
            )
        except WebhookIdentityError as exc:
            _log_resolution_failure(services, req.provider_id, req.subscribed_event_id, exc)
            return _identity_error(exc)

        _log_resolution(services, identity)
        return _ok(identity.model_dump(mode="json"))

    @router.post("/{webhook_id}/link-user")
    async def link_user(webhook_id: str, request: Request) -> JSONResponse:
        creds = _credentials(request)
        if isinstance(creds, JSONResponse):
            return creds
        services = _services(request)
        definition = _definition(services, webhook_id)
        if isinstance(definition, JSONResponse):
            return definition

        try:
            outcome = await services.activator.evaluate(
                definition,
                creds.client_user_id,
                creds.platform_user_id,
                creds.client_organization_id,
            )
        except WebhookIdentityError as exc:
            logger.error("Link evaluation for webhook %s failed: %s", webhook_id, exc.error)
            return _identity_error(exc)

        if outcome.setup_needed is not None:
            return _ok(outcome.setup_needed.model_dump(mode="json"))
        status_code = 201 if outcome.newly_activated else 200
        return _ok(_public_link(outcome.link.model_dump(mode="json")), status_code=status_code)

    @router.post("/{webhook_id}/link-agent")
    async def link_agent(webhook_id: str, request: Request) -> JSONResponse:
        creds = _credentials(request)
        if isinstance(creds, JSONResponse):
            return creds
        body = await _json_object(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            req = LinkAgentRequest.model_validate(body)
        except ValidationError as exc:
            return _error("Bad Request", format_validation_error(exc), 400)

        services = _services(request)
        definition = _definition(services, webhook_id)
        if isinstance(definition, JSONResponse):
            return definition

        link = services.links.get(
            definition.id, creds.client_user_id, creds.client_organization_id,
        )
        if link is None or link.status != WebhookStatus.ACTIVE:
            return _error(
                "Bad Request",
                "The user's webhook link is not active.",
                400,
                hint="Complete the webhook setup with link-user before linking an agent.",
            )

        agent_link, created = services.agent_links.link(
            definition.id,
            creds.client_user_id,
            creds.platform_user_id,
            req.agent_id,
            creds.client_organization_id,
        )
        if created and services.audit_logger:
            services.audit_logger.log(AuditEvent(
                event_type=AuditEventType.AGENT_LINKED,
                user_id=creds.client_user_id,
                webhook_id=definition.id,
                action="link_agent",
                result="success",
                risk_level=RiskLevel.LOW,
                details={"agent_id": req.agent_id},
            ))
        return _ok(agent_link.model_dump(mode="json"), status_code=201 if created else 200)

    @router.get("/{webhook_id}/events")
    async def list_events(webhook_id: str, request: Request) -> JSONResponse:
        creds = _credentials(request)
        if isinstance(creds, JSONResponse):
            return creds
        services = _services(request)
        definition = _definition(services, webhook_id)
        if isinstance(definition, JSONResponse):
            return definition

        limit_param = request.query_params.get("limit")
        limit: int | None = None
        if limit_param is not None:
            try:
                limit = int(limit_param)
            except ValueError:
                limit = 0
            if limit < 1:
                return _error("Bad Request", "limit must be a positive integer.", 400)

        events = services.events.list_for_user(
            definition.id, creds.client_user_id, creds.client_organization_id, limit,
        )
        return _ok([e.model_dump(mode="json") for e in events])

    return router


def create_incoming_router() -> APIRouter:
    """Create the public router for provider callbacks."""
    router = APIRouter(prefix="/incoming")

    @router.post("/{provider_id}/{event_id}")
    async def incoming(
        provider_id: str, event_id: str, request: Request, background_tasks: BackgroundTasks,
    ) -> JSONResponse:
        payload = await _json_object(request)
        if isinstance(payload, JSONResponse):
            return payload
        if not payload:
            return _error(
                "Bad Request", "Request body is empty. A JSON payload is expected.", 400,
                hint="Ensure the webhook event sends a valid JSON payload in the request body.",
            )

        services = _services(request)
        try:
            identity = services.resolver.resolve(provider_id, event_id, payload)
        except WebhookIdentityError as exc:
            _log_resolution_failure(services, provider_id, event_id, exc)
            return _identity_error(exc)

        _log_resolution(services, identity)
        definition = services.definitions.get(identity.webhook_id)
        background_tasks.add_task(services.dispatcher.dispatch, identity, definition, payload)
        return _ok("Webhook resolved successfully")

    return router


def _public_link(data: dict[str, Any]) -> dict[str, Any]:
    # The identifier hash never leaves the service.
    data.pop("identifier_hash", None)
    return data


def _log_resolution(services: AppServices, identity: ResolvedIdentity) -> None:
    logger.info(
        "Resolved webhook %s to agent %s", identity.webhook_id, identity.agent_id,
    )
    if services.audit_logger:
        services.audit_logger.log(AuditEvent(
            event_type=AuditEventType.WEBHOOK_RESOLVED,
            user_id=identity.client_user_id,
            webhook_id=identity.webhook_id,
            action="resolve",
            result="success",
            risk_level=RiskLevel.INFO,
            details={"agent_id": identity.agent_id},
        ))


def _log_resolution_failure(
    services: AppServices, provider_id: str, event_id: str, exc: WebhookIdentityError,
) -> None:
    log = logger.error if exc.status_code >= 500 else logger.info
    log("Resolution for %s/%s failed: %s (%s)", provider_id, event_id, exc.error, exc.details)
    if services.audit_logger:
        services.audit_logger.log(AuditEvent(
            event_type=AuditEventType.RESOLUTION_FAILED,
            action="resolve",
            result="failure",
            risk_level=RiskLevel.HIGH if exc.status_code >= 500 else RiskLevel.LOW,
            details={
                "provider_id": provider_id,
                "subscribed_event_id": event_id,
                "error": exc.error,
                "status_code": exc.status_code,
            },
        ))
