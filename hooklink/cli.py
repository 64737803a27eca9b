"""Click CLI for operating the webhook identity service locally."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import IO

import click
from pydantic import ValidationError

from hooklink.api.app import AppServices, build_services
from hooklink.api.schemas import format_validation_error
from hooklink.audit.logger import AuditLogger, validate_audit_chain
from hooklink.identity.db import IdentityDB
from hooklink.identity.definitions import DefinitionNotFoundError
from hooklink.identity.errors import WebhookIdentityError
from hooklink.identity.hashing import (
    DEFAULT_HASH_KEY_SECRET_ID,
    IdentifierHasher,
    load_or_create_hash_key,
)
from hooklink.identity.models import (
    ActionConfirmation,
    SecretKind,
    UserType,
    WebhookDefinitionInput,
    WebhookStatus,
)
from hooklink.models import AuditEvent, AuditEventType, RiskLevel
from hooklink.secrets.store import SecretRef, SqliteSecretStore

_SECRET_KINDS = [kind.value for kind in SecretKind]


@click.group()
@click.option("--db", default="data/hooklink.db", envvar="DATABASE_PATH", help="Identity database path.")
@click.option("--secrets-db", default="data/secrets.db", envvar="SECRETS_DB_PATH", help="Local secret store path.")
@click.option("--audit-log", default=None, envvar="AUDIT_LOG_PATH", help="Audit log file path.")
@click.option(
    "--webhook-url",
    default="http://localhost:8000/incoming",
    envvar="WEBHOOK_URL",
    help="Base of the URL providers post events to.",
)
@click.option(
    "--hash-key-id",
    default=DEFAULT_HASH_KEY_SECRET_ID,
    envvar="HASH_KEY_SECRET_ID",
    help="Secret id of the identifier hashing key.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    db: str,
    secrets_db: str,
    audit_log: str | None,
    webhook_url: str,
    hash_key_id: str,
) -> None:
    """hooklink webhook identity CLI."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db
    secret_store = SqliteSecretStore(secrets_db)
    ctx.call_on_close(secret_store.close)
    ctx.obj["secret_store"] = secret_store
    ctx.obj["audit_logger"] = AuditLogger(audit_log) if audit_log else None
    ctx.obj["webhook_url"] = webhook_url
    ctx.obj["hash_key_id"] = hash_key_id


def _services(ctx: click.Context) -> AppServices:
    if "services" not in ctx.obj:
        store: SqliteSecretStore = ctx.obj["secret_store"]
        key = asyncio.run(load_or_create_hash_key(store, ctx.obj["hash_key_id"]))
        db = IdentityDB(ctx.obj["db_path"])
        ctx.find_root().call_on_close(db.close)
        ctx.obj["services"] = build_services(
            db,
            store,
            IdentifierHasher(key),
            ctx.obj["webhook_url"],
            audit_logger=ctx.obj["audit_logger"],
        )
    return ctx.obj["services"]


def _echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2))


def _fail(exc: WebhookIdentityError) -> click.ClickException:
    message = f"{exc.error}: {exc.details}"
    if exc.hint:
        message = f"{message} ({exc.hint})"
    return click.ClickException(message)


@cli.command("init-key")
@click.pass_context
def init_key(ctx: click.Context) -> None:
    """Generate the identifier hashing key if it does not exist yet."""
    store: SqliteSecretStore = ctx.obj["secret_store"]
    secret_id: str = ctx.obj["hash_key_id"]
    if asyncio.run(store.contains(secret_id)):
        click.echo(f"Hashing key already present: {secret_id}")
        return
    asyncio.run(load_or_create_hash_key(store, secret_id))
    click.echo(f"Hashing key created: {secret_id}")


@cli.group("definitions")
def definitions_group() -> None:
    """Manage webhook definitions."""


def _parse_identifiers(values: tuple[str, ...]) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for item in values:
        kind, sep, path = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected KIND=PATH, got {item!r}", param_hint="--identifier")
        mapping[kind.strip()] = path.strip()
    return mapping


@definitions_group.command("create")
@click.option("--name", required=True)
@click.option("--description", required=True)
@click.option("--provider", required=True, help="Webhook provider id, e.g. github.")
@click.option("--event", required=True, help="Subscribed event id, e.g. push.")
@click.option(
    "--required-secret", "required_secrets", multiple=True,
    type=click.Choice(_SECRET_KINDS), help="Secret the user must store (repeatable).",
)
@click.option(
    "--identifier", "identifiers", multiple=True, required=True,
    help="Identifier mapping as KIND=PAYLOAD.PATH (repeatable).",
)
@click.option("--conversation-path", required=True, help="Payload path of the conversation id.")
@click.option("--user", "client_user_id", required=True, help="Creating client user id.")
@click.option("--org", "organization_id", default=None, help="Creating organization id.")
@click.pass_context
def definitions_create(
    ctx: click.Context,
    name: str,
    description: str,
    provider: str,
    event: str,
    required_secrets: tuple[str, ...],
    identifiers: tuple[str, ...],
    conversation_path: str,
    client_user_id: str,
    organization_id: str | None,
) -> None:
    """Create a webhook definition."""
    try:
        data = WebhookDefinitionInput.model_validate({
            "name": name,
            "description": description,
            "provider_id": provider,
            "subscribed_event_id": event,
            "required_secrets": list(required_secrets),
            "identifier_mapping": _parse_identifiers(identifiers),
            "conversation_mapping": conversation_path,
        })
    except ValidationError as exc:
        raise click.ClickException(format_validation_error(exc)) from exc

    definition = _services(ctx).definitions.create(data, client_user_id, organization_id)
    _echo_json(definition.model_dump(mode="json"))


@definitions_group.command("list")
@click.option("--user", "client_user_id", required=True)
@click.option("--org", "organization_id", default=None)
@click.pass_context
def definitions_list(ctx: click.Context, client_user_id: str, organization_id: str | None) -> None:
    """List definitions created by a client user."""
    definitions = _services(ctx).definitions.list_created_by(client_user_id, organization_id)
    _echo_json([
        {
            "id": d.id,
            "name": d.name,
            "provider_id": d.provider_id,
            "subscribed_event_id": d.subscribed_event_id,
            "created_at": d.created_at,
        }
        for d in definitions
    ])


@cli.group("secrets")
def secrets_group() -> None:
    """Store per-user secrets in the local secret store."""


@secrets_group.command("set")
@click.argument("kind", type=click.Choice(_SECRET_KINDS))
@click.argument("value")
@click.option("--user", "client_user_id", required=True)
@click.option("--provider", required=True)
@click.option("--event", required=True)
@click.pass_context
def secrets_set(
    ctx: click.Context, kind: str, value: str, client_user_id: str, provider: str, event: str,
) -> None:
    """Store a secret for a user, provider and event."""
    store: SqliteSecretStore = ctx.obj["secret_store"]
    ref = SecretRef(UserType.CLIENT, client_user_id, provider, event, kind)
    asyncio.run(store.set(ref, value))
    click.echo(f"Stored {kind} as {ref.secret_id}")


@secrets_group.command("confirm-url")
@click.option("--user", "client_user_id", required=True)
@click.option("--provider", required=True)
@click.option("--event", required=True)
@click.pass_context
def secrets_confirm_url(ctx: click.Context, client_user_id: str, provider: str, event: str) -> None:
    """Record that the user entered the webhook URL at the provider."""
    store: SqliteSecretStore = ctx.obj["secret_store"]
    confirmation = ActionConfirmation.WEBHOOK_URL_INPUTED
    ref = SecretRef(UserType.CLIENT, client_user_id, provider, event, confirmation.value)
    asyncio.run(store.set(ref, "true"))
    click.echo(f"Confirmed {confirmation.value} for {provider}/{event}")


@cli.command("link-user")
@click.argument("webhook_id")
@click.option("--user", "client_user_id", required=True)
@click.option("--platform-user", "platform_user_id", required=True)
@click.option("--org", "organization_id", default=None)
@click.pass_context
def link_user(
    ctx: click.Context,
    webhook_id: str,
    client_user_id: str,
    platform_user_id: str,
    organization_id: str | None,
) -> None:
    """Evaluate a user's link to a webhook, activating it when setup is complete."""
    services = _services(ctx)
    try:
        definition = services.definitions.get(webhook_id)
    except DefinitionNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc

    try:
        outcome = asyncio.run(services.activator.evaluate(
            definition, client_user_id, platform_user_id, organization_id,
        ))
    except WebhookIdentityError as exc:
        raise _fail(exc) from exc

    if outcome.setup_needed is not None:
        _echo_json(outcome.setup_needed.model_dump(mode="json"))
        click.echo("Setup needed", err=True)
        return
    click.echo(f"Link {outcome.link.status.value} for webhook {webhook_id}")


@cli.command("link-agent")
@click.argument("webhook_id")
@click.argument("agent_id")
@click.option("--user", "client_user_id", required=True)
@click.option("--platform-user", "platform_user_id", required=True)
@click.option("--org", "organization_id", default=None)
@click.pass_context
def link_agent(
    ctx: click.Context,
    webhook_id: str,
    agent_id: str,
    client_user_id: str,
    platform_user_id: str,
    organization_id: str | None,
) -> None:
    """Link an agent to a user's active webhook link."""
    services = _services(ctx)
    link = services.links.get(webhook_id, client_user_id, organization_id)
    if link is None or link.status != WebhookStatus.ACTIVE:
        raise click.ClickException("The user's webhook link is not active; run link-user first.")

    _, created = services.agent_links.link(
        webhook_id, client_user_id, platform_user_id, agent_id, organization_id,
    )
    if created and services.audit_logger:
        services.audit_logger.log(AuditEvent(
            event_type=AuditEventType.AGENT_LINKED,
            user_id=client_user_id,
            webhook_id=webhook_id,
            action="link_agent",
            result="success",
            risk_level=RiskLevel.LOW,
            details={"agent_id": agent_id},
        ))
    click.echo(f"Agent {agent_id} {'linked' if created else 'already linked'}")


@cli.command()
@click.argument("provider")
@click.argument("event")
@click.argument("payload_file", type=click.File("r"))
@click.pass_context
def resolve(ctx: click.Context, provider: str, event: str, payload_file: IO[str]) -> None:
    """Resolve a JSON payload (file or '-' for stdin) to its user and agent."""
    try:
        payload = json.load(payload_file)
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"Payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise click.ClickException("Payload must be a JSON object.")

    try:
        identity = _services(ctx).resolver.resolve(provider, event, payload)
    except WebhookIdentityError as exc:
        raise _fail(exc) from exc
    _echo_json(identity.model_dump(mode="json"))


@cli.group("audit")
def audit_group() -> None:
    """Inspect the audit log."""


@audit_group.command("verify")
@click.pass_context
def audit_verify(ctx: click.Context) -> None:
    """Validate the hash chain of the audit log."""
    audit_logger: AuditLogger | None = ctx.obj["audit_logger"]
    if audit_logger is None:
        raise click.ClickException("--audit-log is required")
    result = validate_audit_chain(Path(audit_logger.log_path))
    if not result.valid:
        raise click.ClickException(f"Audit chain broken at line {result.broken_at_line}")
    click.echo(f"Audit chain valid ({result.entries} entries)")
