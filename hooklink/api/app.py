"""FastAPI application for the webhook identity service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI

from hooklink.api.auth_middleware import AuthMiddleware
from hooklink.api.routes import create_incoming_router, create_webhook_router
from hooklink.audit.logger import AuditLogger
from hooklink.config import Settings
from hooklink.dispatch.dispatcher import AgentDispatcher
from hooklink.identity.activation import LinkActivator
from hooklink.identity.db import IdentityDB
from hooklink.identity.definitions import DefinitionStore
from hooklink.identity.events import EventLog
from hooklink.identity.hashing import IdentifierHasher, load_or_create_hash_key
from hooklink.identity.links import AgentLinkStore, UserLinkStore
from hooklink.identity.matcher import DefinitionMatcher
from hooklink.identity.resolver import WebhookResolver
from hooklink.secrets.http import HttpSecretStore
from hooklink.secrets.store import SecretStore, SqliteSecretStore

logger = logging.getLogger(__name__)

Lifespan = Callable[[FastAPI], AbstractAsyncContextManager[None]]


@dataclass
class AppServices:
    """Components shared by the request handlers."""

    db: IdentityDB
    definitions: DefinitionStore
    links: UserLinkStore
    agent_links: AgentLinkStore
    events: EventLog
    activator: LinkActivator
    resolver: WebhookResolver
    dispatcher: AgentDispatcher
    audit_logger: AuditLogger | None = None

    def close(self) -> None:
        self.db.close()


def build_services(
    db: IdentityDB,
    secret_store: SecretStore,
    hasher: IdentifierHasher,
    webhook_url: str,
    agent_service_url: str | None = None,
    agent_service_api_key: str | None = None,
    audit_logger: AuditLogger | None = None,
) -> AppServices:
    """Wire stores, activator, resolver and dispatcher around one database."""
    definitions = DefinitionStore(db)
    links = UserLinkStore(db)
    agent_links = AgentLinkStore(db)
    events = EventLog(db)
    return AppServices(
        db=db,
        definitions=definitions,
        links=links,
        agent_links=agent_links,
        events=events,
        activator=LinkActivator(links, secret_store, hasher, webhook_url, audit_logger),
        resolver=WebhookResolver(DefinitionMatcher(definitions), links, agent_links, hasher),
        dispatcher=AgentDispatcher(
            events, agent_service_url, agent_service_api_key, audit_logger,
        ),
        audit_logger=audit_logger,
    )


def build_secret_store(settings: Settings) -> SecretStore:
    if settings.secret_store_url:
        return HttpSecretStore(settings.secret_store_url, settings.secret_store_token)
    return SqliteSecretStore(settings.secrets_db_path)


def build_audit_logger(settings: Settings) -> AuditLogger | None:
    if not settings.audit_log_path:
        return None
    return AuditLogger(
        settings.audit_log_path,
        max_bytes=settings.audit_log_max_bytes,
        backup_count=settings.audit_log_backup_count,
    )


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables.

    The hashing key is loaded from the secret store at startup; the app does
    not start without one.
    """
    settings = Settings.from_env()
    audit_logger = build_audit_logger(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        secret_store = build_secret_store(settings)
        key = await load_or_create_hash_key(secret_store, settings.hash_key_secret_id)
        services = build_services(
            IdentityDB(settings.database_path),
            secret_store,
            IdentifierHasher(key),
            settings.webhook_url,
            settings.agent_service_url,
            settings.agent_service_api_key,
            audit_logger,
        )
        app.state.services = services
        logger.info("hooklink started; database at %s", settings.database_path)
        try:
            yield
        finally:
            services.close()
            if isinstance(secret_store, SqliteSecretStore):
                secret_store.close()

    return create_app(settings.service_api_key, audit_logger=audit_logger, lifespan=lifespan)


def create_app(
    api_key: str,
    services: AppServices | None = None,
    audit_logger: AuditLogger | None = None,
    lifespan: Lifespan | None = None,
) -> FastAPI:
    """Create the FastAPI app with auth and the webhook routes.

    Either pass ``services`` directly or a ``lifespan`` that sets
    ``app.state.services`` on startup.
    """
    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    if services is not None:
        app.state.services = services

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(create_webhook_router())
    app.include_router(create_incoming_router())

    # Add auth middleware (wraps the entire app)
    app.add_middleware(AuthMiddleware, token=api_key, audit_logger=audit_logger)

    return app
