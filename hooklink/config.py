"""Environment-driven service configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass

from hooklink.identity.hashing import DEFAULT_HASH_KEY_SECRET_ID


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


def _require(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise ConfigError(f"{name} environment variable is required")
    return value


def _optional(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


def _int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    service_api_key: str
    webhook_url: str
    database_path: str = "data/hooklink.db"
    secrets_db_path: str = "data/secrets.db"
    secret_store_url: str | None = None
    secret_store_token: str | None = None
    hash_key_secret_id: str = DEFAULT_HASH_KEY_SECRET_ID
    agent_service_url: str | None = None
    agent_service_api_key: str | None = None
    audit_log_path: str | None = None
    audit_log_max_bytes: int = 10_485_760
    audit_log_backup_count: int = 5

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from environment variables.

        Raises:
            ConfigError: If SERVICE_API_KEY or WEBHOOK_URL is unset, or a
                numeric variable does not parse.
        """
        return cls(
            service_api_key=_require("SERVICE_API_KEY"),
            webhook_url=_require("WEBHOOK_URL"),
            database_path=os.environ.get("DATABASE_PATH", "data/hooklink.db"),
            secrets_db_path=os.environ.get("SECRETS_DB_PATH", "data/secrets.db"),
            secret_store_url=_optional("SECRET_STORE_URL"),
            secret_store_token=_optional("SECRET_STORE_TOKEN"),
            hash_key_secret_id=os.environ.get("HASH_KEY_SECRET_ID", DEFAULT_HASH_KEY_SECRET_ID),
            agent_service_url=_optional("AGENT_SERVICE_URL"),
            agent_service_api_key=_optional("AGENT_SERVICE_API_KEY"),
            audit_log_path=_optional("AUDIT_LOG_PATH"),
            audit_log_max_bytes=_int("AUDIT_LOG_MAX_BYTES", 10_485_760),
            audit_log_backup_count=_int("AUDIT_LOG_BACKUP_COUNT", 5),
        )
