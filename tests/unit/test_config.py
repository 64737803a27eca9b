"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from hooklink.api.app import build_audit_logger
from hooklink.config import ConfigError, Settings
from hooklink.identity.hashing import DEFAULT_HASH_KEY_SECRET_ID

_VARS = (
    "SERVICE_API_KEY", "WEBHOOK_URL", "DATABASE_PATH", "SECRETS_DB_PATH",
    "SECRET_STORE_URL", "SECRET_STORE_TOKEN", "HASH_KEY_SECRET_ID",
    "AGENT_SERVICE_URL", "AGENT_SERVICE_API_KEY", "AUDIT_LOG_PATH",
    "AUDIT_LOG_MAX_BYTES", "AUDIT_LOG_BACKUP_COUNT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SERVICE_API_KEY", "key")
    monkeypatch.setenv("WEBHOOK_URL", "https://hooks.example.com/incoming")

    settings = Settings.from_env()

    assert settings.service_api_key == "key"
    assert settings.database_path == "data/hooklink.db"
    assert settings.hash_key_secret_id == DEFAULT_HASH_KEY_SECRET_ID
    assert settings.secret_store_url is None
    assert settings.agent_service_url is None
    assert settings.audit_log_backup_count == 5


def test_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SERVICE_API_KEY", "key")
    monkeypatch.setenv("WEBHOOK_URL", "https://hooks.example.com/incoming")
    monkeypatch.setenv("SECRET_STORE_URL", "http://secrets:8200")
    monkeypatch.setenv("AGENT_SERVICE_URL", "http://agents:9000")
    monkeypatch.setenv("AUDIT_LOG_MAX_BYTES", "1024")

    settings = Settings.from_env()

    assert settings.secret_store_url == "http://secrets:8200"
    assert settings.agent_service_url == "http://agents:9000"
    assert settings.audit_log_max_bytes == 1024


@pytest.mark.parametrize("missing", ["SERVICE_API_KEY", "WEBHOOK_URL"])
def test_required_variables(monkeypatch: pytest.MonkeyPatch, missing: str) -> None:
    monkeypatch.setenv("SERVICE_API_KEY", "key")
    monkeypatch.setenv("WEBHOOK_URL", "https://hooks.example.com/incoming")
    monkeypatch.setenv(missing, "  ")

    with pytest.raises(ConfigError, match=missing):
        Settings.from_env()


def test_non_integer_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SERVICE_API_KEY", "key")
    monkeypatch.setenv("WEBHOOK_URL", "https://hooks.example.com/incoming")
    monkeypatch.setenv("AUDIT_LOG_BACKUP_COUNT", "many")

    with pytest.raises(ConfigError, match="AUDIT_LOG_BACKUP_COUNT"):
        Settings.from_env()


def test_audit_logger_built_from_settings(tmp_path: Path) -> None:
    settings = Settings(
        service_api_key="key",
        webhook_url="https://hooks.example.com/incoming",
        audit_log_path=str(tmp_path / "audit.jsonl"),
        audit_log_max_bytes=2048,
        audit_log_backup_count=9,
    )

    audit_logger = build_audit_logger(settings)

    assert audit_logger is not None
    assert audit_logger._max_bytes == 2048
    assert audit_logger._backup_count == 9


def test_no_audit_logger_without_path() -> None:
    settings = Settings(service_api_key="key", webhook_url="https://hooks.example.com/incoming")
    assert build_audit_logger(settings) is None
