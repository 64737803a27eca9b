"""Shared Pydantic data models for hooklink."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

# --- Enums ---


class AuditEventType(str, Enum):
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    DEFINITION_CREATED = "definition_created"
    LINK_ACTIVATED = "link_activated"
    LINK_DEMOTED = "link_demoted"
    SETUP_NEEDED = "setup_needed"
    AGENT_LINKED = "agent_linked"
    WEBHOOK_RESOLVED = "webhook_resolved"
    RESOLUTION_FAILED = "resolution_failed"
    DISPATCH_FAILED = "dispatch_failed"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    user_id: str | None = None
    webhook_id: str | None = None
    action: str
    result: str  # "success" | "failure" | "blocked" | "pending"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
