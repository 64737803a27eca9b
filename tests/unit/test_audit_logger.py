"""Tests for the audit logger."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

from hooklink.audit.logger import AuditLogger, validate_audit_chain
from hooklink.models import AuditEvent, AuditEventType, RiskLevel
from tests.conftest import make_audit_event


def _lines(path: Path) -> list[str]:
    return path.read_text().strip().split("\n")


def test_log_appends_json_line(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    logger.log(make_audit_event(event_type=AuditEventType.WEBHOOK_RESOLVED, webhook_id="wh-1"))

    lines = _lines(log_file)
    assert len(lines) == 1
    parsed = json.loads(lines[0])
    assert parsed["event_type"] == "webhook_resolved"
    assert parsed["webhook_id"] == "wh-1"
    assert "T" in parsed["timestamp"]


def test_unset_fields_are_omitted(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(make_audit_event())
    parsed = json.loads(_lines(log_file)[0])
    assert "source_ip" not in parsed
    assert "details" not in parsed


def test_log_creates_parent_directory(tmp_path: Path) -> None:
    log_file = tmp_path / "subdir" / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(make_audit_event())
    assert log_file.exists()


# --- Hash chain ---


def test_first_entry_has_null_prev_hash(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(make_audit_event())
    assert json.loads(_lines(log_file)[0])["prev_hash"] is None


def test_entries_chain_to_previous_line(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    logger.log(make_audit_event(action="first"))
    logger.log(make_audit_event(action="second"))

    lines = _lines(log_file)
    expected = hashlib.sha256(lines[0].encode()).hexdigest()
    assert json.loads(lines[1])["prev_hash"] == expected


def test_chain_continues_across_logger_instances(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(make_audit_event(action="first"))
    AuditLogger(log_path=str(log_file)).log(make_audit_event(action="second"))

    result = validate_audit_chain(log_file)
    assert result.valid
    assert result.entries == 2


def test_validate_detects_tampering(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    for i in range(5):
        logger.log(make_audit_event(action=f"event-{i}"))

    lines = _lines(log_file)
    lines[2] = lines[2].replace("event-2", "TAMPERED")
    log_file.write_text("\n".join(lines) + "\n")

    result = validate_audit_chain(log_file)
    assert not result.valid
    assert result.broken_at_line == 4


def test_validate_rejects_malformed_line(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    log_file.write_text("not json\n")
    result = validate_audit_chain(log_file)
    assert not result.valid
    assert result.broken_at_line == 1


def test_validate_missing_file_is_valid(tmp_path: Path) -> None:
    assert validate_audit_chain(tmp_path / "absent.jsonl").valid


# --- Rotation ---


def test_rotation_starts_new_chain(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=200, backup_count=3)
    for i in range(10):
        logger.log(make_audit_event(action=f"event-{i}"))

    assert (tmp_path / "audit.jsonl.1").exists()
    assert json.loads(_lines(log_file)[0])["prev_hash"] is None
    assert validate_audit_chain(log_file).valid
    assert validate_audit_chain(tmp_path / "audit.jsonl.1").valid


def test_rotation_drops_oldest_backup(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=50, backup_count=2)
    for i in range(20):
        logger.log(make_audit_event(action=f"event-{i}"))
    assert (tmp_path / "audit.jsonl.2").exists()
    assert not (tmp_path / "audit.jsonl.3").exists()


# --- Reading ---


def test_read_events_filters(tmp_path: Path) -> None:
    logger = AuditLogger(log_path=str(tmp_path / "audit.jsonl"))
    logger.log(make_audit_event(event_type=AuditEventType.WEBHOOK_RESOLVED, webhook_id="wh-1"))
    logger.log(make_audit_event(event_type=AuditEventType.WEBHOOK_RESOLVED, webhook_id="wh-2"))
    logger.log(
        AuditEvent(
            event_type=AuditEventType.AUTH_FAILURE,
            action="authenticate",
            result="failure",
            risk_level=RiskLevel.HIGH,
        )
    )

    assert len(list(logger.read_events())) == 3
    assert [e["webhook_id"] for e in logger.read_events(webhook_id="wh-2")] == ["wh-2"]
    failures = list(logger.read_events(event_type=AuditEventType.AUTH_FAILURE))
    assert len(failures) == 1
    assert failures[0]["risk_level"] == "high"
