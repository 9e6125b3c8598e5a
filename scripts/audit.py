"""Audit trail for fixture provisioning events.

One JSON object per line. When FIXTURE_AUDIT_SIGNING_KEY is set every record
carries an HMAC-SHA256 ``signature`` over its canonical form.
"""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

AUDIT_LOG_DIR = Path(os.environ.get("FIXTURE_AUDIT_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "provisioning-events.jsonl"

EventType = Literal[
    "create", "update", "delete",
    "link", "unlink", "override_link",
    "profile_merge",
]

ResourceKind = Literal["realm", "client", "idp", "user", "profile", "link"]


def _get_signing_key() -> bytes:
    """Read on every call; an empty key means records stay unsigned."""
    return os.environ.get("FIXTURE_AUDIT_SIGNING_KEY", "").strip().encode("utf-8")


def _canonical(record: dict[str, Any]) -> bytes:
    return json.dumps(record, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _signature_for(record: dict[str, Any]) -> str:
    key = _get_signing_key()
    if not key:
        return ""
    return hmac.new(key, _canonical(record), hashlib.sha256).hexdigest()


def _build_record(
    event_type: str,
    kind: str,
    key: str,
    realm: str | None,
    outcome: str,
    details: dict[str, Any] | None,
) -> dict[str, Any]:
    record = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "kind": kind,
        "key": key,
        "realm": realm,
        "outcome": outcome,
        "details": details or {},
    }
    signature = _signature_for(record)
    if signature:
        record["signature"] = signature
    return record


def _append(record: dict[str, Any]) -> None:
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)
    line = json.dumps(record, ensure_ascii=False)
    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as handle:
        handle.write(line + "\n")
    AUDIT_LOG_FILE.chmod(0o600)


def log_event(
    event_type: EventType,
    kind: ResourceKind,
    key: str,
    *,
    realm: str | None = None,
    outcome: str = "ok",
    details: dict[str, Any] | None = None,
) -> None:
    """Append a provisioning event to the audit trail.

    Args:
        event_type: Operation performed (create, delete, link, ...)
        kind: Resource kind affected
        key: Resource key (realm name, clientId, alias, username)
        realm: Realm the resource lives in (None for realm events)
        outcome: created / already_exists / failed / ...
        details: Additional context; never put secrets here

    Raises:
        OSError: The log directory or file cannot be written
        TypeError: ``details`` is not JSON serialisable
    """
    _append(_build_record(event_type, kind, key, realm, outcome, details))


def safe_log_event(
    event_type: EventType,
    kind: ResourceKind,
    key: str,
    *,
    realm: str | None = None,
    outcome: str = "ok",
    details: dict[str, Any] | None = None,
) -> bool:
    """log_event that reports failure as a warning and a False return."""
    try:
        log_event(event_type, kind, key, realm=realm, outcome=outcome, details=details)
    except (OSError, TypeError, ValueError) as exc:
        logger.warning("[audit] Could not record %s of %s '%s': %s", event_type, kind, key, exc)
        return False
    return True


def verify_audit_log(path: Path | None = None) -> tuple[int, int]:
    """Count records whose signature matches the current signing key.

    Unsigned and unparseable lines count as invalid.

    Returns:
        (valid, invalid)
    """
    log_file = Path(path) if path else AUDIT_LOG_FILE
    if not log_file.exists():
        return 0, 0

    counts = [0, 0]
    for raw in log_file.read_text(encoding="utf-8").splitlines():
        if not raw.strip():
            continue
        try:
            record = json.loads(raw)
        except json.JSONDecodeError:
            counts[1] += 1
            continue
        claimed = record.pop("signature", "")
        expected = _signature_for(record)
        ok = bool(claimed and expected) and hmac.compare_digest(claimed, expected)
        counts[0 if ok else 1] += 1
    return counts[0], counts[1]


if __name__ == "__main__":
    import sys
    valid, invalid = verify_audit_log()
    print(f"Audit log: {valid} valid, {invalid} invalid")
    sys.exit(0 if invalid == 0 else 1)
