from __future__ import annotations

from datetime import datetime
from typing import Any

from quotacore.domain.models import AuditEvent


AUDIT_POLICY_UPSERT = "POLICY_UPSERT"
AUDIT_POLICY_PATCH = "POLICY_PATCH"
AUDIT_REQUEST_DENIED = "REQUEST_DENIED"
AUDIT_IDEMPOTENCY_CONFLICT = "IDEMPOTENCY_CONFLICT"

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_payload(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_payload(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_payload(item) for item in value]
    return value


def record_event(
    events: list[AuditEvent],
    *,
    event_type: str,
    tenant_id: str,
    occurred_at: datetime,
    payload: dict[str, Any] | None = None,
) -> AuditEvent:
    # Append-only; callers persist after recording.
    event = AuditEvent(
        type=event_type,
        tenant_id=tenant_id,
        timestamp=occurred_at,
        payload=sanitize_payload(payload or {}),
    )
    events.append(event)
    return event


def list_events(
    events: list[AuditEvent],
    *,
    tenant_id: str | None = None,
    limit: int | None = None,
) -> list[AuditEvent]:
    # Newest first, returned as copies so callers cannot rewrite history.
    selected = [event for event in reversed(events) if not tenant_id or event.tenant_id == tenant_id]
    if limit is not None:
        selected = selected[: max(limit, 0)]
    return [event.model_copy(deep=True) for event in selected]
