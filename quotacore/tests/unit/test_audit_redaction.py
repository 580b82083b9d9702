from __future__ import annotations

from datetime import timedelta

from quotacore.domain.models import AuditEvent
from quotacore.services.audit import list_events, record_event, sanitize_payload
from quotacore.tests.utils.builders import T0


def test_audit_redacts_tokens_and_secrets() -> None:
    # Redact token and secret fields in audit payloads.
    payload = {
        "api_key": "qc_live_123",
        "access_token": "secret-access",
        "client_secret": "super-secret",
        "nested": {"Authorization": "Bearer abc"},
        "items": [{"password": "hunter2", "ok": 1}],
        "safe": "value",
    }
    sanitized = sanitize_payload(payload)
    assert sanitized["api_key"] == "[REDACTED]"
    assert sanitized["access_token"] == "[REDACTED]"
    assert sanitized["client_secret"] == "[REDACTED]"
    assert sanitized["nested"]["Authorization"] == "[REDACTED]"
    assert sanitized["items"] == [{"password": "[REDACTED]", "ok": 1}]
    assert sanitized["safe"] == "value"


def test_record_event_sanitizes_before_storing() -> None:
    events: list[AuditEvent] = []
    record_event(
        events,
        event_type="REQUEST_DENIED",
        tenant_id="T1",
        occurred_at=T0,
        payload={"subject": {"id": "u1", "attributes": {"token": "t"}}},
    )
    assert events[0].payload["subject"]["attributes"]["token"] == "[REDACTED]"


def _seed(events: list[AuditEvent]) -> None:
    for index, tenant in enumerate(["T1", "T2", "T1", "T1"]):
        record_event(
            events,
            event_type="POLICY_UPSERT",
            tenant_id=tenant,
            occurred_at=T0 + timedelta(seconds=index),
            payload={"seq": index},
        )


def test_list_events_newest_first_with_tenant_filter_and_limit() -> None:
    events: list[AuditEvent] = []
    _seed(events)

    assert [event.payload["seq"] for event in list_events(events)] == [3, 2, 1, 0]
    assert [event.payload["seq"] for event in list_events(events, tenant_id="T1")] == [3, 2, 0]
    assert [event.payload["seq"] for event in list_events(events, tenant_id="T1", limit=2)] == [3, 2]
    assert list_events(events, limit=0) == []
    assert list_events(events, limit=-3) == []


def test_list_events_returns_copies() -> None:
    events: list[AuditEvent] = []
    _seed(events)

    listed = list_events(events, limit=1)
    listed[0].payload["seq"] = 99

    assert events[-1].payload["seq"] == 3
