from __future__ import annotations

from quotacore.domain.models import ConsumeRequest, Decision
from quotacore.domain.state import IdempotencyEntry
from quotacore.services.idempotency import (
    compute_request_hash,
    expire_entries,
    fingerprint_request,
    lookup_entry,
    remember_decision,
)
from quotacore.tests.utils.builders import consume_payload


def _allowed() -> Decision:
    return Decision(allowed=True, policy_id="P1", results=[], retry_after_ms=None, remaining=9, reset_at=None)


def test_request_hash_ignores_key_order() -> None:
    assert compute_request_hash({"a": 1, "b": {"c": 2, "d": 3}}) == compute_request_hash(
        {"b": {"d": 3, "c": 2}, "a": 1}
    )
    assert compute_request_hash({"a": 1}) != compute_request_hash({"a": 2})


def test_fingerprint_covers_logical_payload_only() -> None:
    base = ConsumeRequest.model_validate(consume_payload(request_id="r1"))
    other_id = ConsumeRequest.model_validate(consume_payload(request_id="r2", now=None))
    other_cost = ConsumeRequest.model_validate(consume_payload(request_id="r1", cost=2))
    dry_run = ConsumeRequest.model_validate(consume_payload(request_id="r1", dry_run=True))

    assert fingerprint_request(base) == fingerprint_request(other_id)
    assert fingerprint_request(base) != fingerprint_request(other_cost)
    assert fingerprint_request(base) != fingerprint_request(dry_run)


def test_expire_entries_drops_entries_at_their_deadline() -> None:
    entries = {
        "T1:old": IdempotencyEntry(payload_hash="h", decision=_allowed(), expires_at_ms=1_000),
        "T1:new": IdempotencyEntry(payload_hash="h", decision=_allowed(), expires_at_ms=1_001),
    }

    removed = expire_entries(entries, 1_000)

    assert removed == 1
    assert list(entries) == ["T1:new"]


def test_lookup_skips_expired_entries() -> None:
    entries = {"T1:r1": IdempotencyEntry(payload_hash="h", decision=_allowed(), expires_at_ms=500)}
    assert lookup_entry(entries, "T1:r1", 499) is not None
    assert lookup_entry(entries, "T1:r1", 500) is None
    assert lookup_entry(entries, "T1:missing", 0) is None


def test_remember_decision_stores_a_copy_with_ttl() -> None:
    entries: dict[str, IdempotencyEntry] = {}
    decision = _allowed()

    entry = remember_decision(entries, "T1:r1", payload_hash="h", decision=decision, now_ms=1_000, ttl_ms=600_000)
    decision.remaining = 0

    assert entries["T1:r1"] is entry
    assert entry.expires_at_ms == 601_000
    assert entry.decision.remaining == 9
