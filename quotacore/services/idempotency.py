from __future__ import annotations

import hashlib
import json
from typing import Any

from quotacore.domain.models import ConsumeRequest, Decision
from quotacore.domain.state import IdempotencyEntry


def compute_request_hash(payload: Any) -> str:
    # Hash payloads deterministically so key order never changes the fingerprint.
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def fingerprint_request(request: ConsumeRequest) -> str:
    # Logical payload only: request_id and now are not part of the fingerprint.
    return compute_request_hash(
        {
            "tenant_id": request.tenant_id,
            "subject": request.subject.model_dump(mode="json", exclude_none=True),
            "resource": request.resource.model_dump(mode="json"),
            "cost": request.cost,
            "dry_run": request.dry_run,
        }
    )


def expire_entries(entries: dict[str, IdempotencyEntry], now_ms: int) -> int:
    # Drop entries whose TTL has lapsed at now_ms; returns how many were removed.
    expired = [key for key, entry in entries.items() if entry.expires_at_ms <= now_ms]
    for key in expired:
        del entries[key]
    return len(expired)


def lookup_entry(entries: dict[str, IdempotencyEntry], key: str, now_ms: int) -> IdempotencyEntry | None:
    entry = entries.get(key)
    if entry is None or entry.expires_at_ms <= now_ms:
        return None
    return entry


def remember_decision(
    entries: dict[str, IdempotencyEntry],
    key: str,
    *,
    payload_hash: str,
    decision: Decision,
    now_ms: int,
    ttl_ms: int,
) -> IdempotencyEntry:
    entry = IdempotencyEntry(
        payload_hash=payload_hash,
        decision=decision.model_copy(deep=True),
        expires_at_ms=now_ms + ttl_ms,
    )
    entries[key] = entry
    return entry
