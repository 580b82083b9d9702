from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json
from typing import Literal

from pydantic import BaseModel, Field

from quotacore.domain.models import AuditEvent, ConsumeRequest, Decision, Policy


SNAPSHOT_SCHEMA_VERSION = "v1"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


class BucketState(BaseModel):
    # Tokens stay within [0, capacity]; last_refill_at_ms never moves backwards.
    tokens: float
    last_refill_at_ms: int
    updated_at_ms: int


class WindowCounterState(BaseModel):
    window_start_ms: int
    used: float
    updated_at_ms: int


class IdempotencyEntry(BaseModel):
    # The payload hash is fixed at creation; conflicting reuse never overwrites it.
    payload_hash: str
    decision: Decision
    expires_at_ms: int


class StateSnapshot(BaseModel):
    # Versioned document written by durable providers; a version mismatch fails validation.
    schema_version: Literal["v1"]
    policies: list[tuple[str, Policy]] = Field(default_factory=list)
    bucket_states: list[tuple[str, BucketState]] = Field(default_factory=list)
    window_states: list[tuple[str, WindowCounterState]] = Field(default_factory=list)
    idempotency_entries: list[tuple[str, IdempotencyEntry]] = Field(default_factory=list)
    audit_events: list[AuditEvent] = Field(default_factory=list)


def to_epoch_ms(value: datetime) -> int:
    # Integer arithmetic keeps window alignment exact.
    return (value - _EPOCH) // _ONE_MS


def from_epoch_ms(value: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=value)


def _composite_key(parts: list[str | int]) -> str:
    # JSON array encoding keeps separators inside ids from merging two keys into one.
    return json.dumps(parts, ensure_ascii=False, separators=(",", ":"))


def state_key(policy: Policy, request: ConsumeRequest, kind: str, index: int) -> str:
    # One counter per (tenant, policy, subject, resource, limit slot).
    return _composite_key(
        [
            policy.tenant_id,
            policy.policy_id,
            request.subject.type,
            request.subject.id,
            request.resource.type,
            request.resource.name,
            kind,
            index,
        ]
    )


def idempotency_key(tenant_id: str, request_id: str) -> str:
    return _composite_key([tenant_id, request_id])
