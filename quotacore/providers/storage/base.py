from __future__ import annotations

from typing import Protocol

from quotacore.domain.models import AuditEvent, Policy
from quotacore.domain.state import BucketState, IdempotencyEntry, WindowCounterState


class StorageProvider(Protocol):
    # The engine mutates these stores in place and calls persist() after each mutation.
    policies: dict[str, Policy]
    bucket_states: dict[str, BucketState]
    window_states: dict[str, WindowCounterState]
    idempotency_entries: dict[str, IdempotencyEntry]
    audit_events: list[AuditEvent]

    def persist(self) -> None:
        ...
