from __future__ import annotations

from quotacore.domain.models import AuditEvent, Policy
from quotacore.domain.state import BucketState, IdempotencyEntry, WindowCounterState


class InMemoryStorage:
    def __init__(self) -> None:
        self.policies: dict[str, Policy] = {}
        self.bucket_states: dict[str, BucketState] = {}
        self.window_states: dict[str, WindowCounterState] = {}
        self.idempotency_entries: dict[str, IdempotencyEntry] = {}
        self.audit_events: list[AuditEvent] = []

    def persist(self) -> None:
        # Volatile backend: nothing survives a restart.
        return None
