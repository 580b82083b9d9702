from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import ValidationError

from quotacore.domain.state import SNAPSHOT_SCHEMA_VERSION, StateSnapshot
from quotacore.providers.storage.memory import InMemoryStorage


logger = logging.getLogger(__name__)


def load_snapshot(path: Path) -> StateSnapshot | None:
    # Treat a missing, unreadable, or mismatched snapshot as an empty start.
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("state_snapshot_unreadable path=%s", path, exc_info=exc)
        return None
    try:
        return StateSnapshot.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning(
            "state_snapshot_discarded path=%s errors=%d",
            path,
            exc.error_count(),
        )
        return None


class JsonFileStorage(InMemoryStorage):
    """Durable provider that rewrites one JSON snapshot of every store on persist()."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path).resolve()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        snapshot = load_snapshot(self.path)
        if snapshot is not None:
            self.policies = dict(snapshot.policies)
            self.bucket_states = dict(snapshot.bucket_states)
            self.window_states = dict(snapshot.window_states)
            self.idempotency_entries = dict(snapshot.idempotency_entries)
            self.audit_events = list(snapshot.audit_events)
            logger.info(
                "state_snapshot_loaded path=%s policies=%d audit_events=%d",
                self.path,
                len(self.policies),
                len(self.audit_events),
            )

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            schema_version=SNAPSHOT_SCHEMA_VERSION,
            policies=list(self.policies.items()),
            bucket_states=list(self.bucket_states.items()),
            window_states=list(self.window_states.items()),
            idempotency_entries=list(self.idempotency_entries.items()),
            audit_events=list(self.audit_events),
        )

    def persist(self) -> None:
        # Write beside the target and swap so readers never see a torn snapshot.
        payload = self.snapshot().model_dump_json(indent=2)
        staging = self.path.with_name(f"{self.path.name}.tmp")
        try:
            staging.write_text(payload, encoding="utf-8")
            os.replace(staging, self.path)
        except OSError:
            logger.exception("state_snapshot_write_failed path=%s", self.path)
            raise
        logger.debug("state_snapshot_written path=%s bytes=%d", self.path, len(payload))
