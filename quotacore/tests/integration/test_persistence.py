from __future__ import annotations

from pathlib import Path

import pytest

from quotacore.core.errors import IdempotencyConflictError
from quotacore.providers.storage.json_file import JsonFileStorage
from quotacore.services.rate_limiter import RateLimiterEngine
from quotacore.tests.utils.builders import MutableClock, consume_payload, policy_payload, token_bucket


def _restart(path: Path, clock: MutableClock) -> RateLimiterEngine:
    # A fresh engine over the same snapshot file stands in for a process restart.
    return RateLimiterEngine(storage=JsonFileStorage(path), time_provider=clock)


@pytest.mark.asyncio
async def test_bucket_state_survives_restart(tmp_path: Path, clock: MutableClock) -> None:
    path = tmp_path / "runtime-state.json"
    engine = _restart(path, clock)
    engine.upsert_policy(policy_payload(limits=[token_bucket(capacity=10, refill=1, initial=10)]))

    first = await engine.consume(consume_payload(cost=3))
    assert first.remaining == 7

    restarted = _restart(path, clock)
    second = await restarted.consume(consume_payload(cost=1))

    assert second.remaining == 6
    assert [policy.model_dump() for policy in restarted.list_policies()] == [
        policy.model_dump() for policy in engine.list_policies()
    ]
    assert [event.type for event in restarted.list_audit_events("T1")] == ["POLICY_UPSERT"]


@pytest.mark.asyncio
async def test_idempotent_replay_survives_restart(tmp_path: Path, clock: MutableClock) -> None:
    path = tmp_path / "runtime-state.json"
    engine = _restart(path, clock)
    engine.upsert_policy(policy_payload())
    original = await engine.consume(consume_payload(request_id="r1", cost=2))

    restarted = _restart(path, clock)
    replay = await restarted.consume(consume_payload(request_id="r1", cost=2))

    assert replay.model_dump() == original.model_dump()
    (bucket,) = restarted.storage.bucket_states.values()
    assert bucket.tokens == 8


@pytest.mark.asyncio
async def test_conflict_audit_is_persisted(tmp_path: Path, clock: MutableClock) -> None:
    path = tmp_path / "runtime-state.json"
    engine = _restart(path, clock)
    engine.upsert_policy(policy_payload())
    await engine.consume(consume_payload(request_id="r1", cost=1))

    with pytest.raises(IdempotencyConflictError):
        await engine.consume(consume_payload(request_id="r1", cost=5))

    restarted = _restart(path, clock)
    assert restarted.list_audit_events("T1", limit=1)[0].type == "IDEMPOTENCY_CONFLICT"


def test_patch_survives_restart(tmp_path: Path, clock: MutableClock) -> None:
    path = tmp_path / "runtime-state.json"
    engine = _restart(path, clock)
    engine.upsert_policy(policy_payload())
    engine.patch_policy("P1", {"status": "INACTIVE"})

    restarted = _restart(path, clock)
    assert restarted.list_policies("T1")[0].status == "INACTIVE"
