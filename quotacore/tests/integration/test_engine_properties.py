from __future__ import annotations

import asyncio
from datetime import timedelta

from hypothesis import given, settings as hypothesis_settings, strategies as st

from quotacore.services.rate_limiter import RateLimiterEngine
from quotacore.tests.utils.builders import T0, consume_payload, fixed_window, policy_payload, token_bucket


# (cost, milliseconds since the previous call)
_STEPS = st.lists(st.tuples(st.integers(min_value=1, max_value=5), st.integers(min_value=0, max_value=3_000)), max_size=40)


def _run(engine: RateLimiterEngine, steps: list[tuple[int, int]]) -> list[tuple[int, int, bool]]:
    # Replay steps sequentially; returns (offset_ms, cost, allowed) per call.
    async def replay() -> list[tuple[int, int, bool]]:
        outcomes = []
        offset_ms = 0
        for cost, gap_ms in steps:
            offset_ms += gap_ms
            decision = await engine.consume(
                consume_payload(cost=cost, now=T0 + timedelta(milliseconds=offset_ms))
            )
            outcomes.append((offset_ms, cost, decision.allowed))
        return outcomes

    return asyncio.run(replay())


@hypothesis_settings(max_examples=50, deadline=None)
@given(steps=_STEPS)
def test_token_bucket_never_grants_more_than_capacity_plus_refill(steps: list[tuple[int, int]]) -> None:
    engine = RateLimiterEngine()
    engine.upsert_policy(policy_payload(limits=[token_bucket(capacity=10, refill=2)]))

    outcomes = _run(engine, steps)

    granted = sum(cost for _, cost, allowed in outcomes if allowed)
    elapsed_s = (outcomes[-1][0] / 1000) if outcomes else 0
    assert granted <= 10 + 2 * elapsed_s + 1e-6
    for state in engine.storage.bucket_states.values():
        assert 0 <= state.tokens <= 10


@hypothesis_settings(max_examples=50, deadline=None)
@given(steps=_STEPS)
def test_fixed_window_never_exceeds_limit_per_window(steps: list[tuple[int, int]]) -> None:
    engine = RateLimiterEngine()
    engine.upsert_policy(policy_payload(limits=[fixed_window(window_seconds=5, limit=7)]))

    outcomes = _run(engine, steps)

    per_window: dict[int, int] = {}
    for offset_ms, cost, allowed in outcomes:
        if allowed:
            window = offset_ms // 5_000
            per_window[window] = per_window.get(window, 0) + cost
    assert all(used <= 7 for used in per_window.values())


@hypothesis_settings(max_examples=25, deadline=None)
@given(costs=st.lists(st.integers(min_value=1, max_value=4), min_size=1, max_size=30))
def test_dry_runs_leave_state_untouched(costs: list[int]) -> None:
    engine = RateLimiterEngine()
    engine.upsert_policy(policy_payload(limits=[token_bucket(capacity=10, refill=1), fixed_window(limit=5)]))

    async def replay() -> None:
        for cost in costs:
            await engine.check(consume_payload(cost=cost))

    asyncio.run(replay())

    assert engine.storage.bucket_states == {}
    assert engine.storage.window_states == {}
