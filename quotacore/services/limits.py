from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Callable, MutableMapping

from quotacore.core.errors import InvalidInputError
from quotacore.domain.models import (
    LIMIT_KIND_FIXED_WINDOW,
    LIMIT_KIND_TOKEN_BUCKET,
    FixedWindowLimit,
    LimitResult,
    TokenBucketLimit,
)
from quotacore.domain.state import BucketState, WindowCounterState, from_epoch_ms


_REMAINING_PRECISION = 6


@dataclass(frozen=True)
class LimitEvaluation:
    # Outcome for one limit plus the write to run only if the whole decision allows.
    result: LimitResult
    commit: Callable[[], None] | None


def _refill_tokens(*, tokens: float, last_refill_ms: int, now_ms: int, rate: float, capacity: float) -> float:
    # Refill from elapsed time, capped at capacity; callers pass a non-decreasing now_ms.
    elapsed_s = (now_ms - last_refill_ms) / 1000.0
    return min(capacity, tokens + elapsed_s * rate)


def _retry_after_ms(tokens: float, *, rate: float, cost: float) -> int:
    # Milliseconds until the deficit refills, rounded up.
    if tokens >= cost:
        return 0
    return max(0, int(math.ceil(((cost - tokens) / rate) * 1000)))


def evaluate_token_bucket(
    limit: TokenBucketLimit,
    *,
    states: MutableMapping[str, BucketState],
    key: str,
    now_ms: int,
    cost: float,
) -> LimitEvaluation:
    if limit.max_cost is not None and cost > limit.max_cost:
        raise InvalidInputError(f"cost exceeds max_cost for TOKEN_BUCKET: {limit.max_cost:g}")

    existing = states.get(key)
    tokens = existing.tokens if existing is not None else limit.starting_tokens
    last_refill_ms = existing.last_refill_at_ms if existing is not None else now_ms

    # Never let caller-supplied time run the refill clock backwards.
    effective_now_ms = max(now_ms, last_refill_ms)
    refilled = _refill_tokens(
        tokens=tokens,
        last_refill_ms=last_refill_ms,
        now_ms=effective_now_ms,
        rate=limit.refill_tokens_per_sec,
        capacity=limit.capacity,
    )

    allowed = refilled >= cost
    tokens_after = refilled - cost if allowed else refilled
    tokens_after = max(0.0, min(limit.capacity, tokens_after))

    commit = None
    if allowed:
        next_state = BucketState(
            tokens=tokens_after,
            last_refill_at_ms=effective_now_ms,
            updated_at_ms=effective_now_ms,
        )

        def commit() -> None:
            states[key] = next_state

    return LimitEvaluation(
        result=LimitResult(
            kind=LIMIT_KIND_TOKEN_BUCKET,
            allowed=allowed,
            remaining=round(tokens_after, _REMAINING_PRECISION),
            retry_after_ms=None
            if allowed
            else _retry_after_ms(refilled, rate=limit.refill_tokens_per_sec, cost=cost),
            reset_at=None,
        ),
        commit=commit,
    )


def evaluate_fixed_window(
    limit: FixedWindowLimit,
    *,
    states: MutableMapping[str, WindowCounterState],
    key: str,
    now_ms: int,
    cost: float,
) -> LimitEvaluation:
    window_ms = limit.window_seconds * 1000
    # Epoch-aligned, so every caller agrees on the boundary.
    window_start_ms = (now_ms // window_ms) * window_ms
    reset_at_ms = window_start_ms + window_ms

    existing = states.get(key)
    used = existing.used if existing is not None and existing.window_start_ms == window_start_ms else 0.0

    candidate_used = used + cost
    allowed = candidate_used <= limit.limit
    used_after = candidate_used if allowed else used

    commit = None
    if allowed:
        next_state = WindowCounterState(
            window_start_ms=window_start_ms,
            used=used_after,
            updated_at_ms=now_ms,
        )

        def commit() -> None:
            states[key] = next_state

    return LimitEvaluation(
        result=LimitResult(
            kind=LIMIT_KIND_FIXED_WINDOW,
            allowed=allowed,
            remaining=max(0.0, round(limit.limit - used_after, _REMAINING_PRECISION)),
            retry_after_ms=None if allowed else max(0, reset_at_ms - now_ms),
            reset_at=from_epoch_ms(reset_at_ms),
        ),
        commit=commit,
    )
