from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Callable, Mapping, TypeVar

from pydantic import BaseModel, ValidationError

from quotacore.core.config import Settings, get_settings
from quotacore.core.errors import IdempotencyConflictError, InvalidInputError, PolicyNotFoundError
from quotacore.domain.models import (
    LIMIT_KIND_FIXED_WINDOW,
    LIMIT_KIND_TOKEN_BUCKET,
    AuditEvent,
    ConsumeRequest,
    Decision,
    Policy,
    PolicyInput,
    PolicyPatch,
    TokenBucketLimit,
)
from quotacore.domain.state import idempotency_key, state_key, to_epoch_ms
from quotacore.providers.storage.base import StorageProvider
from quotacore.providers.storage.factory import get_storage_provider
from quotacore.providers.storage.memory import InMemoryStorage
from quotacore.services.audit import (
    AUDIT_IDEMPOTENCY_CONFLICT,
    AUDIT_POLICY_PATCH,
    AUDIT_POLICY_UPSERT,
    AUDIT_REQUEST_DENIED,
    list_events,
    record_event,
)
from quotacore.services.idempotency import (
    expire_entries,
    fingerprint_request,
    lookup_entry,
    remember_decision,
)
from quotacore.services.keyed_mutex import KeyedMutex
from quotacore.services.limits import LimitEvaluation, evaluate_fixed_window, evaluate_token_bucket
from quotacore.services.policy_selector import policy_sort_key, select_policy


logger = logging.getLogger(__name__)

DEFAULT_IDEMPOTENCY_TTL_MS = 10 * 60 * 1000

_IMMUTABLE_POLICY_FIELDS = ("policy_id", "tenant_id", "created_at")

ModelT = TypeVar("ModelT", bound=BaseModel)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _describe_validation_error(exc: ValidationError) -> str:
    # Flatten pydantic errors into "field.path: message" pairs for API clients.
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        message = str(error.get("msg", "invalid value"))
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "invalid input"


def _coerce(model_cls: type[ModelT], value: Any) -> ModelT:
    # Accept validated models or raw mappings; never leak pydantic errors to callers.
    if isinstance(value, model_cls):
        return value.model_copy(deep=True)
    if isinstance(value, BaseModel):
        value = value.model_dump(exclude_unset=model_cls is PolicyPatch)
    try:
        return model_cls.model_validate(value)
    except ValidationError as exc:
        raise InvalidInputError(_describe_validation_error(exc)) from exc


class RateLimiterEngine:
    """Multi-tenant decision core: policy CRUD, consume/check, idempotency, audit.

    All state lives in the injected storage provider. Evaluations for one
    tenant run strictly one at a time through a fair keyed mutex, which makes
    the idempotency check, policy selection, every limit evaluation, the
    commit and persistence a single atomic step. Every public method returns
    copies; callers never hold references into the stores.
    """

    def __init__(
        self,
        *,
        storage: StorageProvider | None = None,
        time_provider: Callable[[], datetime] | None = None,
        idempotency_ttl_ms: int = DEFAULT_IDEMPOTENCY_TTL_MS,
    ) -> None:
        # Allow injecting storage and time for deterministic tests.
        self._storage = storage if storage is not None else InMemoryStorage()
        self._time_provider = time_provider or _utc_now
        self._idempotency_ttl_ms = idempotency_ttl_ms
        self._mutex = KeyedMutex()

    @property
    def storage(self) -> StorageProvider:
        return self._storage

    def _now(self) -> datetime:
        now = self._time_provider()
        if now.tzinfo is None:
            return now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc)

    def upsert_policy(self, policy_input: PolicyInput | Mapping[str, Any]) -> Policy:
        data = _coerce(PolicyInput, policy_input)
        now = self._now()
        existing = self._storage.policies.get(data.policy_id)
        created_at = existing.created_at if existing is not None else now
        updated_at = max(now, existing.updated_at) if existing is not None else now
        policy = _coerce(
            Policy,
            {**data.model_dump(), "created_at": created_at, "updated_at": updated_at},
        )

        # Replace wholesale so concurrent readers see either the old or the new record.
        self._storage.policies[policy.policy_id] = policy
        record_event(
            self._storage.audit_events,
            event_type=AUDIT_POLICY_UPSERT,
            tenant_id=policy.tenant_id,
            occurred_at=now,
            payload={
                "policy_id": policy.policy_id,
                "name": policy.name,
                "status": policy.status,
                "priority": policy.priority,
                "created": existing is None,
            },
        )
        self._storage.persist()
        logger.info(
            "policy_upserted policy_id=%s tenant_id=%s priority=%d status=%s",
            policy.policy_id,
            policy.tenant_id,
            policy.priority,
            policy.status,
        )
        return policy.model_copy(deep=True)

    def patch_policy(self, policy_id: str, patch: PolicyPatch | Mapping[str, Any]) -> Policy:
        current = self._storage.policies.get(policy_id)
        if current is None:
            raise PolicyNotFoundError(f"policy not found: {policy_id}")

        changes = _coerce(PolicyPatch, patch).model_dump(exclude_unset=True)
        now = self._now()
        merged = {**current.model_dump(), **changes}
        for field in _IMMUTABLE_POLICY_FIELDS:
            merged[field] = getattr(current, field)
        merged["updated_at"] = max(now, current.updated_at)
        policy = _coerce(Policy, merged)

        self._storage.policies[policy_id] = policy
        record_event(
            self._storage.audit_events,
            event_type=AUDIT_POLICY_PATCH,
            tenant_id=policy.tenant_id,
            occurred_at=now,
            payload={"policy_id": policy_id, "fields": sorted(changes)},
        )
        self._storage.persist()
        logger.info("policy_patched policy_id=%s fields=%s", policy_id, ",".join(sorted(changes)))
        return policy.model_copy(deep=True)

    def list_policies(self, tenant_id: str | None = None) -> list[Policy]:
        policies = [
            policy
            for policy in self._storage.policies.values()
            if not tenant_id or policy.tenant_id == tenant_id
        ]
        policies.sort(key=policy_sort_key)
        return [policy.model_copy(deep=True) for policy in policies]

    def list_audit_events(self, tenant_id: str | None = None, limit: int | None = None) -> list[AuditEvent]:
        return list_events(self._storage.audit_events, tenant_id=tenant_id, limit=limit)

    async def consume(self, request: ConsumeRequest | Mapping[str, Any]) -> Decision:
        return await self._evaluate(_coerce(ConsumeRequest, request))

    async def check(self, request: ConsumeRequest | Mapping[str, Any]) -> Decision:
        # Forced dry run: evaluates exactly like consume but never commits limit state.
        parsed = _coerce(ConsumeRequest, request)
        return await self._evaluate(parsed.model_copy(update={"dry_run": True}))

    async def _evaluate(self, request: ConsumeRequest) -> Decision:
        now = request.now or self._now()
        async with self._mutex.hold(f"tenant:{request.tenant_id}"):
            return self._evaluate_exclusive(request, now)

    def _evaluate_exclusive(self, request: ConsumeRequest, now: datetime) -> Decision:
        # Runs with the tenant section held; must not await.
        storage = self._storage
        now_ms = to_epoch_ms(now)
        mutated = False
        try:
            expired = expire_entries(storage.idempotency_entries, now_ms)
            if expired:
                mutated = True
                logger.debug("idempotency_entries_expired count=%d", expired)

            cache_key: str | None = None
            payload_hash: str | None = None
            if request.request_id:
                cache_key = idempotency_key(request.tenant_id, request.request_id)
                payload_hash = fingerprint_request(request)
                cached = lookup_entry(storage.idempotency_entries, cache_key, now_ms)
                if cached is not None:
                    if cached.payload_hash != payload_hash:
                        record_event(
                            storage.audit_events,
                            event_type=AUDIT_IDEMPOTENCY_CONFLICT,
                            tenant_id=request.tenant_id,
                            occurred_at=now,
                            payload={"request_id": request.request_id},
                        )
                        mutated = True
                        logger.warning(
                            "idempotency_conflict tenant_id=%s request_id=%s",
                            request.tenant_id,
                            request.request_id,
                        )
                        raise IdempotencyConflictError(
                            "IDEMPOTENCY_KEY_REUSE: payload mismatch for request_id"
                        )
                    return cached.decision.model_copy(deep=True)

            policy = select_policy(
                storage.policies.values(),
                tenant_id=request.tenant_id,
                subject=request.subject,
                resource=request.resource,
            )
            if policy is None:
                # Nothing governs this request: allow without limits.
                decision = Decision(
                    allowed=True,
                    policy_id=None,
                    results=[],
                    retry_after_ms=None,
                    remaining=None,
                    reset_at=None,
                )
            else:
                decision, evaluations = self._decide(policy, request, now_ms)
                if decision.allowed and not request.dry_run:
                    for evaluation in evaluations:
                        if evaluation.commit is not None:
                            evaluation.commit()
                            mutated = True
                if not decision.allowed:
                    record_event(
                        storage.audit_events,
                        event_type=AUDIT_REQUEST_DENIED,
                        tenant_id=request.tenant_id,
                        occurred_at=now,
                        payload={
                            "policy_id": policy.policy_id,
                            "request_id": request.request_id,
                            "subject": request.subject.model_dump(mode="json", exclude_none=True),
                            "resource": request.resource.model_dump(mode="json"),
                            "cost": request.cost,
                            "dry_run": request.dry_run,
                            "retry_after_ms": decision.retry_after_ms,
                        },
                    )
                    mutated = True
                    logger.info(
                        "request_denied tenant_id=%s policy_id=%s subject=%s:%s resource=%s retry_after_ms=%s",
                        request.tenant_id,
                        policy.policy_id,
                        request.subject.type,
                        request.subject.id,
                        request.resource.name,
                        decision.retry_after_ms,
                    )

            if cache_key is not None and payload_hash is not None:
                remember_decision(
                    storage.idempotency_entries,
                    cache_key,
                    payload_hash=payload_hash,
                    decision=decision,
                    now_ms=now_ms,
                    ttl_ms=self._idempotency_ttl_ms,
                )
                mutated = True
            return decision
        finally:
            if mutated:
                storage.persist()

    def _decide(
        self, policy: Policy, request: ConsumeRequest, now_ms: int
    ) -> tuple[Decision, list[LimitEvaluation]]:
        evaluations: list[LimitEvaluation] = []
        for index, limit in enumerate(policy.limits):
            if isinstance(limit, TokenBucketLimit):
                evaluations.append(
                    evaluate_token_bucket(
                        limit,
                        states=self._storage.bucket_states,
                        key=state_key(policy, request, LIMIT_KIND_TOKEN_BUCKET, index),
                        now_ms=now_ms,
                        cost=request.cost,
                    )
                )
            else:
                evaluations.append(
                    evaluate_fixed_window(
                        limit,
                        states=self._storage.window_states,
                        key=state_key(policy, request, LIMIT_KIND_FIXED_WINDOW, index),
                        now_ms=now_ms,
                        cost=request.cost,
                    )
                )

        results = [evaluation.result for evaluation in evaluations]
        allowed = all(result.allowed for result in results)
        retry_candidates = [
            result.retry_after_ms
            for result in results
            if not result.allowed and result.retry_after_ms is not None
        ]
        remaining_candidates = [result.remaining for result in results if result.remaining is not None]
        reset_candidates = [result.reset_at for result in results if result.reset_at is not None]

        decision = Decision(
            allowed=allowed,
            policy_id=policy.policy_id,
            results=results,
            retry_after_ms=None if allowed or not retry_candidates else min(retry_candidates),
            remaining=min(remaining_candidates) if allowed and remaining_candidates else None,
            reset_at=min(reset_candidates) if reset_candidates else None,
        )
        return decision, evaluations


def create_rate_limiter(settings: Settings | None = None) -> RateLimiterEngine:
    # Wire the settings-selected storage provider; tests construct the engine directly.
    settings = settings or get_settings()
    return RateLimiterEngine(
        storage=get_storage_provider(settings),
        idempotency_ttl_ms=settings.idempotency_ttl_seconds * 1000,
    )
