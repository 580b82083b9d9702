from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator


SUBJECT_TYPES = ("USER", "API_KEY", "IP", "TENANT")
RESOURCE_TYPES = ("ENDPOINT", "ACTION")
POLICY_STATUSES = ("ACTIVE", "INACTIVE")

LIMIT_KIND_TOKEN_BUCKET = "TOKEN_BUCKET"
LIMIT_KIND_FIXED_WINDOW = "FIXED_WINDOW"

SubjectType = Literal["USER", "API_KEY", "IP", "TENANT"]
ResourceType = Literal["ENDPOINT", "ACTION"]
PolicyStatus = Literal["ACTIVE", "INACTIVE"]
LimitKind = Literal["TOKEN_BUCKET", "FIXED_WINDOW"]
AuditEventType = Literal["POLICY_UPSERT", "POLICY_PATCH", "REQUEST_DENIED", "IDEMPOTENCY_CONFLICT"]


def _require_text(value: str) -> str:
    # Reject blank identifiers without rewriting the caller's value.
    if not value.strip():
        raise ValueError("must not be blank")
    return value


NonEmptyStr = Annotated[str, AfterValidator(_require_text)]


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TokenBucketLimit(BaseModel):
    kind: Literal["TOKEN_BUCKET"] = LIMIT_KIND_TOKEN_BUCKET
    capacity: float = Field(gt=0, allow_inf_nan=False)
    refill_tokens_per_sec: float = Field(gt=0, allow_inf_nan=False)
    # Defaults to a full bucket when omitted.
    initial_tokens: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    max_cost: float | None = Field(default=None, gt=0, allow_inf_nan=False)
    behavior_on_denied: Literal["DENY"] = "DENY"

    @model_validator(mode="after")
    def _initial_tokens_within_capacity(self) -> TokenBucketLimit:
        if self.initial_tokens is not None and self.initial_tokens > self.capacity:
            raise ValueError("initial_tokens must be in [0, capacity]")
        return self

    @property
    def starting_tokens(self) -> float:
        return self.capacity if self.initial_tokens is None else self.initial_tokens


class FixedWindowLimit(BaseModel):
    kind: Literal["FIXED_WINDOW"] = LIMIT_KIND_FIXED_WINDOW
    window_seconds: int = Field(gt=0)
    limit: float = Field(gt=0, allow_inf_nan=False)
    # Windows are always aligned to epoch multiples of window_seconds.
    counter_key_granularity: Literal["WINDOW_START"] = "WINDOW_START"
    behavior_on_denied: Literal["DENY"] = "DENY"


Limit = Annotated[Union[TokenBucketLimit, FixedWindowLimit], Field(discriminator="kind")]


class PolicyScope(BaseModel):
    subject_type: SubjectType
    resource_type: ResourceType


class PolicyMatch(BaseModel):
    # Glob with '*' as the only wildcard, anchored at both ends.
    resource_pattern: NonEmptyStr
    # Attribute equality predicate over subject id/type/attributes.
    subject_filter: dict[str, Any] | None = None


class PolicyInput(BaseModel):
    policy_id: NonEmptyStr
    tenant_id: NonEmptyStr
    name: str
    status: PolicyStatus
    priority: int
    scope: PolicyScope
    match: PolicyMatch
    limits: list[Limit] = Field(min_length=1)


class Policy(PolicyInput):
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class PolicyPatch(BaseModel):
    # Identity and timestamps are not patchable; unknown keys are ignored.
    name: str | None = None
    status: PolicyStatus | None = None
    priority: int | None = None
    scope: PolicyScope | None = None
    match: PolicyMatch | None = None
    limits: Annotated[list[Limit], Field(min_length=1)] | None = None


class Subject(BaseModel):
    type: SubjectType
    id: NonEmptyStr
    attributes: dict[str, Any] | None = None


class Resource(BaseModel):
    type: ResourceType
    name: NonEmptyStr


class ConsumeRequest(BaseModel):
    tenant_id: NonEmptyStr
    request_id: str | None = None
    subject: Subject
    resource: Resource
    cost: float = Field(default=1, gt=0, allow_inf_nan=False)
    dry_run: bool = False
    # Caller-supplied instant overriding the engine clock; trusted as-is.
    now: datetime | None = None

    @field_validator("now")
    @classmethod
    def _ensure_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class LimitResult(BaseModel):
    kind: LimitKind
    allowed: bool
    remaining: float | None
    retry_after_ms: int | None
    reset_at: datetime | None


class Decision(BaseModel):
    allowed: bool
    policy_id: str | None
    results: list[LimitResult] = Field(default_factory=list)
    retry_after_ms: int | None = None
    remaining: float | None = None
    reset_at: datetime | None = None


class AuditEvent(BaseModel):
    type: AuditEventType
    tenant_id: str
    timestamp: datetime
    payload: dict[str, Any] = Field(default_factory=dict)
