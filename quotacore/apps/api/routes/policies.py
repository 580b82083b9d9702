from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from quotacore.apps.api.deps import get_engine
from quotacore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from quotacore.domain.models import Policy, PolicyInput, PolicyPatch
from quotacore.services.rate_limiter import RateLimiterEngine


router = APIRouter(prefix="/ratelimit/policies", tags=["policies"], responses=DEFAULT_ERROR_RESPONSES)


class PolicyList(BaseModel):
    items: list[Policy]


@router.post("", status_code=status.HTTP_201_CREATED)
async def upsert_policy(payload: PolicyInput, engine: RateLimiterEngine = Depends(get_engine)) -> Policy:
    return engine.upsert_policy(payload)


@router.get("")
async def list_policies(
    tenant_id: str | None = None,
    engine: RateLimiterEngine = Depends(get_engine),
) -> PolicyList:
    return PolicyList(items=engine.list_policies(tenant_id))


@router.patch("/{policy_id}")
async def patch_policy(
    policy_id: str,
    payload: PolicyPatch,
    engine: RateLimiterEngine = Depends(get_engine),
) -> Policy:
    return engine.patch_policy(policy_id, payload)
