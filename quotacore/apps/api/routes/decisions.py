from __future__ import annotations

from fastapi import APIRouter, Depends

from quotacore.apps.api.deps import get_engine
from quotacore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from quotacore.domain.models import ConsumeRequest, Decision
from quotacore.services.rate_limiter import RateLimiterEngine


router = APIRouter(prefix="/ratelimit", tags=["decisions"], responses=DEFAULT_ERROR_RESPONSES)


@router.post("/consume")
async def consume(payload: ConsumeRequest, engine: RateLimiterEngine = Depends(get_engine)) -> Decision:
    # Denials are a normal 200 outcome; the caller decides how to surface them.
    return await engine.consume(payload)


@router.post("/check")
async def check(payload: ConsumeRequest, engine: RateLimiterEngine = Depends(get_engine)) -> Decision:
    return await engine.check(payload)
