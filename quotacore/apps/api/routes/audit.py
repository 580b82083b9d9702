from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from quotacore.apps.api.deps import get_engine
from quotacore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from quotacore.core.config import get_settings
from quotacore.domain.models import AuditEvent
from quotacore.services.rate_limiter import RateLimiterEngine


router = APIRouter(prefix="/ratelimit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditEventsPage(BaseModel):
    items: list[AuditEvent]


@router.get("/audit-events")
async def list_audit_events(
    tenant_id: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    engine: RateLimiterEngine = Depends(get_engine),
) -> AuditEventsPage:
    # Bound page sizes so a single call cannot dump the whole log.
    settings = get_settings()
    page_size = min(limit or settings.audit_default_page_size, settings.audit_max_page_size)
    return AuditEventsPage(items=engine.list_audit_events(tenant_id, page_size))
