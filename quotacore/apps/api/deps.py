from __future__ import annotations

from fastapi import Request

from quotacore.services.rate_limiter import RateLimiterEngine


def get_engine(request: Request) -> RateLimiterEngine:
    # One engine per app instance, injected at construction.
    return request.app.state.engine
