from __future__ import annotations

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from quotacore.apps.api.errors import (
    quota_error_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from quotacore.apps.api.routes.audit import router as audit_router
from quotacore.apps.api.routes.decisions import router as decisions_router
from quotacore.apps.api.routes.health import router as health_router
from quotacore.apps.api.routes.policies import router as policies_router
from quotacore.core.config import get_settings
from quotacore.core.errors import QuotaCoreError
from quotacore.core.logging import configure_logging
from quotacore.services.rate_limiter import RateLimiterEngine, create_rate_limiter


def create_app(engine: RateLimiterEngine | None = None) -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title=f"{settings.app_name} API")
    app.state.engine = engine if engine is not None else create_rate_limiter(settings)

    app.add_exception_handler(QuotaCoreError, quota_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router)
    app.include_router(policies_router)
    app.include_router(decisions_router)
    app.include_router(audit_router)
    return app
