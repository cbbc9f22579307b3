"""
FastAPI app wiring for ScopeGate.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import scopegate.config as config
from scopegate.db import DB, QueryExecutor, dispose_db, init_db
from scopegate.errors import ScopeGateError
from scopegate.registry import ResourceRegistry
from scopegate.resources.catalog import build_default_registry
from scopegate.services.scope import ScopePolicy
from app.deps import AppServices
from app.identity import IdentityResolver, header_identity_resolver, unavailable_identity_resolver
from app.middleware import configure_middleware
from app.routes.health import router as health_router
from app.routes.resources import router as resources_router
from app.routes.root import router as root_router

logger = config.logger


def _default_identity_resolver() -> IdentityResolver:
    if config.TRUSTED_IDENTITY_HEADERS:
        return header_identity_resolver
    return unavailable_identity_resolver


async def scopegate_error_handler(request: Request, exc: ScopeGateError) -> JSONResponse:
    """Map engine errors to the JSON error envelope and their status codes."""
    payload = {
        "path": request.url.path,
        "error_type": exc.error_type,
        "status_code": exc.status_code,
    }
    if exc.status_code >= 500:
        logger.error("request_failed", extra=dict(payload, error=exc.message))
    else:
        logger.info("request_rejected", extra=payload)

    body = {
        "error": {"message": exc.message, "type": exc.error_type},
        "resource": request.path_params.get("resource"),
    }
    field = getattr(exc, "field", None)
    if field is not None:
        body["error"]["field"] = field
    return JSONResponse(body, status_code=exc.status_code, headers={"Cache-Control": "no-store"})


def create_app(
    registry: Optional[ResourceRegistry] = None,
    executor: Optional[QueryExecutor] = None,
    policy: Optional[ScopePolicy] = None,
    identity_resolver: Optional[IdentityResolver] = None,
) -> FastAPI:
    """Build the app; missing collaborators come from configuration at startup."""
    services = AppServices(
        registry=registry or build_default_registry(),
        policy=policy or ScopePolicy.from_config(),
        identity_resolver=identity_resolver or _default_identity_resolver(),
        executor=executor,
    )
    owns_database = executor is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize on startup, cleanup on shutdown."""
        if owns_database:
            init_db()
            services.executor = DB.executor
        try:
            yield
        finally:
            if owns_database:
                services.executor = None
                dispose_db()

    app = FastAPI(title="ScopeGate", redirect_slashes=False, lifespan=lifespan)
    app.state.services = services
    configure_middleware(app)
    app.add_exception_handler(ScopeGateError, scopegate_error_handler)

    app.include_router(health_router)
    app.include_router(root_router)
    app.include_router(resources_router)
    return app


# =============================================================================
# ASGI Application (module-level for production deployment)
# =============================================================================

app = create_app()
