"""
Dependency helpers for the FastAPI app.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

import scopegate.config as config
from scopegate.context import CallerIdentityContext, RequestContext
from scopegate.db import QueryExecutor
from scopegate.errors import IdentityUnavailable, StorageError
from scopegate.registry import ResourceRegistry
from scopegate.services.scope import ScopePolicy
from app.identity import IdentityResolver

logger = config.logger


@dataclass
class AppServices:
    """Long-lived collaborators shared by every request."""

    registry: ResourceRegistry
    policy: ScopePolicy
    identity_resolver: IdentityResolver
    executor: Optional[QueryExecutor] = None


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_registry(services: AppServices = Depends(get_services)) -> ResourceRegistry:
    return services.registry


def get_policy(services: AppServices = Depends(get_services)) -> ScopePolicy:
    return services.policy


def get_executor(services: AppServices = Depends(get_services)) -> QueryExecutor:
    if services.executor is None:
        raise StorageError("Database not initialized")
    return services.executor


def get_identity(
    request: Request,
    services: AppServices = Depends(get_services),
) -> Optional[CallerIdentityContext]:
    try:
        return services.identity_resolver(request)
    except IdentityUnavailable as exc:
        if services.policy.enabled:
            raise
        logger.warning(
            "identity_unavailable_running_unscoped",
            extra={"path": request.url.path, "reason": exc.message},
        )
        return None


def get_request_context(
    request: Request,
    identity: Optional[CallerIdentityContext] = Depends(get_identity),
) -> RequestContext:
    return RequestContext.with_timeout(
        identity,
        config.REQUEST_TIMEOUT_SECONDS,
        request_id=request.headers.get("x-request-id"),
        source="http",
    )
