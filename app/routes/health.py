"""
Health endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

import scopegate.config as config
from scopegate.errors import StorageError
from app.deps import AppServices, get_services


router = APIRouter()


def _check_db_health(services: AppServices) -> dict:
    if services.executor is None:
        return {"ok": False, "error": "db_not_initialized"}
    try:
        services.executor.ping()
    except StorageError as exc:
        return {"ok": False, "error": exc.message}
    return {"ok": True, "backend": config.DB_BACKEND}


@router.get("/health")
def health(services: AppServices = Depends(get_services)):
    """Health check endpoint."""
    db_health = _check_db_health(services)
    if not db_health.get("ok"):
        raise HTTPException(status_code=503, detail={"database": db_health})

    return {
        "status": "healthy",
        "service": "ScopeGate",
        "version": "0.1.0",
        "database": db_health,
        "scoping_enabled": services.policy.enabled,
    }
