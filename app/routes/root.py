"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.deps import AppServices, get_services


router = APIRouter()


@router.get("/")
def root(services: AppServices = Depends(get_services)):
    """Root endpoint with service info."""
    return {
        "service": "ScopeGate",
        "version": "0.1.0",
        "description": "Scoped resource access over warehouse inventory tables",
        "scoping_enabled": services.policy.enabled,
        "resources": services.registry.keys(),
        "aliases": dict(services.registry.aliases()),
        "endpoints": {
            "health": "/health",
            "list": "/api/{resource}",
            "record": "/api/{resource}/{id}",
            "history": "/api/resources/{resource}/{id}/history",
        },
    }
