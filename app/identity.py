"""
Caller identity resolution for the HTTP boundary.

The engine never derives identity itself. A resolver is any callable taking
the incoming ``Request`` and returning a fresh ``CallerIdentityContext`` or
raising ``IdentityUnavailable``.
"""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import Request

from scopegate.context import CallerIdentityContext
from scopegate.errors import IdentityUnavailable

IdentityResolver = Callable[[Request], CallerIdentityContext]

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _split_header(value: Optional[str]) -> Optional[list[str]]:
    """Comma-separated list; absent header means "not resolved"."""
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def header_identity_resolver(request: Request) -> CallerIdentityContext:
    """Build identity from headers set by a trusted gateway in front of the app."""
    headers = request.headers
    user_id = (headers.get("x-user-id") or "").strip()
    if not user_id:
        raise IdentityUnavailable("Missing X-User-Id header")
    return CallerIdentityContext.from_values(
        effective_user_id=user_id,
        permissions=_split_header(headers.get("x-permissions")),
        role_family=(headers.get("x-role-family") or "").strip() or None,
        can_see_all_warehouses=(headers.get("x-all-warehouses") or "").strip().lower() in _TRUE_VALUES,
        allowed_warehouse_ids=_split_header(headers.get("x-warehouse-ids")),
        allowed_warehouse_codes=_split_header(headers.get("x-warehouse-codes")),
    )


def unavailable_identity_resolver(request: Request) -> CallerIdentityContext:
    raise IdentityUnavailable("No identity resolver is configured")
