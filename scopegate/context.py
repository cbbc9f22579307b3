"""
Request-scoped context objects for the resource access engine.

A ``CallerIdentityContext`` is resolved once per request by the session/auth
collaborator and handed to the engine; the engine never derives identity
itself and never keeps one beyond the call it was passed to.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence
import threading
import time

from scopegate.errors import RequestCancelled


def _frozen_list(values: Optional[Iterable[str]]) -> Optional[tuple[str, ...]]:
    if values is None:
        return None
    return tuple(str(value) for value in values)


@dataclass(frozen=True)
class CallerIdentityContext:
    effective_user_id: Optional[str] = None
    permissions: frozenset[str] = frozenset()
    role_family: Optional[str] = None
    can_see_all_warehouses: bool = False
    # None means "not resolved"; an empty tuple means "resolved, no warehouses".
    allowed_warehouse_codes: Optional[tuple[str, ...]] = None
    allowed_warehouse_ids: Optional[tuple[str, ...]] = None
    # Legacy alias for codes, still sent by older session payloads.
    allowed_warehouses: Optional[tuple[str, ...]] = None

    @staticmethod
    def from_values(
        effective_user_id: Optional[str] = None,
        permissions: Optional[Iterable[str]] = None,
        role_family: Optional[str] = None,
        can_see_all_warehouses: bool = False,
        allowed_warehouse_codes: Optional[Sequence[str]] = None,
        allowed_warehouse_ids: Optional[Sequence[str]] = None,
        allowed_warehouses: Optional[Sequence[str]] = None,
    ) -> "CallerIdentityContext":
        return CallerIdentityContext(
            effective_user_id=str(effective_user_id) if effective_user_id is not None else None,
            permissions=frozenset(permissions or ()),
            role_family=role_family or None,
            can_see_all_warehouses=bool(can_see_all_warehouses),
            allowed_warehouse_codes=_frozen_list(allowed_warehouse_codes),
            allowed_warehouse_ids=_frozen_list(allowed_warehouse_ids),
            allowed_warehouses=_frozen_list(allowed_warehouses),
        )

    def has_any_permission(self, candidates: Optional[Iterable[str]]) -> bool:
        if not candidates:
            return False
        return any(permission in self.permissions for permission in candidates)

    def warehouse_codes(self) -> Optional[tuple[str, ...]]:
        if self.allowed_warehouse_codes is not None:
            return self.allowed_warehouse_codes
        return self.allowed_warehouses


@dataclass(frozen=True)
class RequestContext:
    identity: Optional[CallerIdentityContext] = None
    request_id: Optional[str] = None
    source: Optional[str] = None
    # Monotonic clock value after which no further round-trip is started.
    deadline: Optional[float] = None
    cancel_event: Optional[threading.Event] = field(default=None, compare=False)

    @staticmethod
    def with_timeout(
        identity: Optional[CallerIdentityContext],
        seconds: float,
        *,
        request_id: Optional[str] = None,
        source: Optional[str] = None,
    ) -> "RequestContext":
        return RequestContext(
            identity=identity,
            request_id=request_id,
            source=source,
            deadline=time.monotonic() + seconds,
        )

    def checkpoint(self, step: str) -> None:
        """Raise RequestCancelled if the caller gave up before ``step``."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RequestCancelled(f"Request cancelled before {step}")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise RequestCancelled(f"Deadline exceeded before {step}")


__all__ = [
    "CallerIdentityContext",
    "RequestContext",
]
