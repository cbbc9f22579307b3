"""
Scope enforcement.

Pure functions that narrow an in-flight SQLAlchemy ``Select`` (or check an
in-memory row) to what a caller may see, based on row ownership and
warehouse membership.

Rules:
- Resources are unrestricted unless they declare a scope.
- Ownership and warehouse predicates are independent and AND-ed, so the
  order they are applied in never changes the result.
- "No restriction needed" never raises. A declared scope that cannot be
  evaluated for the caller raises ScopeConfigurationError; callers must
  surface that as a server error, never as an empty page.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

import sqlalchemy as sa

import scopegate.config as config
from scopegate.context import CallerIdentityContext
from scopegate.errors import ScopeConfigurationError, ScopeViolation
from scopegate.types import OwnershipMode, OwnershipScope, WarehouseMode, WarehouseScope

logger = config.logger


# =============================================================================
# Policy
# =============================================================================

@dataclass(frozen=True)
class ScopePolicy:
    """Whether scope enforcement runs. Passed explicitly into every service."""

    enabled: bool = True
    reason: Optional[str] = None

    @staticmethod
    def enforcing() -> "ScopePolicy":
        return ScopePolicy(enabled=True)

    @staticmethod
    def disabled(reason: str) -> "ScopePolicy":
        if not reason or not reason.strip():
            raise ValueError("disabling scope enforcement requires a reason")
        logger.warning(
            "scope_enforcement_disabled",
            extra={"reason": reason.strip()},
        )
        return ScopePolicy(enabled=False, reason=reason.strip())

    @staticmethod
    def from_config() -> "ScopePolicy":
        if config.AUTH_SCOPING_ENABLED:
            return ScopePolicy.enforcing()
        return ScopePolicy.disabled(config.SCOPING_DISABLED_REASON)


# =============================================================================
# Value resolution
# =============================================================================

def _ownership_bypassed(scope: OwnershipScope, identity: CallerIdentityContext) -> bool:
    return identity.has_any_permission(scope.bypass_permissions)


def _ownership_value(scope: OwnershipScope, identity: CallerIdentityContext) -> str:
    if scope.mode == OwnershipMode.SELF:
        value = identity.effective_user_id
        missing = "effective_user_id"
    elif scope.mode == OwnershipMode.ROLE_FAMILY:
        value = identity.role_family
        missing = "role_family"
    else:
        raise ScopeConfigurationError(f"Unsupported ownership scope mode: {scope.mode!r}")
    if value is None or value == "":
        logger.error(
            "scope_configuration_error",
            extra={"scope": "ownership", "mode": scope.mode.value, "missing": missing},
        )
        raise ScopeConfigurationError(
            f"Ownership scope '{scope.mode.value}' on column '{scope.column}' "
            f"cannot be evaluated: caller context has no {missing}"
        )
    return value


def _warehouse_unrestricted(scope: Optional[WarehouseScope], identity: CallerIdentityContext) -> bool:
    if scope is None or scope.mode == WarehouseMode.NONE:
        return True
    return identity.can_see_all_warehouses and not scope.require_binding


def _warehouse_values(scope: WarehouseScope, identity: CallerIdentityContext) -> tuple[str, ...]:
    """Pick the allow-list form (ids or codes) the scoped column expects."""
    if scope.uses_ids:
        values = identity.allowed_warehouse_ids
        missing = "allowed_warehouse_ids"
    else:
        values = identity.warehouse_codes()
        missing = "allowed_warehouse_codes"
    if values is None:
        logger.error(
            "scope_configuration_error",
            extra={"scope": "warehouse", "column": scope.column, "missing": missing},
        )
        raise ScopeConfigurationError(
            f"Warehouse scope on column '{scope.column}' cannot be evaluated: "
            f"caller context has no {missing}"
        )
    return values


def _require_identity(identity: Optional[CallerIdentityContext], what: str) -> CallerIdentityContext:
    if identity is None:
        logger.error("scope_configuration_error", extra={"scope": what, "missing": "identity"})
        raise ScopeConfigurationError(
            f"{what} scope is declared but no caller identity was supplied"
        )
    return identity


def scope_columns(
    ownership: Optional[OwnershipScope],
    warehouse: Optional[WarehouseScope],
) -> tuple[str, ...]:
    columns = []
    if ownership is not None:
        columns.append(ownership.column)
    if warehouse is not None and warehouse.mode == WarehouseMode.COLUMN:
        columns.append(warehouse.column)
    return tuple(dict.fromkeys(columns))


# =============================================================================
# Query predicates
# =============================================================================

def ownership_predicate(table, scope: Optional[OwnershipScope], identity: Optional[CallerIdentityContext]):
    """Return the ownership predicate for ``table`` or None when unrestricted."""
    if scope is None:
        return None
    identity = _require_identity(identity, "ownership")
    if _ownership_bypassed(scope, identity):
        return None
    value = _ownership_value(scope, identity)
    return table.c[scope.column] == value


def warehouse_predicate(table, scope: Optional[WarehouseScope], identity: Optional[CallerIdentityContext]):
    """Return the warehouse predicate for ``table`` or None when unrestricted."""
    if scope is None or scope.mode == WarehouseMode.NONE:
        return None
    identity = _require_identity(identity, "warehouse")
    if _warehouse_unrestricted(scope, identity):
        return None
    values = _warehouse_values(scope, identity)
    if not values:
        # Resolved, but bound to no warehouse at all: a real zero-row answer.
        return sa.false()
    return table.c[scope.column].in_(list(values))


def apply_ownership_scope(statement, table, scope, identity):
    predicate = ownership_predicate(table, scope, identity)
    return statement if predicate is None else statement.where(predicate)


def apply_warehouse_scope(statement, table, scope, identity):
    predicate = warehouse_predicate(table, scope, identity)
    return statement if predicate is None else statement.where(predicate)


def scope_predicates(
    table,
    *,
    ownership: Optional[OwnershipScope],
    warehouse: Optional[WarehouseScope],
    identity: Optional[CallerIdentityContext],
    policy: ScopePolicy,
) -> list:
    """All scope predicates for one statement; empty when nothing applies."""
    if not policy.enabled:
        return []
    predicates = []
    for predicate in (
        ownership_predicate(table, ownership, identity),
        warehouse_predicate(table, warehouse, identity),
    ):
        if predicate is not None:
            predicates.append(predicate)
    return predicates


def apply_scopes(
    statement,
    table,
    *,
    ownership: Optional[OwnershipScope],
    warehouse: Optional[WarehouseScope],
    identity: Optional[CallerIdentityContext],
    policy: ScopePolicy,
):
    predicates = scope_predicates(
        table,
        ownership=ownership,
        warehouse=warehouse,
        identity=identity,
        policy=policy,
    )
    return statement.where(*predicates) if predicates else statement


# =============================================================================
# Row guards (write path)
# =============================================================================

def assert_row_in_ownership_scope(
    row: Mapping,
    scope: Optional[OwnershipScope],
    identity: Optional[CallerIdentityContext],
) -> None:
    if scope is None:
        return
    identity = _require_identity(identity, "ownership")
    if _ownership_bypassed(scope, identity):
        return
    expected = _ownership_value(scope, identity)
    actual = row.get(scope.column)
    if actual is None or str(actual) != str(expected):
        logger.warning(
            "scope_violation",
            extra={"scope": "ownership", "column": scope.column, "user_id": identity.effective_user_id},
        )
        raise ScopeViolation(
            "forbidden_out_of_scope_owner",
            error_type="forbidden_out_of_scope_owner",
        )


def assert_row_in_warehouse_scope(
    row: Mapping,
    scope: Optional[WarehouseScope],
    identity: Optional[CallerIdentityContext],
) -> None:
    if scope is None or scope.mode == WarehouseMode.NONE:
        return
    identity = _require_identity(identity, "warehouse")
    if _warehouse_unrestricted(scope, identity):
        return
    allowed = {str(value) for value in _warehouse_values(scope, identity)}
    actual = row.get(scope.column)
    if actual is None or str(actual) not in allowed:
        logger.warning(
            "scope_violation",
            extra={"scope": "warehouse", "column": scope.column, "user_id": identity.effective_user_id},
        )
        raise ScopeViolation(
            "forbidden_out_of_scope_warehouse",
            error_type="forbidden_out_of_scope_warehouse",
        )


def assert_row_in_scopes(
    row: Mapping,
    *,
    ownership: Optional[OwnershipScope],
    warehouse: Optional[WarehouseScope],
    identity: Optional[CallerIdentityContext],
    policy: ScopePolicy,
) -> None:
    if not policy.enabled:
        return
    assert_row_in_ownership_scope(row, ownership, identity)
    assert_row_in_warehouse_scope(row, warehouse, identity)


__all__ = [
    "ScopePolicy",
    "scope_columns",
    "ownership_predicate",
    "warehouse_predicate",
    "apply_ownership_scope",
    "apply_warehouse_scope",
    "scope_predicates",
    "apply_scopes",
    "assert_row_in_ownership_scope",
    "assert_row_in_warehouse_scope",
    "assert_row_in_scopes",
]
