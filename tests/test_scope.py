import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest
from sqlalchemy import select

from scopegate.context import CallerIdentityContext
from scopegate.db import table_for
from scopegate.errors import ScopeConfigurationError, ScopeViolation
from scopegate.services.scope import (
    ScopePolicy,
    apply_ownership_scope,
    apply_scopes,
    apply_warehouse_scope,
    assert_row_in_scopes,
    ownership_predicate,
    scope_predicates,
    warehouse_predicate,
)
from scopegate.types import OwnershipMode, OwnershipScope, WarehouseMode, WarehouseScope


ENTRIES = table_for("tcm_user_tally_card_entries", ["id", "role_family", "warehouse_id"])
OWNERSHIP = OwnershipScope(
    mode=OwnershipMode.ROLE_FAMILY,
    column="role_family",
    bypass_permissions=("entries:read:any",),
)
WAREHOUSE = WarehouseScope(column="warehouse_id")


def _ids(executor, statement):
    return sorted(row["id"] for row in executor.fetch_all(statement))


def test_scope_application_order_does_not_matter(executor, make_identity):
    identities = [
        make_identity(),
        make_identity(allowed_warehouse_ids=["w1", "w2"]),
        make_identity(role_family="admins", allowed_warehouse_ids=["w2"]),
        make_identity(permissions=["entries:read:any"], allowed_warehouse_ids=["w2"]),
        make_identity(can_see_all_warehouses=True),
    ]
    base = select(ENTRIES.c.id)
    for identity in identities:
        ownership_first = apply_warehouse_scope(
            apply_ownership_scope(base, ENTRIES, OWNERSHIP, identity), ENTRIES, WAREHOUSE, identity
        )
        warehouse_first = apply_ownership_scope(
            apply_warehouse_scope(base, ENTRIES, WAREHOUSE, identity), ENTRIES, OWNERSHIP, identity
        )
        assert _ids(executor, ownership_first) == _ids(executor, warehouse_first)


def test_scopes_are_anded(executor, make_identity):
    identity = make_identity(allowed_warehouse_ids=["w2"])
    statement = apply_scopes(
        select(ENTRIES.c.id),
        ENTRIES,
        ownership=OWNERSHIP,
        warehouse=WAREHOUSE,
        identity=identity,
        policy=ScopePolicy.enforcing(),
    )
    assert _ids(executor, statement) == ["e-a2-1", "e-a2-2", "e-a2-3"]

    other_family = make_identity(role_family="admins", allowed_warehouse_ids=["w2"])
    statement = apply_scopes(
        select(ENTRIES.c.id),
        ENTRIES,
        ownership=OWNERSHIP,
        warehouse=WAREHOUSE,
        identity=other_family,
        policy=ScopePolicy.enforcing(),
    )
    assert _ids(executor, statement) == []


def test_unscoped_resource_is_unrestricted():
    assert ownership_predicate(ENTRIES, None, None) is None
    assert warehouse_predicate(ENTRIES, None, None) is None
    assert warehouse_predicate(ENTRIES, WarehouseScope(mode=WarehouseMode.NONE), None) is None


def test_warehouse_scope_fails_closed_without_allow_lists():
    identity = CallerIdentityContext.from_values(effective_user_id="u2", role_family="pickers")
    with pytest.raises(ScopeConfigurationError):
        warehouse_predicate(ENTRIES, WAREHOUSE, identity)

    cards = table_for("tcm_tally_cards", ["id", "warehouse"])
    with pytest.raises(ScopeConfigurationError):
        warehouse_predicate(cards, WarehouseScope(column="warehouse"), identity)


def test_warehouse_scope_does_not_substitute_codes_for_ids():
    identity = CallerIdentityContext.from_values(allowed_warehouse_codes=["RTZ"])
    with pytest.raises(ScopeConfigurationError):
        warehouse_predicate(ENTRIES, WAREHOUSE, identity)


def test_code_column_uses_codes_and_legacy_alias(executor):
    cards = table_for("tcm_tally_cards", ["id", "warehouse"])
    scope = WarehouseScope(column="warehouse")
    for identity in (
        CallerIdentityContext.from_values(allowed_warehouse_codes=["RTZ"]),
        CallerIdentityContext.from_values(allowed_warehouses=["RTZ"]),
    ):
        statement = apply_warehouse_scope(select(cards.c.id), cards, scope, identity)
        assert _ids(executor, statement) == ["tc1"]


def test_empty_allow_list_is_zero_rows_not_an_error(executor):
    identity = CallerIdentityContext.from_values(allowed_warehouse_ids=[])
    statement = apply_warehouse_scope(select(ENTRIES.c.id), ENTRIES, WAREHOUSE, identity)
    assert _ids(executor, statement) == []


def test_all_warehouses_and_required_binding(make_identity):
    identity = make_identity(can_see_all_warehouses=True)
    assert warehouse_predicate(ENTRIES, WAREHOUSE, identity) is None

    bound = WarehouseScope(column="warehouse_id", require_binding=True)
    assert warehouse_predicate(ENTRIES, bound, identity) is not None


def test_ownership_requires_caller_values(make_identity):
    with pytest.raises(ScopeConfigurationError):
        ownership_predicate(ENTRIES, OWNERSHIP, make_identity(role_family=None))

    self_scope = OwnershipScope(mode=OwnershipMode.SELF, column="updated_by_user_id")
    with pytest.raises(ScopeConfigurationError):
        ownership_predicate(ENTRIES, self_scope, make_identity(effective_user_id=None))


def test_missing_caller_values_fail_before_column_lookup(make_identity):
    # the scope columns are not part of this table clause
    bare = table_for("tcm_user_tally_card_entries", ["id"])
    with pytest.raises(ScopeConfigurationError):
        ownership_predicate(bare, OWNERSHIP, make_identity(role_family=None))
    with pytest.raises(ScopeConfigurationError):
        warehouse_predicate(bare, WAREHOUSE, make_identity(allowed_warehouse_ids=None))


def test_bypass_permission_skips_ownership(make_identity):
    identity = make_identity(role_family=None, permissions=["entries:read:any"])
    assert ownership_predicate(ENTRIES, OWNERSHIP, identity) is None


def test_declared_scope_without_identity_fails_closed():
    with pytest.raises(ScopeConfigurationError):
        scope_predicates(
            ENTRIES,
            ownership=None,
            warehouse=WAREHOUSE,
            identity=None,
            policy=ScopePolicy.enforcing(),
        )


def test_disabled_policy_is_passthrough():
    policy = ScopePolicy.disabled("nightly stock reconciliation job")
    assert not policy.enabled
    assert scope_predicates(
        ENTRIES,
        ownership=OWNERSHIP,
        warehouse=WAREHOUSE,
        identity=None,
        policy=policy,
    ) == []


def test_disabling_requires_reason():
    with pytest.raises(ValueError):
        ScopePolicy.disabled("  ")


def test_row_guards(make_identity):
    identity = make_identity()
    policy = ScopePolicy.enforcing()
    assert_row_in_scopes(
        {"role_family": "pickers", "warehouse_id": "w1"},
        ownership=OWNERSHIP,
        warehouse=WAREHOUSE,
        identity=identity,
        policy=policy,
    )

    with pytest.raises(ScopeViolation) as excinfo:
        assert_row_in_scopes(
            {"role_family": "pickers", "warehouse_id": "w2"},
            ownership=OWNERSHIP,
            warehouse=WAREHOUSE,
            identity=identity,
            policy=policy,
        )
    assert excinfo.value.error_type == "forbidden_out_of_scope_warehouse"

    with pytest.raises(ScopeViolation) as excinfo:
        assert_row_in_scopes(
            {"role_family": "admins", "warehouse_id": "w1"},
            ownership=OWNERSHIP,
            warehouse=WAREHOUSE,
            identity=identity,
            policy=policy,
        )
    assert excinfo.value.error_type == "forbidden_out_of_scope_owner"

    with pytest.raises(ScopeViolation):
        assert_row_in_scopes(
            {"role_family": "pickers"},
            ownership=OWNERSHIP,
            warehouse=WAREHOUSE,
            identity=identity,
            policy=policy,
        )
