"""
Roles and their warehouse rules.

A role with no warehouse rules is unrestricted, so the relation declares
``OnEmptyPolicy.ALL``; the hydrated ``warehouses_scope`` marker carries that
distinction to consumers.
"""

from __future__ import annotations

import uuid

from scopegate.types import ManyToMany, OnEmptyPolicy, ResolveAs, ResourceConfig, SortSpec


def role_to_domain(row: dict) -> dict:
    return {
        "id": row["id"],
        "role_code": row["role_code"],
        "role_name": row["role_name"],
        "description": row.get("description"),
        "is_active": bool(row.get("is_active")),
        "can_manage_roles": bool(row.get("can_manage_roles")),
        "can_manage_cards": bool(row.get("can_manage_cards")),
        "can_manage_entries": bool(row.get("can_manage_entries")),
    }


_ROLE_FIELDS = (
    "role_code",
    "role_name",
    "description",
    "is_active",
    "can_manage_roles",
    "can_manage_cards",
    "can_manage_entries",
)


def role_from_input(data: dict) -> dict:
    return {column: data[column] for column in _ROLE_FIELDS if column in data}


def derive_assignments(rows: list) -> list:
    """Flatten hydrated warehouse objects into codes and form rows.

    When the relation is hydrated as bare ids there are no codes to derive;
    only the restriction marker is set.
    """
    derived = []
    for row in rows:
        warehouses = [w for w in row.get("warehouses") or [] if isinstance(w, dict)]
        derived.append(dict(
            row,
            warehouse_codes=[warehouse["code"] for warehouse in warehouses],
            assigned=[
                {
                    "warehouse": warehouse["code"],
                    "name": warehouse["name"],
                    "added_at": None,
                    "added_by": None,
                    "note": None,
                }
                for warehouse in warehouses
            ],
            has_warehouse_restrictions=row.get("warehouses_scope") == "RESTRICTED",
        ))
    return derived


ROLES = ResourceConfig(
    table="roles",
    primary_key="id",
    select_columns=(
        "id, role_code, role_name, description, is_active, "
        "can_manage_roles, can_manage_cards, can_manage_entries"
    ),
    search_columns=("role_code", "role_name", "description"),
    default_sort=SortSpec("role_code"),
    active_flag_column="is_active",
    to_domain=role_to_domain,
    from_input=role_from_input,
    relations=(
        ManyToMany(
            name="warehouses",
            via_table="role_warehouse_rules",
            this_key="role_id",
            that_key="warehouse_id",
            target_table="warehouses",
            target_columns=("id", "code", "name"),
            include_by_default=True,
            resolve_as=ResolveAs.OBJECTS,
            on_empty_policy=OnEmptyPolicy.ALL,
        ),
    ),
    post_process=derive_assignments,
    primary_key_factory=lambda: str(uuid.uuid4()),
)
