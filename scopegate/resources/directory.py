"""Warehouse and user directory resources."""

from __future__ import annotations

import uuid

from scopegate.types import ResourceConfig, SortSpec


def _warehouse_to_domain(row: dict) -> dict:
    return {
        "id": row["id"],
        "code": row["code"],
        "name": row["name"],
        "is_active": bool(row.get("is_active")),
    }


def _warehouse_from_input(data: dict) -> dict:
    payload = {column: str(data[column]).strip() for column in ("code", "name") if column in data}
    if "is_active" in data:
        payload["is_active"] = bool(data["is_active"])
    return payload


WAREHOUSES = ResourceConfig(
    table="warehouses",
    primary_key="id",
    select_columns="id, code, name, is_active",
    search_columns=("code", "name"),
    default_sort=SortSpec("code"),
    active_flag_column="is_active",
    to_domain=_warehouse_to_domain,
    from_input=_warehouse_from_input,
    primary_key_factory=lambda: str(uuid.uuid4()),
)


USERS = ResourceConfig(
    table="users",
    primary_key="id",
    select_columns="id, full_name, email, role_family, is_active",
    search_columns=("full_name", "email"),
    default_sort=SortSpec("full_name"),
    active_flag_column="is_active",
    primary_key_factory=lambda: str(uuid.uuid4()),
)
