"""Widgets: the minimal warehouse-scoped resource."""

from __future__ import annotations

import uuid

from scopegate.types import ResourceConfig, SortSpec, WarehouseScope


def widget_to_domain(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "warehouse_id": row.get("warehouse_id"),
        "owner_id": row.get("owner_id"),
        "is_active": bool(row.get("is_active")),
        "updated_at": row.get("updated_at"),
    }


def widget_from_input(data: dict) -> dict:
    payload = {}
    if "name" in data:
        payload["name"] = str(data["name"]).strip()
    for column in ("warehouse_id", "owner_id", "is_active"):
        if column in data:
            payload[column] = data[column]
    return payload


WIDGETS = ResourceConfig(
    table="widgets",
    primary_key="id",
    select_columns="id, name, warehouse_id, owner_id, is_active, updated_at",
    search_columns=("name",),
    default_sort=SortSpec("name"),
    active_flag_column="is_active",
    to_domain=widget_to_domain,
    from_input=widget_from_input,
    warehouse_scope=WarehouseScope(column="warehouse_id"),
    updated_at_column="updated_at",
    primary_key_factory=lambda: str(uuid.uuid4()),
)
