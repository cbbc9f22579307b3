"""Warehouse locations, enriched with their warehouse's name and code."""

from __future__ import annotations

import uuid

from scopegate.types import ManyToOne, ResourceConfig, SortSpec, WarehouseScope


def location_from_input(data: dict) -> dict:
    payload = {column: data[column] for column in ("warehouse_id", "is_active") if column in data}
    if "name" in data:
        payload["name"] = str(data["name"]).strip()
    return payload


def attach_warehouse_labels(rows: list) -> list:
    for row in rows:
        warehouse = row.get("warehouse") or {}
        row["warehouse_name"] = warehouse.get("name")
        row["warehouse_code"] = warehouse.get("code")
    return rows


WAREHOUSE_LOCATIONS = ResourceConfig(
    table="warehouse_locations",
    primary_key="id",
    select_columns="id, warehouse_id, name, is_active, created_at, updated_at",
    search_columns=("name",),
    default_sort=SortSpec("name"),
    active_flag_column="is_active",
    from_input=location_from_input,
    relations=(
        ManyToOne(
            name="warehouse",
            target_table="warehouses",
            target_columns=("id", "code", "name"),
            local_key="warehouse_id",
            include_by_default=True,
        ),
    ),
    warehouse_scope=WarehouseScope(column="warehouse_id"),
    post_process=attach_warehouse_labels,
    updated_at_column="updated_at",
    primary_key_factory=lambda: str(uuid.uuid4()),
)
