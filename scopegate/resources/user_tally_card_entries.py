"""
Stock adjustments (user tally card entries).

Reads go through ``v_tcm_user_tally_card_entries``, which exposes only the
latest version per card. Writes insert into the SCD2 base table, and history
reads every version sharing the same ``card_uid``.
"""

from __future__ import annotations

import uuid

from scopegate.types import (
    ActorLookup,
    HistoryEnrichment,
    HistoryProjection,
    HistorySource,
    HistorySpec,
    LocationLookup,
    OwnershipMode,
    OwnershipScope,
    ResourceConfig,
    SortSpec,
    WarehouseScope,
)


_PASSTHROUGH = (
    "tally_card_number",
    "card_uid",
    "location",
    "note",
    "reason_code",
    "multi_location",
    "role_family",
    "warehouse_id",
)


def entry_from_input(data: dict) -> dict:
    payload = {column: data[column] for column in _PASSTHROUGH if column in data}
    # Callers send the updater as user_id; the base table stores updated_by_user_id.
    if "user_id" in data:
        payload["updated_by_user_id"] = data["user_id"]
    if "qty" in data:
        payload["qty"] = None if data["qty"] is None else int(data["qty"])
    return payload


USER_TALLY_CARD_ENTRIES = ResourceConfig(
    table="v_tcm_user_tally_card_entries",
    write_table="tcm_user_tally_card_entries",
    primary_key="id",
    select_columns=(
        "id, user_id, full_name, role_family, tally_card_number, card_uid, qty, "
        "location, note, reason_code, multi_location, updated_at, warehouse_id, warehouse"
    ),
    search_columns=("tally_card_number", "location", "note"),
    default_sort=SortSpec("updated_at", True),
    from_input=entry_from_input,
    ownership_scope=OwnershipScope(
        mode=OwnershipMode.ROLE_FAMILY,
        column="role_family",
        bypass_permissions=("entries:read:any", "admin:read:any"),
    ),
    warehouse_scope=WarehouseScope(column="warehouse_id"),
    history=HistorySpec(
        source=HistorySource(anchor_column="card_uid"),
        projection=HistoryProjection(
            columns=(
                "updated_at", "updated_at_pretty", "role_family", "updated_by_user_id",
                "full_name", "qty", "location", "note", "warehouse",
            ),
            order_by=SortSpec("updated_at", True),
        ),
        enrichment=HistoryEnrichment(actor=ActorLookup(), location=LocationLookup()),
    ),
    updated_at_column="updated_at",
    primary_key_factory=lambda: str(uuid.uuid4()),
)
