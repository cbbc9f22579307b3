"""
Tally cards.

Scoped by the denormalized warehouse code column, so callers are matched on
their allowed warehouse codes rather than ids. The change log is attached as
an opt-in one-to-many relation to keep list payloads light.
"""

from __future__ import annotations

import uuid

from scopegate.types import ManyToOne, OneToMany, ResourceConfig, SortSpec, WarehouseScope


def tally_card_to_domain(row: dict) -> dict:
    item_number = row.get("item_number")
    return {
        "id": row["id"],
        "card_uid": row.get("card_uid"),
        "tally_card_number": row["tally_card_number"],
        "warehouse_id": row.get("warehouse_id"),
        "warehouse": row.get("warehouse"),
        "item_number": int(item_number) if item_number is not None else None,
        "note": row.get("note"),
        "is_active": bool(row.get("is_active")),
        "created_at": row.get("created_at"),
    }


_WRITABLE = ("card_uid", "tally_card_number", "warehouse_id", "warehouse", "item_number", "note", "is_active")


def tally_card_from_input(data: dict) -> dict:
    return {column: data[column] for column in _WRITABLE if column in data}


def tally_card_to_row(card: dict) -> dict:
    """List projection used by the tally cards screen."""
    return {
        "id": card["id"],
        "tally_card_number": card["tally_card_number"],
        "warehouse": card["warehouse"],
        "item_number": card["item_number"],
        "note": card["note"],
        "is_active": card["is_active"],
        "created_at": card["created_at"],
    }


TALLY_CARDS = ResourceConfig(
    table="tcm_tally_cards",
    primary_key="id",
    select_columns="id, card_uid, tally_card_number, warehouse_id, warehouse, item_number, note, is_active, created_at",
    search_columns=("tally_card_number", "warehouse", "note"),
    default_sort=SortSpec("tally_card_number"),
    active_flag_column="is_active",
    to_domain=tally_card_to_domain,
    from_input=tally_card_from_input,
    relations=(
        OneToMany(
            name="history",
            target_table="tcm_tally_card_history",
            foreign_key="tally_card_id",
            target_columns=(
                "id", "action", "from_item_number", "to_item_number",
                "from_warehouse", "to_warehouse", "note", "changed_at",
            ),
            order_by=SortSpec("changed_at", True),
        ),
        ManyToOne(
            name="home_warehouse",
            target_table="warehouses",
            target_columns=("id", "code", "name"),
            local_key="warehouse_id",
        ),
    ),
    warehouse_scope=WarehouseScope(column="warehouse"),
    updated_at_column="updated_at",
    primary_key_factory=lambda: str(uuid.uuid4()),
)
