"""Declared resources and the default registry."""

from scopegate.registry import ResourceEntry, ResourceRegistry
from scopegate.resources.directory import USERS, WAREHOUSES
from scopegate.resources.roles import ROLES
from scopegate.resources.tally_cards import TALLY_CARDS, tally_card_to_row
from scopegate.resources.user_tally_card_entries import USER_TALLY_CARD_ENTRIES
from scopegate.resources.warehouse_locations import WAREHOUSE_LOCATIONS
from scopegate.resources.widgets import WIDGETS

DEFAULT_ALIASES = {
    "stock-adjustments": "tcm_user_tally_card_entries",
}


def build_default_registry() -> ResourceRegistry:
    return ResourceRegistry(
        [
            ResourceEntry("tally_cards", TALLY_CARDS, to_row=tally_card_to_row, allow_raw=True),
            ResourceEntry("roles", ROLES),
            ResourceEntry("warehouse_locations", WAREHOUSE_LOCATIONS),
            ResourceEntry("tcm_user_tally_card_entries", USER_TALLY_CARD_ENTRIES),
            ResourceEntry("widgets", WIDGETS),
            ResourceEntry("warehouses", WAREHOUSES),
            ResourceEntry("users", USERS),
        ],
        aliases=DEFAULT_ALIASES,
    )


__all__ = [
    "DEFAULT_ALIASES",
    "build_default_registry",
]
