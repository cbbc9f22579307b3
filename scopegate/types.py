"""
Declarative resource description types.

A ``ResourceConfig`` is built once at startup, registered, and never mutated
afterwards; every nested spec is a frozen dataclass holding tuples.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Mapping, Optional, Sequence, Union

import scopegate.config as config


def parse_columns(columns: Union[str, Sequence[str]]) -> tuple[str, ...]:
    """Normalize "id, name" or ["id", "name"] into ("id", "name")."""
    if isinstance(columns, str):
        parts = columns.split(",")
    else:
        parts = list(columns)
    normalized = tuple(part.strip() for part in parts if part and part.strip())
    if not normalized:
        raise ValueError("column projection must name at least one column")
    return normalized


def _set(instance, name: str, value) -> None:
    object.__setattr__(instance, name, value)


def _unique(values: Sequence[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


# =============================================================================
# Sorting and scoping
# =============================================================================

@dataclass(frozen=True)
class SortSpec:
    column: str
    descending: bool = False

    @staticmethod
    def parse(value: Optional[str]) -> Optional["SortSpec"]:
        """Parse ``column`` / ``-column`` request syntax."""
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        if value.startswith("-"):
            return SortSpec(value[1:].strip(), True)
        return SortSpec(value, False)


class OwnershipMode(str, Enum):
    SELF = "self"
    ROLE_FAMILY = "role_family"


class WarehouseMode(str, Enum):
    COLUMN = "column"
    NONE = "none"


@dataclass(frozen=True)
class OwnershipScope:
    mode: OwnershipMode
    column: str
    bypass_permissions: tuple[str, ...] = ()

    def __post_init__(self):
        _set(self, "mode", OwnershipMode(self.mode))
        _set(self, "bypass_permissions", tuple(self.bypass_permissions))


@dataclass(frozen=True)
class WarehouseScope:
    mode: WarehouseMode = WarehouseMode.COLUMN
    column: Optional[str] = None
    require_binding: bool = False

    def __post_init__(self):
        _set(self, "mode", WarehouseMode(self.mode))
        if self.mode == WarehouseMode.COLUMN and not self.column:
            raise ValueError("warehouse scope mode 'column' requires a column")

    @property
    def uses_ids(self) -> bool:
        column = self.column or ""
        return column == "id" or column.endswith("_id")


# =============================================================================
# Relations (closed set of variants, dispatched on ``kind``)
# =============================================================================

class RelationKind(str, Enum):
    MANY_TO_MANY = "manyToMany"
    ONE_TO_MANY = "oneToMany"
    MANY_TO_ONE = "manyToOne"


class ResolveAs(str, Enum):
    IDS = "ids"
    OBJECTS = "objects"


class OnEmptyPolicy(str, Enum):
    ALL = "ALL"
    NONE = "NONE"
    EMPTY_ARRAY = "EMPTY_ARRAY"


class RelationScope(str, Enum):
    ALL = "ALL"
    NONE = "NONE"
    RESTRICTED = "RESTRICTED"


@dataclass(frozen=True)
class ManyToMany:
    kind: ClassVar[RelationKind] = RelationKind.MANY_TO_MANY

    name: str
    via_table: str
    this_key: str
    that_key: str
    target_table: str
    target_columns: tuple[str, ...]
    target_key: str = "id"
    include_by_default: bool = False
    resolve_as: ResolveAs = ResolveAs.OBJECTS
    on_empty_policy: Optional[OnEmptyPolicy] = None

    def __post_init__(self):
        _set(self, "target_columns", _unique(parse_columns(self.target_columns) + (self.target_key,)))
        _set(self, "resolve_as", ResolveAs(self.resolve_as))
        if self.on_empty_policy is not None:
            _set(self, "on_empty_policy", OnEmptyPolicy(self.on_empty_policy))

    @property
    def scope_field(self) -> str:
        return f"{self.name}_scope"


@dataclass(frozen=True)
class OneToMany:
    kind: ClassVar[RelationKind] = RelationKind.ONE_TO_MANY

    name: str
    target_table: str
    foreign_key: str
    target_columns: tuple[str, ...]
    order_by: Optional[SortSpec] = None
    limit: Optional[int] = None
    include_by_default: bool = False

    def __post_init__(self):
        _set(self, "target_columns", _unique(parse_columns(self.target_columns) + (self.foreign_key,)))
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"relation {self.name}: limit must be >= 0")


@dataclass(frozen=True)
class ManyToOne:
    kind: ClassVar[RelationKind] = RelationKind.MANY_TO_ONE

    name: str
    target_table: str
    target_columns: tuple[str, ...]
    local_key: str
    target_key: str = "id"
    include_by_default: bool = False

    def __post_init__(self):
        _set(self, "target_columns", _unique(parse_columns(self.target_columns) + (self.target_key,)))


Relation = Union[ManyToMany, OneToMany, ManyToOne]


# =============================================================================
# History
# =============================================================================

@dataclass(frozen=True)
class HistorySource:
    anchor_column: str
    table_or_view: Optional[str] = None
    id_column: Optional[str] = None


@dataclass(frozen=True)
class HistoryProjection:
    columns: tuple[str, ...] = ()
    order_by: SortSpec = SortSpec("updated_at", True)

    def __post_init__(self):
        _set(self, "columns", tuple(parse_columns(self.columns)) if self.columns else ())


@dataclass(frozen=True)
class ActorLookup:
    columns: tuple[str, ...] = ("updated_by_user_id", "user_id")
    table: str = "users"
    key: str = "id"
    label: str = "full_name"
    output: str = "full_name"

    def __post_init__(self):
        _set(self, "columns", tuple(self.columns))


@dataclass(frozen=True)
class LocationLookup:
    join_key: str = "card_uid"
    table: str = "tcm_tally_cards"
    key: str = "card_uid"
    label: str = "warehouse"
    output: str = "warehouse"


@dataclass(frozen=True)
class HistoryEnrichment:
    actor: Optional[ActorLookup] = None
    location: Optional[LocationLookup] = None


@dataclass(frozen=True)
class HistoryScope:
    ownership: Optional[OwnershipScope] = None
    warehouse: Optional[WarehouseScope] = None


@dataclass(frozen=True)
class HistorySpec:
    source: HistorySource
    enabled: bool = True
    projection: HistoryProjection = HistoryProjection()
    enrichment: HistoryEnrichment = HistoryEnrichment()
    history_resource: Optional[str] = None
    scope: Optional[HistoryScope] = None

    @property
    def join_key(self) -> Optional[str]:
        location = self.enrichment.location
        return location.join_key if location else None

    @property
    def pretty_field(self) -> str:
        return f"{self.projection.order_by.column}_pretty"

    def enriched_fields(self) -> frozenset[str]:
        fields = {self.pretty_field}
        if self.enrichment.actor:
            fields.add(self.enrichment.actor.output)
        if self.enrichment.location:
            fields.add(self.enrichment.location.output)
        return frozenset(fields)


# =============================================================================
# Resource config
# =============================================================================

Row = dict
Domain = Any


def _identity_row(row: Mapping[str, Any]) -> dict:
    return dict(row)


@dataclass(frozen=True)
class ResourceConfig:
    table: str
    primary_key: str
    select_columns: tuple[str, ...]
    search_columns: tuple[str, ...] = ()
    default_sort: Optional[SortSpec] = None
    active_flag_column: Optional[str] = None
    to_domain: Callable[[Row], Domain] = _identity_row
    from_input: Optional[Callable[[Any], Row]] = None
    relations: tuple[Relation, ...] = ()
    ownership_scope: Optional[OwnershipScope] = None
    warehouse_scope: Optional[WarehouseScope] = None
    history: Optional[HistorySpec] = None
    post_process: Optional[Callable[[list], list]] = None
    write_table: Optional[str] = None
    updated_at_column: Optional[str] = None
    primary_key_factory: Optional[Callable[[], Any]] = None

    def __post_init__(self):
        _set(self, "select_columns", parse_columns(self.select_columns))
        if self.primary_key not in self.select_columns:
            raise ValueError(f"{self.table}: primary key {self.primary_key!r} must be selected")
        _set(self, "search_columns", tuple(self.search_columns))
        _set(self, "relations", tuple(self.relations))
        names = [relation.name for relation in self.relations]
        if len(names) != len(set(names)):
            raise ValueError(f"{self.table}: relation names must be unique")

    @property
    def base_table(self) -> str:
        return self.write_table or self.table

    def queryable_columns(self) -> frozenset[str]:
        columns = set(self.select_columns) | set(self.search_columns)
        if self.active_flag_column:
            columns.add(self.active_flag_column)
        return frozenset(columns)

    def default_relations(self) -> tuple[Relation, ...]:
        return tuple(relation for relation in self.relations if relation.include_by_default)

    def to_payload(self, data: Any) -> Row:
        if self.from_input is not None:
            return dict(self.from_input(data))
        return dict(data)


# =============================================================================
# List contract
# =============================================================================

@dataclass(frozen=True)
class ListParams:
    page: int = 1
    page_size: int = field(default_factory=lambda: config.DEFAULT_PAGE_SIZE)
    q: Optional[str] = None
    filters: Optional[Mapping[str, Any]] = None
    active_only: bool = False
    sort: Optional[SortSpec] = None


@dataclass
class Paged:
    rows: list
    page: int
    page_size: int
    total: int

    def to_dict(self) -> dict:
        return {
            "rows": self.rows,
            "page": self.page,
            "pageSize": self.page_size,
            "total": self.total,
        }


@dataclass
class HistoryResult:
    rows: list
    total: int

    def to_dict(self) -> dict:
        return {"rows": self.rows, "total": self.total}
