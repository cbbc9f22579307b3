"""
Relation hydration.

Attaches related-table data onto an already fetched, already scoped batch of
domain rows. Each declared relation costs at most one follow-up query per
pass (two for many-to-many with object resolution), whatever the batch size.
Rows keep their original order; relation data is merged by key.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import select

from scopegate.context import RequestContext
from scopegate.db import QueryExecutor, table_for
from scopegate.types import (
    ManyToMany,
    ManyToOne,
    OnEmptyPolicy,
    OneToMany,
    Relation,
    RelationKind,
    RelationScope,
    ResolveAs,
    ResourceConfig,
    SortSpec,
)


def _distinct(values: Iterable[Any]) -> list:
    return list(dict.fromkeys(value for value in values if value is not None))


def relation_scope(linked: Sequence, policy: Optional[OnEmptyPolicy]) -> RelationScope:
    """Distinguish "explicitly unrestricted" from "no access" for empty links."""
    if linked:
        return RelationScope.RESTRICTED
    if policy == OnEmptyPolicy.ALL:
        return RelationScope.ALL
    return RelationScope.NONE


def sort_children(children: list[dict], order_by: SortSpec) -> list[dict]:
    """Stable per-parent sort; rows missing the column always go last."""
    present = [child for child in children if child.get(order_by.column) is not None]
    missing = [child for child in children if child.get(order_by.column) is None]
    present.sort(key=lambda child: child[order_by.column], reverse=order_by.descending)
    return present + missing


class RelationHydrator:
    def __init__(self, executor: QueryExecutor, context: Optional[RequestContext] = None):
        self._executor = executor
        self._context = context or RequestContext()
        self._handlers = {
            RelationKind.MANY_TO_MANY: self._hydrate_many_to_many,
            RelationKind.ONE_TO_MANY: self._hydrate_one_to_many,
            RelationKind.MANY_TO_ONE: self._hydrate_many_to_one,
        }

    def hydrate(
        self,
        rows: list,
        resource: ResourceConfig,
        relations: Optional[Sequence[Relation]] = None,
    ) -> list:
        """Hydrate ``relations`` (default: those included by default) onto ``rows``."""
        if not rows:
            return rows
        selected = resource.default_relations() if relations is None else tuple(relations)
        if selected:
            parent_ids = _distinct(row.get(resource.primary_key) for row in rows)
            for relation in selected:
                handler = self._handlers.get(relation.kind)
                if handler is None:
                    raise TypeError(f"Unsupported relation kind: {relation.kind!r}")
                handler(rows, relation, resource.primary_key, parent_ids)
        if resource.post_process is not None:
            rows = resource.post_process(rows)
        return rows

    def _fetch(self, statement, step: str) -> list[dict]:
        self._context.checkpoint(step)
        return self._executor.fetch_all(statement)

    def _hydrate_many_to_many(self, rows: list, relation: ManyToMany, primary_key: str, parent_ids: list) -> None:
        links: list[dict] = []
        if parent_ids:
            junction = table_for(relation.via_table, (relation.this_key, relation.that_key))
            statement = select(
                junction.c[relation.this_key],
                junction.c[relation.that_key],
            ).where(junction.c[relation.this_key].in_(parent_ids))
            links = self._fetch(statement, f"relation {relation.name} links")

        linked_by_parent: dict[Any, list] = defaultdict(list)
        for link in links:
            linked_by_parent[link[relation.this_key]].append(link[relation.that_key])

        targets_by_id: dict[Any, dict] = {}
        if relation.resolve_as == ResolveAs.OBJECTS and links:
            target_ids = _distinct(link[relation.that_key] for link in links)
            target = table_for(relation.target_table, relation.target_columns)
            statement = select(*(target.c[column] for column in relation.target_columns)).where(
                target.c[relation.target_key].in_(target_ids)
            )
            for item in self._fetch(statement, f"relation {relation.name} targets"):
                targets_by_id[item[relation.target_key]] = item

        for row in rows:
            linked = linked_by_parent.get(row.get(primary_key), [])
            if relation.resolve_as == ResolveAs.IDS:
                row[relation.name] = sorted(str(value) for value in linked)
            else:
                row[relation.name] = [
                    dict(targets_by_id[value]) for value in linked if value in targets_by_id
                ]
            row[relation.scope_field] = relation_scope(linked, relation.on_empty_policy).value

    def _hydrate_one_to_many(self, rows: list, relation: OneToMany, primary_key: str, parent_ids: list) -> None:
        children: list[dict] = []
        if parent_ids:
            target = table_for(relation.target_table, relation.target_columns)
            statement = select(*(target.c[column] for column in relation.target_columns)).where(
                target.c[relation.foreign_key].in_(parent_ids)
            )
            children = self._fetch(statement, f"relation {relation.name}")

        grouped: dict[Any, list] = defaultdict(list)
        for child in children:
            grouped[child[relation.foreign_key]].append(child)

        for row in rows:
            group = [dict(child) for child in grouped.get(row.get(primary_key), [])]
            # Ordering and the cap are per parent, so both stay client-side.
            if relation.order_by is not None:
                group = sort_children(group, relation.order_by)
            if relation.limit is not None:
                group = group[: relation.limit]
            row[relation.name] = group

    def _hydrate_many_to_one(self, rows: list, relation: ManyToOne, primary_key: str, parent_ids: list) -> None:
        target_ids = _distinct(row.get(relation.local_key) for row in rows)
        parents: dict[Any, dict] = {}
        if target_ids:
            target = table_for(relation.target_table, relation.target_columns)
            statement = select(*(target.c[column] for column in relation.target_columns)).where(
                target.c[relation.target_key].in_(target_ids)
            )
            for item in self._fetch(statement, f"relation {relation.name}"):
                parents[item[relation.target_key]] = item

        for row in rows:
            parent = parents.get(row.get(relation.local_key))
            row[relation.name] = dict(parent) if parent is not None else None
