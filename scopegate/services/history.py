"""
History reconstruction for SCD2-style resources.

Every edit of a logical record inserts a new row sharing the same anchor
value. ``HistoryService.history`` looks up the anchor of one row, pulls all
visible versions for that anchor under the same scope rules as list
queries, then enriches the batch with an actor name, a location name and a
display timestamp. Round-trips run in strict sequence:

    anchor -> count -> versions -> actor lookup -> location lookup
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, select

import scopegate.config as config
from scopegate.context import RequestContext
from scopegate.db import QueryExecutor, table_for
from scopegate.errors import MissingAnchor, RecordNotFound, UsageError, ValidationIssue
from scopegate.registry import ResourceRegistry
from scopegate.services.scope import ScopePolicy, scope_columns, scope_predicates
from scopegate.types import HistoryResult, HistorySpec, ResourceConfig

logger = config.logger

# "Jan 05, 2024 14:30" and similar; ISO strings never start with a month name.
_PRETTY_TIMESTAMP = re.compile(r"^[A-Za-z]{3}\b.*\s\d{1,2}:\d{2}$")
_DISPLAY_FORMAT = "%b %d, %Y %H:%M"


def format_display_timestamp(value: Any, tz_name: Optional[str] = None) -> Optional[str]:
    """Format a stored timestamp as "Mon DD, YYYY HH:MM" (24-hour clock)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        text = value.strip()
        if _PRETTY_TIMESTAMP.match(text):
            return text
        try:
            moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(ZoneInfo(tz_name or config.DISPLAY_TIMEZONE))
    return moment.strftime(_DISPLAY_FORMAT)


def normalize_history_id(record_id: Any) -> str:
    value = str(record_id if record_id is not None else "").strip()
    if not value:
        raise ValidationIssue("id is required", field="id", error_type="required")
    if "|" in value:
        raise ValidationIssue("Invalid id format", field="id", error_type="composite_id")
    if len(value) > config.MAX_RECORD_ID_LENGTH:
        raise ValidationIssue(
            f"id exceeds max length {config.MAX_RECORD_ID_LENGTH}",
            field="id",
            error_type="max_length",
        )
    return value


def resolve_history_limit(limit: Optional[int]) -> int:
    if limit is None:
        return config.HISTORY_LIMIT_DEFAULT
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationIssue("limit must be an integer >= 1", field="limit", error_type="out_of_range")
    return min(limit, config.HISTORY_LIMIT_MAX)


def _first_present(row: dict, columns) -> Optional[Any]:
    for column in columns:
        value = row.get(column)
        if value is not None and value != "":
            return value
    return None


class HistoryService:
    def __init__(
        self,
        registry: ResourceRegistry,
        executor: QueryExecutor,
        *,
        policy: ScopePolicy,
        context: Optional[RequestContext] = None,
    ):
        self._registry = registry
        self._executor = executor
        self._policy = policy
        self._context = context or RequestContext()

    def history(self, resource_key: str, record_id: Any, *, limit: Optional[int] = None) -> HistoryResult:
        """Return every visible version of the record's anchor, newest first."""
        record_id = normalize_history_id(record_id)
        limit = resolve_history_limit(limit)
        resource = self._registry.resolve(resource_key).config
        spec = resource.history
        if spec is None or not spec.enabled:
            raise UsageError(
                f"History not enabled for resource '{resource_key}'",
                error_type="history_not_enabled",
            )

        anchor_value = self._lookup_anchor(resource_key, resource, spec, record_id)
        rows, total = self._query_versions(resource, spec, anchor_value, limit)
        rows = self._enrich(spec, rows)
        return HistoryResult(rows=rows, total=total)

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _lookup_anchor(self, resource_key: str, resource: ResourceConfig, spec: HistorySpec, record_id: str) -> Any:
        anchor = spec.source.anchor_column
        columns = [resource.primary_key, anchor]
        if spec.join_key:
            columns.append(spec.join_key)
        # Views only expose the latest version per anchor; read the base table.
        table = table_for(resource.base_table, columns)
        statement = select(*(table.c[column] for column in table.c.keys())).where(
            table.c[resource.primary_key] == record_id
        )
        self._context.checkpoint("history anchor lookup")
        current = self._executor.fetch_one(statement)
        if current is None:
            raise RecordNotFound(resource_key, record_id)
        anchor_value = current.get(anchor)
        if anchor_value is None:
            logger.warning(
                "history_missing_anchor",
                extra={"resource": resource_key, "record_id": record_id, "anchor_column": anchor},
            )
            raise MissingAnchor(f"Anchor column '{anchor}' is null or missing")
        return anchor_value

    def _history_source(self, resource: ResourceConfig, spec: HistorySpec):
        source_config = resource
        ownership = resource.ownership_scope
        warehouse = resource.warehouse_scope
        if spec.history_resource:
            source_config = self._registry.resolve(spec.history_resource).config
            ownership = source_config.ownership_scope or ownership
            warehouse = source_config.warehouse_scope or warehouse
        if spec.scope is not None:
            ownership = spec.scope.ownership or ownership
            warehouse = spec.scope.warehouse or warehouse
        table_name = spec.source.table_or_view or source_config.base_table
        id_column = spec.source.id_column or source_config.primary_key
        return table_name, id_column, ownership, warehouse

    def _query_versions(self, resource: ResourceConfig, spec: HistorySpec, anchor_value: Any, limit: int):
        table_name, id_column, ownership, warehouse = self._history_source(resource, spec)
        order_by = spec.projection.order_by
        enriched = spec.enriched_fields()

        selected = [column for column in spec.projection.columns if column not in enriched]
        selected += [id_column, spec.source.anchor_column, order_by.column]
        if spec.join_key:
            selected.append(spec.join_key)
        if spec.enrichment.actor:
            selected += list(spec.enrichment.actor.columns)
        selected = list(dict.fromkeys(selected))

        extra = scope_columns(ownership, warehouse) if self._policy.enabled else ()
        table = table_for(table_name, selected + list(extra))
        criteria = [table.c[spec.source.anchor_column] == anchor_value]
        criteria += scope_predicates(
            table,
            ownership=ownership,
            warehouse=warehouse,
            identity=self._context.identity,
            policy=self._policy,
        )

        order_column = table.c[order_by.column]
        statement = (
            select(*(table.c[column] for column in selected))
            .where(*criteria)
            .order_by(
                order_column.desc() if order_by.descending else order_column.asc(),
                table.c[id_column].desc(),
            )
            .limit(limit)
        )
        count_statement = select(func.count()).select_from(table).where(*criteria)

        self._context.checkpoint("history count")
        total = self._executor.scalar(count_statement)
        self._context.checkpoint("history versions")
        rows = self._executor.fetch_all(statement)
        return rows, int(total or 0)

    def _enrich(self, spec: HistorySpec, rows: list[dict]) -> list[dict]:
        if not rows:
            return rows
        actor = spec.enrichment.actor
        location = spec.enrichment.location

        actor_names: dict[str, Any] = {}
        if actor is not None:
            actor_ids = list(dict.fromkeys(
                str(value) for value in (_first_present(row, actor.columns) for row in rows) if value is not None
            ))
            if actor_ids:
                table = table_for(actor.table, (actor.key, actor.label))
                statement = select(table.c[actor.key], table.c[actor.label]).where(
                    table.c[actor.key].in_(actor_ids)
                )
                self._context.checkpoint("history actor lookup")
                for item in self._executor.fetch_all(statement):
                    actor_names[str(item[actor.key])] = item[actor.label]

        location_names: dict[Any, Any] = {}
        if location is not None:
            join_values = list(dict.fromkeys(
                row.get(location.join_key) for row in rows if row.get(location.join_key) is not None
            ))
            if join_values:
                table = table_for(location.table, (location.key, location.label))
                statement = select(table.c[location.key], table.c[location.label]).where(
                    table.c[location.key].in_(join_values)
                )
                self._context.checkpoint("history location lookup")
                for item in self._executor.fetch_all(statement):
                    if item[location.label] is not None:
                        location_names[item[location.key]] = item[location.label]

        order_column = spec.projection.order_by.column
        enriched_rows = []
        for row in rows:
            enriched = dict(row)
            if actor is not None:
                actor_id = _first_present(row, actor.columns)
                enriched[actor.output] = actor_names.get(str(actor_id)) if actor_id is not None else None
            if location is not None:
                enriched[location.output] = location_names.get(row.get(location.join_key))
            enriched[spec.pretty_field] = format_display_timestamp(row.get(order_column))
            enriched_rows.append(enriched)
        return enriched_rows
