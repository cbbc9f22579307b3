"""
Generic resource provider.

Turns one ``ResourceConfig`` into list/get/create/update/remove against the
backing store. Reads are scoped before execution, mapped through
``to_domain`` and hydrated; writes are only allowed in privileged mode and
are checked against the caller's scope before any mutation.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy import func, or_, select

import scopegate.config as config
from scopegate.context import RequestContext
from scopegate.db import QueryExecutor, require_identifier, table_for
from scopegate.errors import RecordNotFound, UsageError, ValidationIssue
from scopegate.services.hydration import RelationHydrator
from scopegate.services.scope import (
    ScopePolicy,
    assert_row_in_scopes,
    scope_columns,
    scope_predicates,
)
from scopegate.types import ListParams, OwnershipMode, Paged, ResourceConfig, SortSpec

logger = config.logger

_LIKE_ESCAPE = "\\"


class ExecutionMode(str, Enum):
    PRIVILEGED = "server"
    UNPRIVILEGED = "browser"


def escape_like(value: str) -> str:
    return (
        value.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )


def normalize_record_id(record_id: Any) -> Any:
    if record_id is None:
        raise ValidationIssue("id is required", field="id", error_type="required")
    if isinstance(record_id, str):
        record_id = record_id.strip()
        if not record_id:
            raise ValidationIssue("id is required", field="id", error_type="required")
        if len(record_id) > config.MAX_RECORD_ID_LENGTH:
            raise ValidationIssue(
                f"id exceeds max length {config.MAX_RECORD_ID_LENGTH}",
                field="id",
                error_type="max_length",
            )
    return record_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResourceProvider:
    def __init__(
        self,
        resource: ResourceConfig,
        executor: QueryExecutor,
        *,
        policy: ScopePolicy,
        context: Optional[RequestContext] = None,
        mode: ExecutionMode = ExecutionMode.PRIVILEGED,
        resource_key: Optional[str] = None,
    ):
        self._config = resource
        self._executor = executor
        self._policy = policy
        self._context = context or RequestContext()
        self._mode = ExecutionMode(mode)
        self._key = resource_key or resource.table
        self._hydrator = RelationHydrator(executor, self._context)

    @property
    def config(self) -> ResourceConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def list(self, params: Optional[ListParams] = None) -> Paged:
        """Return one page of scoped, mapped and hydrated rows with an exact total."""
        params = params or ListParams()
        cfg = self._config
        page, page_size = self._validate_pagination(params)
        sort = params.sort or cfg.default_sort
        filters = self._normalize_filters(params.filters)
        if params.sort is not None:
            self._require_queryable(params.sort.column, "sort")
        search = self._normalize_search(params.q)

        if params.active_only and not cfg.active_flag_column:
            raise UsageError(f"Resource '{self._key}' has no active flag; activeOnly is not supported")

        columns = list(cfg.select_columns) + list(filters)
        columns += self._scope_columns()
        if search and cfg.search_columns:
            columns += list(cfg.search_columns)
        if params.active_only:
            columns.append(cfg.active_flag_column)
        if sort is not None:
            columns.append(require_identifier(sort.column, "sort"))
        table = table_for(cfg.table, columns)

        criteria = self._scope_criteria(table)
        if search and cfg.search_columns:
            pattern = f"%{escape_like(search)}%"
            criteria.append(
                or_(*(table.c[column].ilike(pattern, escape=_LIKE_ESCAPE) for column in cfg.search_columns))
            )
        for column, value in filters.items():
            criteria.append(self._filter_clause(table.c[column], value))
        if params.active_only:
            criteria.append(table.c[cfg.active_flag_column] == sa.true())

        statement = select(*(table.c[column] for column in cfg.select_columns)).where(*criteria)
        statement = statement.order_by(*self._ordering(table, sort))
        statement = statement.limit(page_size).offset((page - 1) * page_size)
        count_statement = select(func.count()).select_from(table).where(*criteria)

        self._context.checkpoint("count")
        total = self._executor.scalar(count_statement)
        self._context.checkpoint("list")
        base_rows = self._executor.fetch_all(statement)

        rows = [cfg.to_domain(row) for row in base_rows]
        rows = self._hydrator.hydrate(rows, cfg)
        return Paged(rows=rows, page=page, page_size=page_size, total=int(total or 0))

    def get(self, record_id: Any) -> Optional[Any]:
        """Return one hydrated domain row, or None when it is missing or out of scope."""
        record_id = normalize_record_id(record_id)
        cfg = self._config
        table = table_for(cfg.table, list(cfg.select_columns) + list(self._scope_columns()))
        criteria = [table.c[cfg.primary_key] == record_id] + self._scope_criteria(table)
        statement = select(*(table.c[column] for column in cfg.select_columns)).where(*criteria).limit(1)

        self._context.checkpoint("get")
        row = self._executor.fetch_one(statement)
        if row is None:
            return None
        hydrated = self._hydrator.hydrate([cfg.to_domain(row)], cfg)
        return hydrated[0] if hydrated else None

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, data: Any) -> Any:
        """Insert one row into the write table and return its primary key."""
        self._require_privileged("create")
        cfg = self._config
        payload = self._payload(data)
        if cfg.primary_key not in payload and cfg.primary_key_factory is not None:
            payload[cfg.primary_key] = cfg.primary_key_factory()
        payload = self._guard_new_row(payload)

        table = table_for(cfg.base_table, list(payload) + [cfg.primary_key])
        statement = sa.insert(table).values(payload).returning(table.c[cfg.primary_key])
        self._context.checkpoint("create")
        return self._executor.insert_returning(statement)

    def update(self, record_id: Any, patch: Any) -> None:
        self._require_privileged("update")
        record_id = normalize_record_id(record_id)
        cfg = self._config
        payload = self._payload(patch)
        payload.pop(cfg.primary_key, None)
        if cfg.updated_at_column:
            payload[cfg.updated_at_column] = _utcnow()
        if not payload:
            raise UsageError("update payload is empty")

        self._guard_existing_row(record_id)
        self._guard_changed_scope_columns(payload)

        table = table_for(cfg.base_table, list(payload) + [cfg.primary_key])
        statement = sa.update(table).where(table.c[cfg.primary_key] == record_id).values(payload)
        self._context.checkpoint("update")
        if self._executor.execute(statement) == 0:
            raise RecordNotFound(self._key, record_id)

    def remove(self, record_id: Any) -> None:
        """Soft delete when an active flag is configured, hard delete otherwise."""
        self._require_privileged("remove")
        record_id = normalize_record_id(record_id)
        cfg = self._config
        self._guard_existing_row(record_id)

        if cfg.active_flag_column:
            values = {cfg.active_flag_column: False}
            if cfg.updated_at_column:
                values[cfg.updated_at_column] = _utcnow()
            table = table_for(cfg.base_table, list(values) + [cfg.primary_key])
            statement = sa.update(table).where(table.c[cfg.primary_key] == record_id).values(values)
        else:
            table = table_for(cfg.base_table, [cfg.primary_key])
            statement = sa.delete(table).where(table.c[cfg.primary_key] == record_id)

        self._context.checkpoint("remove")
        if self._executor.execute(statement) == 0:
            raise RecordNotFound(self._key, record_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_privileged(self, operation: str) -> None:
        if self._mode != ExecutionMode.PRIVILEGED:
            raise UsageError(
                f"{operation}() is not allowed in {self._mode.value} mode",
                error_type="privileged_operation",
            )

    def _validate_pagination(self, params: ListParams) -> tuple[int, int]:
        page, page_size = params.page, params.page_size
        if not isinstance(page, int) or isinstance(page, bool) or page < 1:
            raise ValidationIssue("page must be an integer >= 1", field="page", error_type="out_of_range")
        if (
            not isinstance(page_size, int)
            or isinstance(page_size, bool)
            or page_size < 1
            or page_size > config.MAX_PAGE_SIZE
        ):
            raise ValidationIssue(
                f"pageSize must be between 1 and {config.MAX_PAGE_SIZE}",
                field="pageSize",
                error_type="out_of_range",
            )
        return page, page_size

    @staticmethod
    def _normalize_search(q: Optional[str]) -> Optional[str]:
        if q is None:
            return None
        q = str(q).strip()
        if len(q) > config.MAX_SEARCH_LENGTH:
            raise ValidationIssue(
                f"q exceeds max length {config.MAX_SEARCH_LENGTH}",
                field="q",
                error_type="max_length",
            )
        return q or None

    def _normalize_filters(self, filters: Optional[Mapping[str, Any]]) -> dict:
        normalized = {}
        for column, value in (filters or {}).items():
            normalized[self._require_queryable(column, "filter")] = value
        return normalized

    def _require_queryable(self, column: str, what: str) -> str:
        """Filters and sorts may only name columns the resource exposes."""
        column = require_identifier(column, what)
        if column not in self._config.queryable_columns():
            raise ValidationIssue(
                f"Unknown {what} column '{column}' for resource '{self._key}'",
                field=column,
                error_type="unknown_column",
            )
        return column

    @staticmethod
    def _filter_clause(column, value):
        if isinstance(value, (list, tuple, set, frozenset)):
            return column.in_(list(value))
        if value is None:
            return column.is_(None)
        return column == value

    def _ordering(self, table, sort: Optional[SortSpec]) -> list:
        pk = self._config.primary_key
        ordering = []
        if sort is not None:
            column = table.c[sort.column]
            ordering.append(column.desc() if sort.descending else column.asc())
        if sort is None or sort.column != pk:
            # Stable tiebreaker so offset pagination never repeats or skips rows.
            ordering.append(table.c[pk].asc())
        return ordering

    def _scope_columns(self) -> tuple[str, ...]:
        if not self._policy.enabled:
            return ()
        return scope_columns(self._config.ownership_scope, self._config.warehouse_scope)

    def _scope_criteria(self, table) -> list:
        return scope_predicates(
            table,
            ownership=self._config.ownership_scope,
            warehouse=self._config.warehouse_scope,
            identity=self._context.identity,
            policy=self._policy,
        )

    def _payload(self, data: Any) -> dict:
        if data is None:
            raise UsageError("payload is required")
        payload = self._config.to_payload(data)
        for column in payload:
            require_identifier(column, "payload field")
        return payload

    def _guard_new_row(self, payload: dict) -> dict:
        if not self._policy.enabled:
            return payload
        cfg = self._config
        identity = self._context.identity
        ownership = cfg.ownership_scope
        if (
            ownership is not None
            and ownership.mode == OwnershipMode.SELF
            and payload.get(ownership.column) is None
            and identity is not None
            and identity.effective_user_id is not None
        ):
            payload[ownership.column] = identity.effective_user_id
        assert_row_in_scopes(
            payload,
            ownership=cfg.ownership_scope,
            warehouse=cfg.warehouse_scope,
            identity=identity,
            policy=self._policy,
        )
        return payload

    def _guard_existing_row(self, record_id: Any) -> None:
        """Fail closed when the target row is missing or outside the caller's scope."""
        columns = self._scope_columns()
        if not columns:
            return
        cfg = self._config
        table = table_for(cfg.base_table, [cfg.primary_key] + list(columns))
        statement = select(*(table.c[column] for column in table.c.keys())).where(
            table.c[cfg.primary_key] == record_id
        )
        self._context.checkpoint("scope check")
        row = self._executor.fetch_one(statement)
        if row is None:
            raise RecordNotFound(self._key, record_id)
        assert_row_in_scopes(
            row,
            ownership=cfg.ownership_scope,
            warehouse=cfg.warehouse_scope,
            identity=self._context.identity,
            policy=self._policy,
        )

    def _guard_changed_scope_columns(self, payload: dict) -> None:
        """A patch may not move a row out of the caller's scope."""
        cfg = self._config
        if cfg.ownership_scope is not None and cfg.ownership_scope.column in payload:
            assert_row_in_scopes(
                payload,
                ownership=cfg.ownership_scope,
                warehouse=None,
                identity=self._context.identity,
                policy=self._policy,
            )
        warehouse = cfg.warehouse_scope
        if warehouse is not None and warehouse.column and warehouse.column in payload:
            assert_row_in_scopes(
                payload,
                ownership=None,
                warehouse=warehouse,
                identity=self._context.identity,
                policy=self._policy,
            )


def create_server_provider(resource: ResourceConfig, executor: QueryExecutor, **kwargs) -> ResourceProvider:
    return ResourceProvider(resource, executor, mode=ExecutionMode.PRIVILEGED, **kwargs)


def create_read_only_provider(resource: ResourceConfig, executor: QueryExecutor, **kwargs) -> ResourceProvider:
    return ResourceProvider(resource, executor, mode=ExecutionMode.UNPRIVILEGED, **kwargs)
