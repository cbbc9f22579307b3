"""
Generic resource endpoints.

One set of routes serves every registered resource: list, get, create,
update, remove and SCD2 history. Handlers are sync so blocking database
calls run in the threadpool.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Request

from scopegate.context import RequestContext
from scopegate.db import QueryExecutor
from scopegate.errors import RecordNotFound, ValidationIssue
from scopegate.registry import ResourceEntry, ResourceRegistry
from scopegate.services.history import HistoryService
from scopegate.services.provider import ResourceProvider
from scopegate.services.scope import ScopePolicy
from scopegate.types import ListParams, SortSpec
from app.deps import get_executor, get_policy, get_registry, get_request_context


router = APIRouter(prefix="/api")

_FILTER_PARAM = re.compile(r"^filters\[([^\]]+)\]$")
_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_int(value: Optional[str], field: str, default: Optional[int]) -> Optional[int]:
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValidationIssue(f"{field} must be an integer", field=field, error_type="not_an_integer")


def _parse_bool(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in _TRUE_VALUES


def _filter_value(value: str) -> Any:
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered == "null":
        return None
    return value


def parse_filters(request: Request) -> dict:
    """Collect ``filters[col]=value`` params; repeated keys become an IN list."""
    collected: dict[str, list] = {}
    for key, value in request.query_params.multi_items():
        match = _FILTER_PARAM.match(key)
        if match:
            collected.setdefault(match.group(1), []).append(_filter_value(value))
    return {column: values[0] if len(values) == 1 else values for column, values in collected.items()}


def _provider(
    entry: ResourceEntry,
    executor: QueryExecutor,
    policy: ScopePolicy,
    context: RequestContext,
) -> ResourceProvider:
    return ResourceProvider(
        entry.config,
        executor,
        policy=policy,
        context=context,
        resource_key=entry.key,
    )


@router.get("/resources/{resource}/{record_id}/history")
def record_history(
    resource: str,
    record_id: str,
    limit: Optional[str] = None,
    registry: ResourceRegistry = Depends(get_registry),
    executor: QueryExecutor = Depends(get_executor),
    policy: ScopePolicy = Depends(get_policy),
    context: RequestContext = Depends(get_request_context),
):
    """All visible versions of one SCD2 record, newest first."""
    service = HistoryService(registry, executor, policy=policy, context=context)
    result = service.history(resource, record_id, limit=_parse_int(limit, "limit", None))
    return result.to_dict()


@router.get("/{resource}")
def list_resource(
    resource: str,
    request: Request,
    page: Optional[str] = None,
    pageSize: Optional[str] = None,
    q: Optional[str] = None,
    sort: Optional[str] = None,
    activeOnly: Optional[str] = None,
    raw: Optional[str] = None,
    registry: ResourceRegistry = Depends(get_registry),
    executor: QueryExecutor = Depends(get_executor),
    policy: ScopePolicy = Depends(get_policy),
    context: RequestContext = Depends(get_request_context),
):
    entry = registry.resolve(resource)
    params = ListParams(
        page=_parse_int(page, "page", 1),
        page_size=_parse_int(pageSize, "pageSize", ListParams().page_size),
        q=q,
        filters=parse_filters(request),
        active_only=_parse_bool(activeOnly),
        sort=SortSpec.parse(sort),
    )
    want_raw = _parse_bool(raw)
    result = _provider(entry, executor, policy, context).list(params)
    body = result.to_dict()
    body["rows"] = [entry.project(row, raw=want_raw) for row in result.rows]
    body["resource"] = entry.key
    body["raw"] = want_raw and entry.allow_raw
    return body


@router.get("/{resource}/{record_id}")
def get_resource(
    resource: str,
    record_id: str,
    raw: Optional[str] = None,
    registry: ResourceRegistry = Depends(get_registry),
    executor: QueryExecutor = Depends(get_executor),
    policy: ScopePolicy = Depends(get_policy),
    context: RequestContext = Depends(get_request_context),
):
    entry = registry.resolve(resource)
    row = _provider(entry, executor, policy, context).get(record_id)
    if row is None:
        raise RecordNotFound(entry.key, record_id)
    return {"row": entry.project(row, raw=_parse_bool(raw))}


@router.post("/{resource}", status_code=201)
def create_resource(
    resource: str,
    payload: dict = Body(...),
    registry: ResourceRegistry = Depends(get_registry),
    executor: QueryExecutor = Depends(get_executor),
    policy: ScopePolicy = Depends(get_policy),
    context: RequestContext = Depends(get_request_context),
):
    entry = registry.resolve(resource)
    new_id = _provider(entry, executor, policy, context).create(payload)
    return {"id": new_id}


@router.patch("/{resource}/{record_id}")
def update_resource(
    resource: str,
    record_id: str,
    payload: dict = Body(...),
    registry: ResourceRegistry = Depends(get_registry),
    executor: QueryExecutor = Depends(get_executor),
    policy: ScopePolicy = Depends(get_policy),
    context: RequestContext = Depends(get_request_context),
):
    entry = registry.resolve(resource)
    provider = _provider(entry, executor, policy, context)
    provider.update(record_id, payload)
    row = provider.get(record_id)
    return {"row": entry.project(row) if row is not None else None}


@router.delete("/{resource}/{record_id}")
def delete_resource(
    resource: str,
    record_id: str,
    registry: ResourceRegistry = Depends(get_registry),
    executor: QueryExecutor = Depends(get_executor),
    policy: ScopePolicy = Depends(get_policy),
    context: RequestContext = Depends(get_request_context),
):
    entry = registry.resolve(resource)
    _provider(entry, executor, policy, context).remove(record_id)
    return {"success": True}
