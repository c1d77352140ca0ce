from __future__ import annotations

import logging
import threading
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_engine
from app.schemas.grid import GridRowsRequest

from .assembler import QueryAssembler
from .counting import CountCache, CountMode, CountStrategy
from .execution import Executor, SqlAlchemyExecutor, SqlAlchemyStatsProvider, StatsProvider
from .sources import GridSource, SourceRegistry

_LOG = logging.getLogger("app.grid")

_state_lock = threading.Lock()
_registry: SourceRegistry | None = None
_count_cache: CountCache | None = None
_count_cache_built = False


def get_source_registry() -> SourceRegistry:
    global _registry
    with _state_lock:
        if _registry is None:
            _registry = SourceRegistry(reflect_tables=settings.grid_tables_list, engine_factory=get_engine)
        return _registry


def get_count_cache() -> CountCache | None:
    global _count_cache, _count_cache_built
    with _state_lock:
        if not _count_cache_built:
            if settings.GRID_COUNT_CACHE_ENABLED:
                _count_cache = CountCache(
                    ttl_seconds=settings.GRID_COUNT_CACHE_TTL_SECONDS,
                    max_entries=settings.GRID_COUNT_CACHE_MAX_ENTRIES,
                )
            _count_cache_built = True
        return _count_cache


def reset_grid_state_for_tests() -> None:
    global _registry, _count_cache, _count_cache_built
    with _state_lock:
        _registry = None
        _count_cache = None
        _count_cache_built = False


def build_assembler(source: GridSource) -> QueryAssembler:
    return QueryAssembler(
        source,
        pagination_style=settings.GRID_PAGINATION_STYLE,
        case_insensitive_text=settings.GRID_TEXT_MATCH_CASE_INSENSITIVE,
    )


def _serialize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _serialize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bytes, memoryview)):
        return None
    return value


def fetch_page(
    source: GridSource,
    request: GridRowsRequest,
    *,
    executor: Executor,
    stats_provider: StatsProvider | None = None,
    cache: CountCache | None = None,
) -> dict[str, Any]:
    """Run the data query and the count for one page of a grid source.

    The rows statement validates every filter and sort column, so an invalid
    request fails before anything is executed. The count statement reuses the
    same predicate.
    """
    assembler = build_assembler(source)
    rows_query = assembler.compile_rows(request)
    _LOG.debug("grid %s rows query: %s", source.name, rows_query.text)
    mode = CountMode(request.count_mode or settings.GRID_DEFAULT_COUNT_MODE)

    rows = executor.fetch_rows(rows_query)
    counter = CountStrategy(executor, stats_provider, cache)
    total = counter.count(assembler, request, mode)
    return {
        "rows": [_serialize_value(row) for row in rows],
        "total": total.value if total is not None else None,
        "total_exact": total.exact if total is not None else None,
        "start_row": request.start_row,
        "end_row": request.start_row + len(rows),
    }


def query_rows_service(source_name: str, request: GridRowsRequest, db: Session) -> dict[str, Any]:
    if request.page_size > settings.GRID_MAX_PAGE_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"Page size {request.page_size} exceeds the limit of {settings.GRID_MAX_PAGE_SIZE} rows",
        )
    source = get_source_registry().get(source_name)
    return fetch_page(
        source,
        request,
        executor=SqlAlchemyExecutor(db),
        stats_provider=SqlAlchemyStatsProvider(db),
        cache=get_count_cache(),
    )


def list_sources_service() -> dict[str, Any]:
    return {"sources": get_source_registry().names()}


def source_meta_service(source_name: str) -> dict[str, Any]:
    source = get_source_registry().get(source_name)
    return {
        "name": source.name,
        "key": source.key_column,
        "columns": [
            {"name": name, "kind": source.column_kinds.get(name)}
            for name in source.column_names()
        ],
    }
