from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from app.schemas.grid import PageRequest, SortSpec

from .conditions import ConditionBuilder, ParamAccumulator, Predicate
from .sources import ALL_COLUMNS, GridSource

LIMIT_OFFSET = "limit_offset"
OFFSET_FETCH = "offset_fetch"
PAGINATION_STYLES = (LIMIT_OFFSET, OFFSET_FETCH)

SUBQUERY_ALIAS = "grid_source"


@dataclass(frozen=True)
class CompiledQuery:
    """SQL text with named placeholders and the values bound to them, in order."""

    text: str
    parameters: tuple[tuple[str, Any], ...] = ()


class QueryAssembler:
    """Builds the data and count statements for one grid source.

    Holds only read-only configuration, so one instance can serve concurrent
    requests.
    """

    def __init__(
        self,
        source: GridSource,
        *,
        pagination_style: str = LIMIT_OFFSET,
        case_insensitive_text: bool = True,
    ):
        if pagination_style not in PAGINATION_STYLES:
            raise ValueError(f"Unknown pagination style {pagination_style!r}")
        self.source = source
        self.pagination_style = pagination_style
        self.mapper = source.mapper()
        self.conditions = ConditionBuilder(self.mapper, case_insensitive_text=case_insensitive_text)

    def build_predicate(self, request: PageRequest, params: ParamAccumulator | None = None) -> Predicate:
        return self.conditions.build(request.filters, params)

    def compile_rows(self, request: PageRequest) -> CompiledQuery:
        params = ParamAccumulator()
        predicate = self.build_predicate(request, params)
        order_by = self.order_by(request.sort)
        parts = [f"SELECT {self.projection()}", f"FROM {self.from_clause()}"]
        if not predicate.is_empty:
            parts.append(f"WHERE {predicate.text}")
        parts.append(f"ORDER BY {order_by}")
        parts.append(self._pagination(request, params))
        return CompiledQuery(" ".join(parts), params.parameters)

    def compile_count(self, request: PageRequest) -> CompiledQuery:
        params = ParamAccumulator()
        predicate = self.build_predicate(request, params)
        parts = ["SELECT COUNT(*)", f"FROM {self.from_clause()}"]
        if not predicate.is_empty:
            parts.append(f"WHERE {predicate.text}")
        return CompiledQuery(" ".join(parts), params.parameters)

    def projection(self) -> str:
        if self.source.projection is None:
            return ALL_COLUMNS
        columns = []
        for logical in self.source.projection:
            physical = self.mapper.resolve(logical)
            columns.append(physical if physical == logical else f"{physical} AS {logical}")
        return ", ".join(columns)

    def from_clause(self) -> str:
        if self.source.table is not None:
            return self.source.table
        return f"({self.source.subquery.strip()}) AS {SUBQUERY_ALIAS}"

    def order_by(self, sort: Iterable[SortSpec]) -> str:
        """Map the sort through the column mapper and append the key column.

        Without a unique last sort column equal rows may come back in any order,
        which makes consecutive pages overlap or skip rows.
        """
        key = self.source.key_physical
        seen: set[str] = set()
        terms = []
        for spec in sort:
            physical = self.mapper.resolve(spec.column)
            if physical in seen:
                continue
            seen.add(physical)
            terms.append(f"{physical} {'DESC' if spec.direction == 'desc' else 'ASC'}")
        if key not in seen:
            terms.append(f"{key} ASC")
        return ", ".join(terms)

    def _pagination(self, request: PageRequest, params: ParamAccumulator) -> str:
        if self.pagination_style == OFFSET_FETCH:
            offset = params.add(request.start_row)
            return f"OFFSET {offset} ROWS FETCH NEXT {params.add(request.page_size)} ROWS ONLY"
        limit = params.add(request.page_size)
        return f"LIMIT {limit} OFFSET {params.add(request.start_row)}"
