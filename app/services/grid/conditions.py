"""WHERE clause construction for grid filters.

Filter values never reach the SQL text: every value slot is a named placeholder
paired with the typed value in a `ParamAccumulator`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from app.schemas.grid import ColumnFilter

from . import kinds
from .columns import ColumnMapper
from .errors import MalformedFilterSpec
from .kinds import KindHandler, strategy_for

LIKE_ESCAPE = "!"

_COMPARISON_SQL = {
    kinds.EQUALS: "=",
    kinds.NOT_EQUAL: "<>",
    kinds.GREATER_THAN: ">",
    kinds.GREATER_THAN_OR_EQUAL: ">=",
    kinds.LESS_THAN: "<",
    kinds.LESS_THAN_OR_EQUAL: "<=",
}


class ParamAccumulator:
    """Collects bound values and hands out their placeholders (`:p1`, `:p2`, ...)."""

    def __init__(self, prefix: str = "p"):
        self.prefix = prefix
        self._params: list[tuple[str, Any]] = []

    def __len__(self) -> int:
        return len(self._params)

    def add(self, value: Any) -> str:
        name = f"{self.prefix}{len(self._params) + 1}"
        self._params.append((name, value))
        return f":{name}"

    @property
    def parameters(self) -> tuple[tuple[str, Any], ...]:
        return tuple(self._params)


@dataclass(frozen=True)
class Predicate:
    text: str | None
    parameters: tuple[tuple[str, Any], ...] = ()

    @property
    def is_empty(self) -> bool:
        return self.text is None


@dataclass(frozen=True)
class _ResolvedFilter:
    column: str
    physical: str
    handler: KindHandler
    operator: str
    values: tuple[Any, ...]


def escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


class ConditionBuilder:
    def __init__(self, mapper: ColumnMapper, *, case_insensitive_text: bool = True):
        self.mapper = mapper
        self.case_insensitive_text = case_insensitive_text

    def build(self, filters: Mapping[str, ColumnFilter], params: ParamAccumulator | None = None) -> Predicate:
        """Validate every filter, then AND the per-column predicates together.

        Columns are visited in sorted order so equal filter maps always produce
        the same text. Nothing is emitted unless the whole map is valid.
        """
        params = params if params is not None else ParamAccumulator()
        resolved = [self._resolve(column, spec) for column, spec in sorted(filters.items())]
        if not resolved:
            return Predicate(None, ())
        first_param = len(params)
        fragments = [self._emit(item, params) for item in resolved]
        return Predicate(" AND ".join(fragments), params.parameters[first_param:])

    def _resolve(self, column: str, spec: ColumnFilter) -> _ResolvedFilter:
        physical = self.mapper.resolve(column)
        handler = strategy_for(spec.data_kind, column)
        op = spec.operator
        if op not in kinds.ALL_OPERATORS:
            raise MalformedFilterSpec(column, f"unknown operator {op!r}")
        if op not in handler.operators:
            raise MalformedFilterSpec(column, f"operator {op!r} is not supported for {handler.kind} columns")
        if spec.value is not None and spec.values is not None:
            raise MalformedFilterSpec(column, "both value and values are set")
        if spec.value_to is not None and op != kinds.IN_RANGE:
            raise MalformedFilterSpec(column, f"valueTo is only allowed with inRange, not {op!r}")
        if spec.values is not None and op not in kinds.LIST_OPERATORS:
            raise MalformedFilterSpec(column, f"values is only allowed with in/notIn, not {op!r}")

        if op in kinds.BLANK_OPERATORS:
            if spec.value is not None:
                raise MalformedFilterSpec(column, f"{op} takes no value")
            values: tuple[Any, ...] = ()
        elif op in kinds.LIST_OPERATORS:
            if not spec.values:
                raise MalformedFilterSpec(column, f"{op} requires a non-empty values list")
            values = tuple(handler.validate(column, raw) for raw in spec.values)
        elif op == kinds.IN_RANGE:
            if spec.value is None or spec.value_to is None:
                raise MalformedFilterSpec(column, "inRange requires both value and valueTo")
            low = handler.validate(column, spec.value)
            high = handler.validate(column, spec.value_to)
            try:
                reversed_bounds = low > high
            except TypeError:
                raise MalformedFilterSpec(column, "inRange bounds are not comparable") from None
            if reversed_bounds:
                raise MalformedFilterSpec(column, "inRange requires value <= valueTo")
            values = (low, high)
        else:
            if spec.value is None:
                raise MalformedFilterSpec(column, f"{op} requires a value")
            values = (handler.validate(column, spec.value),)
        return _ResolvedFilter(column, physical, handler, op, values)

    def _emit(self, item: _ResolvedFilter, params: ParamAccumulator) -> str:
        col = item.physical
        op = item.operator
        handler = item.handler

        if op == kinds.BLANK:
            return handler.blank_predicate(col)
        if op == kinds.NOT_BLANK:
            return f"NOT {_parenthesize(handler.blank_predicate(col))}"
        if op in kinds.LIST_OPERATORS:
            placeholders = ", ".join(params.add(handler.render(v)) for v in item.values)
            keyword = "IN" if op == kinds.IN else "NOT IN"
            return f"{col} {keyword} ({placeholders})"
        if op == kinds.IN_RANGE:
            low, high = item.values
            return f"{col} BETWEEN {params.add(handler.render(low))} AND {params.add(handler.render(high))}"
        if op in kinds.PATTERN_OPERATORS:
            return self._emit_pattern(col, op, handler.render(item.values[0]), params)
        return f"{col} {_COMPARISON_SQL[op]} {params.add(handler.render(item.values[0]))}"

    def _emit_pattern(self, col: str, op: str, value: str, params: ParamAccumulator) -> str:
        escaped = escape_like(value)
        if op == kinds.STARTS_WITH:
            pattern = f"{escaped}%"
        elif op == kinds.ENDS_WITH:
            pattern = f"%{escaped}"
        else:
            pattern = f"%{escaped}%"
        placeholder = params.add(pattern)
        target = col
        if self.case_insensitive_text:
            # Column and pattern are folded by the same SQL function.
            target = f"LOWER({col})"
            placeholder = f"LOWER({placeholder})"
        keyword = "NOT LIKE" if op == kinds.NOT_CONTAINS else "LIKE"
        return f"{target} {keyword} {placeholder} ESCAPE '{LIKE_ESCAPE}'"


def _parenthesize(fragment: str) -> str:
    if fragment.startswith("(") and fragment.endswith(")"):
        return fragment
    return f"({fragment})"
