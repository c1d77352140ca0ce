from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Mapping

from sqlalchemy import MetaData, Table
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError
from sqlalchemy.sql.sqltypes import Boolean, Date, DateTime, Float, Integer, Numeric

from . import kinds
from .columns import ColumnMapper, is_physical_identifier
from .errors import UnknownSource

_LOG = logging.getLogger("app.grid")

ALL_COLUMNS = "*"


@dataclass(frozen=True)
class GridSource:
    """A table, view or sub-query that grid requests can page over.

    `columns` maps logical (grid) column names to physical ones and
    `key_column` is the unique column appended to every ORDER BY.
    `column_kinds` optionally records the data kind of each logical column.
    """

    name: str
    key_column: str
    table: str | None = None
    subquery: str | None = None
    columns: Mapping[str, str] = field(default_factory=dict)
    projection: tuple[str, ...] | None = None
    column_kinds: Mapping[str, str] = field(default_factory=dict)
    strict: bool = False

    def __post_init__(self):
        if (self.table is None) == (self.subquery is None):
            raise ValueError(f"Grid source {self.name!r} needs exactly one of table or subquery")
        if self.table is not None and not is_physical_identifier(self.table):
            raise ValueError(f"Invalid table identifier {self.table!r}")
        if self.subquery is not None and not self.subquery.strip():
            raise ValueError(f"Grid source {self.name!r} has an empty subquery")
        for logical, kind in self.column_kinds.items():
            if kind not in kinds.DATA_KINDS:
                raise ValueError(f"Unknown data kind {kind!r} for column {logical!r}")
        if self.projection is not None:
            object.__setattr__(self, "projection", tuple(self.projection))
        # Fails early on an invalid mapping or key column.
        self.mapper().resolve(self.key_column)

    def mapper(self) -> ColumnMapper:
        return ColumnMapper(self.columns, strict=self.strict)

    @property
    def key_physical(self) -> str:
        return self.mapper().resolve(self.key_column)

    def column_names(self) -> list[str]:
        if self.projection is not None:
            return list(self.projection)
        return list(self.columns)


def column_kind(column: Any) -> str:
    col_type = column.type
    if isinstance(col_type, Boolean):
        return kinds.BOOLEAN
    if isinstance(col_type, Integer):
        return kinds.NUMBER
    if isinstance(col_type, Float):
        return kinds.NUMBER
    if isinstance(col_type, Numeric):
        return kinds.BIGNUMBER
    if isinstance(col_type, DateTime):
        return kinds.DATETIME
    if isinstance(col_type, Date):
        return kinds.DATE
    try:
        python_type = col_type.python_type
    except NotImplementedError:
        python_type = None
    if python_type is uuid.UUID:
        return kinds.GUID
    if python_type is datetime:
        return kinds.DATETIME
    if python_type is date:
        return kinds.DATE
    return kinds.TEXT


def source_from_table(table: Table, *, name: str | None = None, key_column: str | None = None) -> GridSource:
    """Build a strict grid source from a SQLAlchemy table; logical names are column keys."""
    columns = {column.key: column.name for column in table.columns}
    if key_column is None:
        primary = list(table.primary_key.columns)
        if len(primary) != 1:
            raise ValueError(f"Table {table.name!r} needs a single-column primary key or an explicit key_column")
        key_column = primary[0].key
    qualified = f"{table.schema}.{table.name}" if table.schema else table.name
    return GridSource(
        name=name or table.name,
        key_column=key_column,
        table=qualified,
        columns=columns,
        projection=tuple(columns),
        column_kinds={column.key: column_kind(column) for column in table.columns},
        strict=True,
    )


class SourceRegistry:
    """Named grid sources, with optional lazy reflection of configured tables."""

    def __init__(
        self,
        *,
        reflect_tables: list[str] | None = None,
        engine_factory: Callable[[], Engine] | None = None,
    ):
        self._sources: dict[str, GridSource] = {}
        self._lock = threading.Lock()
        self._reflect_tables = {name.strip() for name in (reflect_tables or []) if name.strip()}
        self._engine_factory = engine_factory

    def register(self, source: GridSource) -> GridSource:
        with self._lock:
            self._sources[source.name] = source
        return source

    def unregister(self, name: str) -> None:
        with self._lock:
            self._sources.pop(name, None)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(set(self._sources) | self._reflect_tables)

    def get(self, name: str) -> GridSource:
        with self._lock:
            source = self._sources.get(name)
        if source is not None:
            return source
        if name in self._reflect_tables and self._engine_factory is not None:
            return self.register(self._reflect(name))
        raise UnknownSource(name)

    def _reflect(self, name: str) -> GridSource:
        schema, _, table_name = name.rpartition(".")
        try:
            table = Table(table_name, MetaData(), autoload_with=self._engine_factory(), schema=schema or None)
        except NoSuchTableError:
            _LOG.warning("Configured grid table %s does not exist", name)
            raise UnknownSource(name) from None
        _LOG.info("Reflected grid source %s (%d columns)", name, len(table.columns))
        return source_from_table(table, name=name)
