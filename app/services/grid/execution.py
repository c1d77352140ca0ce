from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import ExecutionError, StatsUnavailable
from .kinds import TypedValue

if TYPE_CHECKING:
    from .assembler import CompiledQuery
    from .sources import GridSource

logger = logging.getLogger("app.grid.execution")

_POSTGRES_ESTIMATE_SQL = (
    "SELECT CAST(c.reltuples AS BIGINT) FROM pg_class c WHERE c.oid = to_regclass(:relation)"
)
_MYSQL_ESTIMATE_SQL = (
    "SELECT table_rows FROM information_schema.tables "
    "WHERE table_schema = COALESCE(:schema, DATABASE()) AND table_name = :relation"
)


class Executor(Protocol):
    def fetch_rows(self, query: "CompiledQuery") -> list[dict[str, Any]]:
        ...

    def fetch_scalar(self, query: "CompiledQuery") -> Any:
        ...


class StatsProvider(Protocol):
    def estimate_rows(self, source: "GridSource") -> int:
        ...


def _bind(name: str, value: Any):
    if isinstance(value, TypedValue):
        return bindparam(name, value.value, type_=value.sql_type)
    # Inferred from the Python value, so dates and decimals get the
    # dialect's own bind processing.
    return bindparam(name, value)


def _statement(query: "CompiledQuery"):
    return text(query.text).bindparams(*[_bind(name, value) for name, value in query.parameters])


class SqlAlchemyExecutor:
    def __init__(self, db: Session):
        self.db = db

    def fetch_rows(self, query: "CompiledQuery") -> list[dict[str, Any]]:
        try:
            result = self.db.execute(_statement(query))
            return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as exc:
            logger.exception("Grid data query failed")
            raise ExecutionError("Data query failed") from exc

    def fetch_scalar(self, query: "CompiledQuery") -> Any:
        try:
            return self.db.execute(_statement(query)).scalar()
        except SQLAlchemyError as exc:
            logger.exception("Grid count query failed")
            raise ExecutionError("Count query failed") from exc


class SqlAlchemyStatsProvider:
    """Table row estimates from the database catalog (PostgreSQL and MySQL)."""

    def __init__(self, db: Session):
        self.db = db

    def estimate_rows(self, source: "GridSource") -> int:
        if source.table is None:
            raise StatsUnavailable(f"No statistics for sub-query source {source.name!r}")
        dialect = self.db.get_bind().dialect.name
        schema, _, relation = source.table.rpartition(".")
        if dialect == "postgresql":
            sql, params = _POSTGRES_ESTIMATE_SQL, {"relation": source.table}
        elif dialect in {"mysql", "mariadb"}:
            sql, params = _MYSQL_ESTIMATE_SQL, {"schema": schema or None, "relation": relation}
        else:
            raise StatsUnavailable(f"Row estimates are not supported on {dialect}")
        try:
            # Savepoint keeps a failed catalog query from aborting the
            # surrounding transaction before the exact fallback runs.
            with self.db.begin_nested():
                value = self.db.execute(text(sql), params).scalar()
        except SQLAlchemyError as exc:
            raise StatsUnavailable(f"Statistics query failed for {source.table!r}") from exc
        # reltuples is -1 for a table that was never vacuumed or analyzed.
        if value is None or int(value) < 0:
            raise StatsUnavailable(f"No statistics collected for {source.table!r}")
        return int(value)
