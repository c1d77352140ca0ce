from __future__ import annotations

from typing import Any


class GridQueryError(Exception):
    """Base class for grid request failures. `detail` is safe to show to callers."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidFilterValue(GridQueryError):
    def __init__(self, column: str, data_kind: str, raw: Any):
        self.column = column
        self.data_kind = data_kind
        self.raw = raw
        super().__init__(f'Invalid filter value for column "{column}" ({data_kind}): {raw!r}')


class UnsupportedDataKind(GridQueryError):
    def __init__(self, data_kind: Any, column: str | None = None):
        self.data_kind = data_kind
        self.column = column
        where = f' on column "{column}"' if column else ""
        super().__init__(f"Unsupported data kind {data_kind!r}{where}")


class UnknownColumn(GridQueryError):
    def __init__(self, column: Any):
        self.column = column
        super().__init__(f"Unknown column {column!r}")


class MalformedFilterSpec(GridQueryError):
    def __init__(self, column: str, reason: str):
        self.column = column
        self.reason = reason
        super().__init__(f'Malformed filter for column "{column}": {reason}')


class UnknownSource(GridQueryError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown grid source {name!r}")


class ExecutionError(GridQueryError):
    pass


class StatsUnavailable(GridQueryError):
    pass


CALLER_INPUT_ERRORS = (InvalidFilterValue, UnsupportedDataKind, UnknownColumn, MalformedFilterSpec)
