"""Per data kind filter semantics.

Every kind is one `KindHandler` record in `_HANDLERS`. Lookups never fall back
to a default handler: an unknown kind is a caller error.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from sqlalchemy import Uuid
from sqlalchemy.types import TypeEngine

from .errors import InvalidFilterValue, UnsupportedDataKind

TEXT = "text"
NUMBER = "number"
BIGNUMBER = "bignumber"
GUID = "guid"
DATE = "date"
DATETIME = "datetime"
SET = "set"
BOOLEAN = "boolean"

EQUALS = "equals"
NOT_EQUAL = "notEqual"
CONTAINS = "contains"
NOT_CONTAINS = "notContains"
STARTS_WITH = "startsWith"
ENDS_WITH = "endsWith"
GREATER_THAN = "greaterThan"
GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
LESS_THAN = "lessThan"
LESS_THAN_OR_EQUAL = "lessThanOrEqual"
IN_RANGE = "inRange"
BLANK = "blank"
NOT_BLANK = "notBlank"
IN = "in"
NOT_IN = "notIn"

PATTERN_OPERATORS = frozenset({CONTAINS, NOT_CONTAINS, STARTS_WITH, ENDS_WITH})
COMPARISON_OPERATORS = frozenset({GREATER_THAN, GREATER_THAN_OR_EQUAL, LESS_THAN, LESS_THAN_OR_EQUAL})
BLANK_OPERATORS = frozenset({BLANK, NOT_BLANK})
LIST_OPERATORS = frozenset({IN, NOT_IN})
ALL_OPERATORS = frozenset(
    {EQUALS, NOT_EQUAL, IN_RANGE} | PATTERN_OPERATORS | COMPARISON_OPERATORS | BLANK_OPERATORS | LIST_OPERATORS
)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_TRUE_TOKENS = {"1", "true", "yes", "y", "on"}
_FALSE_TOKENS = {"0", "false", "no", "n", "off"}

# Canonical text on the wire; native UUID columns still see a uuid-typed bind.
_GUID_SQL_TYPE = Uuid(as_uuid=False)


@dataclass(frozen=True)
class TypedValue:
    """A bound value whose SQL type must not be inferred from its Python type."""

    value: Any
    sql_type: TypeEngine

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class KindHandler:
    kind: str
    operators: frozenset[str]
    coerce: Callable[[Any], Any]
    render: Callable[[Any], Any]
    blank_predicate: Callable[[str], str]

    def validate(self, column: str, raw: Any) -> Any:
        try:
            return self.coerce(raw)
        except (ValueError, TypeError, ArithmeticError):
            raise InvalidFilterValue(column, self.kind, raw) from None


def _reject(raw: Any) -> None:
    raise ValueError(f"cannot coerce {raw!r}")


def _coerce_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (int, float, Decimal)) and not isinstance(raw, bool):
        return str(raw)
    _reject(raw)


def _number_text(raw: Any) -> str:
    text = str(raw).strip()
    if not text:
        _reject(raw)
    return text.replace(",", ".")


def _coerce_number(raw: Any) -> int | float:
    if isinstance(raw, bool) or raw is None:
        _reject(raw)
    if isinstance(raw, int):
        value: int | float = raw
    elif isinstance(raw, float):
        value = raw
    elif isinstance(raw, (str, Decimal)):
        normalized = _number_text(raw)
        try:
            value = int(normalized)
        except ValueError:
            value = float(normalized)
    else:
        _reject(raw)
    if isinstance(value, float):
        if not math.isfinite(value):
            _reject(raw)
        return value
    if not _INT64_MIN <= value <= _INT64_MAX:
        _reject(raw)
    return value


def _coerce_bignumber(raw: Any) -> Decimal:
    if isinstance(raw, bool) or raw is None:
        _reject(raw)
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, int):
        value = Decimal(raw)
    elif isinstance(raw, float):
        # repr keeps the shortest round-tripping form, e.g. 0.1 -> Decimal("0.1")
        value = Decimal(repr(raw))
    elif isinstance(raw, str):
        try:
            value = Decimal(_number_text(raw))
        except InvalidOperation:
            raise ValueError(f"not a number: {raw!r}") from None
    else:
        _reject(raw)
    if not value.is_finite():
        _reject(raw)
    return value


def _coerce_guid(raw: Any) -> uuid.UUID:
    if isinstance(raw, uuid.UUID):
        return raw
    if not isinstance(raw, str):
        _reject(raw)
    return uuid.UUID(raw.strip())


def _coerce_date(raw: Any) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        _reject(raw)
    text = raw.strip()
    if not text:
        _reject(raw)
    # Accept either YYYY-MM-DD or a full ISO datetime and take its date part.
    if "T" in text or " " in text:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    return date.fromisoformat(text)


def _coerce_datetime(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, date):
        parsed = datetime.combine(raw, datetime.min.time())
    elif isinstance(raw, str):
        text = raw.strip()
        if not text:
            _reject(raw)
        if "T" not in text and " " not in text and len(text) == 10:
            # Date-only value -> start of the day.
            parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
        else:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    else:
        _reject(raw)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.replace(microsecond=0)


def _coerce_set_member(raw: Any) -> str | int | float | Decimal:
    if isinstance(raw, (str, int, float, Decimal)) and not isinstance(raw, bool):
        return raw
    _reject(raw)


def _coerce_boolean(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if not isinstance(raw, str):
        _reject(raw)
    text = raw.strip().lower()
    if text in _TRUE_TOKENS:
        return True
    if text in _FALSE_TOKENS:
        return False
    _reject(raw)


def _identity(value: Any) -> Any:
    return value


def _render_guid(value: uuid.UUID) -> TypedValue:
    return TypedValue(str(value), _GUID_SQL_TYPE)


def _null_or_empty(column: str) -> str:
    return f"({column} IS NULL OR {column} = '')"


def _null_only(column: str) -> str:
    return f"{column} IS NULL"


_EQUALITY = frozenset({EQUALS, NOT_EQUAL}) | BLANK_OPERATORS | LIST_OPERATORS
_ORDERED = _EQUALITY | COMPARISON_OPERATORS | {IN_RANGE}

_HANDLERS: dict[str, KindHandler] = {
    TEXT: KindHandler(TEXT, _EQUALITY | PATTERN_OPERATORS, _coerce_text, _identity, _null_or_empty),
    NUMBER: KindHandler(NUMBER, _ORDERED, _coerce_number, _identity, _null_only),
    BIGNUMBER: KindHandler(BIGNUMBER, _ORDERED, _coerce_bignumber, _identity, _null_only),
    GUID: KindHandler(GUID, _EQUALITY, _coerce_guid, _render_guid, _null_only),
    DATE: KindHandler(DATE, _ORDERED, _coerce_date, _identity, _null_only),
    DATETIME: KindHandler(DATETIME, _ORDERED, _coerce_datetime, _identity, _null_only),
    SET: KindHandler(SET, _EQUALITY, _coerce_set_member, _identity, _null_or_empty),
    BOOLEAN: KindHandler(BOOLEAN, frozenset({EQUALS, NOT_EQUAL}) | BLANK_OPERATORS, _coerce_boolean, _identity, _null_only),
}

DATA_KINDS = frozenset(_HANDLERS)


def strategy_for(data_kind: Any, column: str | None = None) -> KindHandler:
    handler = _HANDLERS.get(data_kind) if isinstance(data_kind, str) else None
    if handler is None:
        raise UnsupportedDataKind(data_kind, column)
    return handler
