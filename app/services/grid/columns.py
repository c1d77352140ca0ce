from __future__ import annotations

import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from .errors import UnknownColumn

# Column identifiers cannot be bound as parameters; only names matching these
# patterns ever reach the query text.
LOGICAL_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
PHYSICAL_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")
ALIAS_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_physical_identifier(value: Any) -> bool:
    return isinstance(value, str) and bool(PHYSICAL_NAME_RE.fullmatch(value))


class ColumnMapper:
    """Resolves logical grid column names to physical column names.

    Names missing from the mapping pass through unchanged when they look like a
    plain identifier, unless the mapper is `strict`.
    """

    def __init__(self, mapping: Mapping[str, str] | None = None, *, strict: bool = False):
        normalized: dict[str, str] = {}
        for logical, physical in (mapping or {}).items():
            if not isinstance(logical, str) or not ALIAS_RE.fullmatch(logical):
                raise ValueError(f"Invalid logical column name {logical!r}")
            if not is_physical_identifier(physical):
                raise ValueError(f"Invalid physical column name {physical!r} for {logical!r}")
            normalized[logical] = physical
        self._mapping = MappingProxyType(normalized)
        self.strict = strict

    @property
    def mapping(self) -> Mapping[str, str]:
        return self._mapping

    def resolve(self, logical_name: Any) -> str:
        if isinstance(logical_name, str):
            physical = self._mapping.get(logical_name)
            if physical is not None:
                return physical
            if not self.strict and LOGICAL_NAME_RE.fullmatch(logical_name):
                return logical_name
        raise UnknownColumn(logical_name)
