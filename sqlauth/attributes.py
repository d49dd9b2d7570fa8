"""Collation of login query rows into multi-valued attributes."""

from __future__ import annotations

from typing import Any, Iterable, Iterator

from .models import AttributeMap, ResultRow


class OrderedValueSet:
    """Distinct string values kept in first-seen order."""

    __slots__ = ("_values",)

    def __init__(self) -> None:
        self._values: dict[str, None] = {}

    def add(self, value: str) -> bool:
        """Insert `value` if absent; return whether it was inserted."""

        if value in self._values:
            return False
        self._values[value] = None
        return True

    def __contains__(self, value: object) -> bool:
        return value in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def to_list(self) -> list[str]:
        return list(self._values)


def to_attribute_value(value: Any) -> str:
    """Canonical string form of a database value.

    Bytes are decoded as UTF-8 with `surrogateescape`, so invalid sequences survive
    and `value.encode("utf-8", "surrogateescape")` gives back the original bytes.
    """

    if isinstance(value, bool):
        return "1" if value else ""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="surrogateescape")
    return str(value)


def collate(rows: Iterable[ResultRow]) -> AttributeMap:
    """Merge rows into attribute -> distinct values, skipping nulls.

    Columns present in several rows become multi-valued; both attribute names
    and values keep their first-seen order.
    """

    collated: dict[str, OrderedValueSet] = {}
    for row in rows:
        for name, value in row.items():
            if value is None:
                continue
            collated.setdefault(name, OrderedValueSet()).add(to_attribute_value(value))
    return {name: values.to_list() for name, values in collated.items()}


__all__ = ["OrderedValueSet", "collate", "to_attribute_value"]
