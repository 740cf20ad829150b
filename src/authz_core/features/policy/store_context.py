"""Extract candidate store ids from the request's store context.

A request carries a store-context bag with three buckets (``path``, ``query``,
``body``). A rule names, per bucket, the dotted keys that may hold store ids;
rules without a configuration use :data:`DEFAULT_STORE_ID_SOURCES`.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

BUCKETS: tuple[str, ...] = ("path", "query", "body")

DEFAULT_STORE_ID_SOURCES: dict[str, tuple[str, ...]] = {
    "path": ("store_id", "storeId", "store"),
    "query": ("store_id", "store_ids", "storeId", "storeIds"),
    "body": (
        "store_id",
        "store_ids",
        "storeId",
        "storeIds",
        "filters.store_id",
        "filters.store_ids",
    ),
}


def _clean_keys(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, Iterable):
        raise TypeError("Store id source keys must be a string or a list of strings")
    keys: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise TypeError("Store id source keys must be strings")
        key = item.strip().strip(".")
        if key and key not in keys:
            keys.append(key)
    return tuple(keys)


@dataclass(frozen=True, slots=True)
class StoreIdSources:
    """Dotted lookup keys per store-context bucket."""

    path: tuple[str, ...] = DEFAULT_STORE_ID_SOURCES["path"]
    query: tuple[str, ...] = DEFAULT_STORE_ID_SOURCES["query"]
    body: tuple[str, ...] = DEFAULT_STORE_ID_SOURCES["body"]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> StoreIdSources:
        """Build sources from a rule's stored configuration.

        An absent or empty configuration means the defaults. A configuration
        that names some buckets searches only those buckets.
        """

        if not data:
            return cls()
        unknown = set(data) - set(BUCKETS)
        if unknown:
            raise ValueError(f"Unknown store id source buckets: {', '.join(sorted(unknown))}")
        return cls(**{bucket: _clean_keys(data.get(bucket)) for bucket in BUCKETS})

    def keys_for(self, bucket: str) -> tuple[str, ...]:
        return getattr(self, bucket)

    def to_dict(self) -> dict[str, list[str]]:
        return {bucket: list(self.keys_for(bucket)) for bucket in BUCKETS}


@dataclass(frozen=True, slots=True)
class StoreContext:
    """Request data the boundary forwards for store id extraction."""

    path: Mapping[str, Any] = field(default_factory=dict)
    query: Mapping[str, Any] = field(default_factory=dict)
    body: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> StoreContext:
        if not data:
            return cls()
        buckets = {}
        for bucket in BUCKETS:
            value = data.get(bucket)
            buckets[bucket] = value if isinstance(value, Mapping) else {}
        return cls(**buckets)

    def bucket(self, name: str) -> Mapping[str, Any]:
        return getattr(self, name)


def dig(data: Any, dotted_key: str) -> Any | None:
    """Follow ``a.b.0.c`` through nested mappings and lists."""

    return _dig(data, dotted_key.split("."))


def _dig(node: Any, parts: Sequence[str]) -> Any | None:
    if not parts:
        return node
    head, rest = parts[0], parts[1:]
    if isinstance(node, Mapping):
        if head not in node:
            return None
        return _dig(node[head], rest)
    if isinstance(node, (list, tuple)) and head.isascii() and head.isdigit():
        index = int(head)
        if index >= len(node):
            return None
        return _dig(node[index], rest)
    return None


def normalize_store_ids(value: Any) -> set[int]:
    """Collect positive integer ids from scalars, numeric strings and nested lists.

    Strings may be comma separated (``"1,2"``). Booleans, non-numeric text and
    non-positive numbers are ignored.
    """

    found: set[int] = set()
    if value is None or isinstance(value, bool):
        return found
    if isinstance(value, int):
        if value > 0:
            found.add(value)
    elif isinstance(value, float):
        if value.is_integer() and value > 0:
            found.add(int(value))
    elif isinstance(value, str):
        for part in value.split(","):
            part = part.strip()
            if part.isascii() and part.isdigit() and int(part) > 0:
                found.add(int(part))
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            found |= normalize_store_ids(item)
    return found


def extract_store_ids(context: StoreContext, sources: StoreIdSources) -> tuple[int, ...]:
    """Return the sorted, de-duplicated store ids named by ``sources`` in ``context``."""

    found: set[int] = set()
    for bucket in BUCKETS:
        data = context.bucket(bucket)
        if not data:
            continue
        for key in sources.keys_for(bucket):
            found |= normalize_store_ids(dig(data, key))
    return tuple(sorted(found))


__all__ = [
    "BUCKETS",
    "DEFAULT_STORE_ID_SOURCES",
    "StoreContext",
    "StoreIdSources",
    "dig",
    "extract_store_ids",
    "normalize_store_ids",
]
