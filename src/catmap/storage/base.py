"""Storage engine contract.

The components are written against this abstract key-value contract, not a
particular product. Every write is atomic on a single item; secondary indexes
are maintained in the same atomic step as the item they point at.

Cursors are keyset positions (not offsets): they encode the last item returned
as url-safe base64 JSON, and a query resumes strictly after that position.
"""

from __future__ import annotations

import base64
import json
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from catmap.errors import ValidationError

Item = dict[str, Any]
UpdateFn = Callable[[Item | None], Item | None]


@dataclass(frozen=True)
class IndexSpec:
    """Secondary index: items are grouped by ``partition`` and ordered by ``sort``."""

    name: str
    partition: str
    sort: str


@dataclass(frozen=True)
class TableSpec:
    """Key layout of one table."""

    name: str
    partition_key: str
    sort_key: str | None = None
    ttl_attribute: str | None = None
    indexes: tuple[IndexSpec, ...] = field(default_factory=tuple)

    def index(self, name: str) -> IndexSpec:
        for idx in self.indexes:
            if idx.name == name:
                return idx
        msg = f"Unknown index {name!r} on table {self.name!r}"
        raise KeyError(msg)

    def key_of(self, item: Item) -> tuple[str, str]:
        """Return (partition, sort) for an item; sort is '' on hash-only tables."""
        try:
            pk = str(item[self.partition_key])
            sk = str(item[self.sort_key]) if self.sort_key else ""
        except KeyError as e:
            msg = f"Item for {self.name!r} is missing key attribute {e}"
            raise ValueError(msg) from e
        return pk, sk

    def is_expired(self, item: Item, now: float | None = None, grace: float = 0.0) -> bool:
        """True once the backend would have purged the item (expiry plus ``grace``)."""
        if self.ttl_attribute is None:
            return False
        expires_at = item.get(self.ttl_attribute)
        if expires_at is None:
            return False
        return float(expires_at) + grace <= (time.time() if now is None else now)


@dataclass
class Page:
    """One finite page of a range query."""

    items: list[Item]
    cursor: str | None = None


def encode_cursor(sort_value: str, pk: str, sk: str) -> str:
    """Encode a keyset position."""
    payload = {"s": sort_value, "p": pk, "k": sk}
    return base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()


def decode_cursor(cursor: str) -> tuple[str, str, str]:
    """Decode a keyset position.

    Raises:
        ValidationError: If the cursor is malformed.
    """
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode()))
        return str(data["s"]), str(data["p"]), str(data["k"])
    except Exception as e:
        msg = f"Invalid cursor: {e}"
        raise ValidationError(msg) from e


class StorageEngine(ABC):
    """Abstract key-value store with conditional writes, range queries and TTL."""

    def __init__(self, tables: tuple[TableSpec, ...]) -> None:
        self._specs = {t.name: t for t in tables}

    def spec(self, table: str) -> TableSpec:
        try:
            return self._specs[table]
        except KeyError:
            msg = f"Unknown table {table!r}"
            raise KeyError(msg) from None

    @abstractmethod
    async def get(self, table: str, pk: str, sk: str | None = None) -> Item | None:
        """Fetch one item by key. Expired items read as absent."""

    @abstractmethod
    async def put(self, table: str, item: Item) -> None:
        """Unconditionally write an item."""

    @abstractmethod
    async def put_if_absent(self, table: str, item: Item) -> bool:
        """Write an item only if no live item exists at its key.

        Returns True if written, False if the key was already taken.
        """

    @abstractmethod
    async def update(self, table: str, pk: str, sk: str | None, fn: UpdateFn) -> Item | None:
        """Atomic read-modify-write of one item.

        ``fn`` receives the current item (or None) and returns the new item,
        or None to leave the stored value unchanged. Any exception raised by
        ``fn`` aborts the update without writing. Returns the stored item.
        """

    @abstractmethod
    async def delete(self, table: str, pk: str, sk: str | None = None) -> None:
        """Remove an item (no-op if absent)."""

    @abstractmethod
    async def query(
        self,
        table: str,
        pk: str,
        prefix: str | None = None,
        cursor: str | None = None,
        limit: int = 50,
        descending: bool = False,
    ) -> Page:
        """Range query over the sort key of one partition."""

    @abstractmethod
    async def query_index(
        self,
        table: str,
        index: str,
        value: str,
        prefix: str | None = None,
        cursor: str | None = None,
        limit: int = 50,
        descending: bool = False,
    ) -> Page:
        """Range query over one partition of a secondary index."""

    async def ping(self) -> bool:
        return True

    def _check_update_result(self, spec: TableSpec, pk: str, sk: str, new: Item) -> None:
        if spec.key_of(new) != (pk, sk):
            msg = f"Update on {spec.name!r} may not change the item key"
            raise ValueError(msg)

    @staticmethod
    def _check_limit(limit: int) -> None:
        if limit < 1:
            msg = "limit must be >= 1"
            raise ValidationError(msg)


def index_entry(spec: IndexSpec, table: TableSpec, item: Item) -> tuple[str, str, str, str] | None:
    """Return (partition value, sort value, pk, sk) or None when the item is not indexed."""
    if item.get(spec.partition) is None or item.get(spec.sort) is None:
        return None
    pk, sk = table.key_of(item)
    return str(item[spec.partition]), str(item[spec.sort]), pk, sk
