"""In-process storage engine.

Backs tests and local development. All mutations run to completion without
awaiting, so on a single event loop every call is atomic with respect to
every other call, which is exactly the per-key guarantee the contract asks for.
"""

from __future__ import annotations

import copy
import time
from collections.abc import Callable

from catmap.storage.base import (
    Item,
    Page,
    StorageEngine,
    TableSpec,
    UpdateFn,
    decode_cursor,
    encode_cursor,
    index_entry,
)


class MemoryStore(StorageEngine):
    """Dict-backed implementation of the storage contract."""

    def __init__(
        self,
        tables: tuple[TableSpec, ...],
        clock: Callable[[], float] = time.time,
        ttl_grace_seconds: float = 3600.0,
    ) -> None:
        super().__init__(tables)
        self._clock = clock
        self._grace = ttl_grace_seconds
        self._data: dict[str, dict[tuple[str, str], Item]] = {t.name: {} for t in tables}

    def _live(self, spec: TableSpec, key: tuple[str, str]) -> Item | None:
        rows = self._data[spec.name]
        item = rows.get(key)
        if item is not None and spec.is_expired(item, self._clock(), self._grace):
            # TTL purge, after the grace period
            del rows[key]
            return None
        return item

    async def get(self, table: str, pk: str, sk: str | None = None) -> Item | None:
        spec = self.spec(table)
        item = self._live(spec, (pk, sk or ""))
        return copy.deepcopy(item) if item is not None else None

    async def put(self, table: str, item: Item) -> None:
        spec = self.spec(table)
        self._data[table][spec.key_of(item)] = copy.deepcopy(item)

    async def put_if_absent(self, table: str, item: Item) -> bool:
        spec = self.spec(table)
        key = spec.key_of(item)
        if self._live(spec, key) is not None:
            return False
        self._data[table][key] = copy.deepcopy(item)
        return True

    async def update(self, table: str, pk: str, sk: str | None, fn: UpdateFn) -> Item | None:
        spec = self.spec(table)
        key = (pk, sk or "")
        current = self._live(spec, key)
        new = fn(copy.deepcopy(current) if current is not None else None)
        if new is None:
            return copy.deepcopy(current) if current is not None else None
        self._check_update_result(spec, key[0], key[1], new)
        self._data[table][key] = copy.deepcopy(new)
        return copy.deepcopy(new)

    async def delete(self, table: str, pk: str, sk: str | None = None) -> None:
        self.spec(table)
        self._data[table].pop((pk, sk or ""), None)

    async def query(
        self,
        table: str,
        pk: str,
        prefix: str | None = None,
        cursor: str | None = None,
        limit: int = 50,
        descending: bool = False,
    ) -> Page:
        self._check_limit(limit)
        spec = self.spec(table)
        if spec.sort_key is None:
            msg = f"Table {table!r} has no sort key to range over"
            raise ValueError(msg)
        rows = [
            (key[1], key[0], key[1], item)
            for key, item in list(self._data[table].items())
            if key[0] == pk and self._live(spec, key) is not None
        ]
        return self._page(rows, prefix, cursor, limit, descending)

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
        self._check_limit(limit)
        spec = self.spec(table)
        idx = spec.index(index)
        rows = []
        for key, item in list(self._data[table].items()):
            if self._live(spec, key) is None:
                continue
            entry = index_entry(idx, spec, item)
            if entry is None or entry[0] != value:
                continue
            rows.append((entry[1], entry[2], entry[3], item))
        return self._page(rows, prefix, cursor, limit, descending)

    @staticmethod
    def _page(
        rows: list[tuple[str, str, str, Item]],
        prefix: str | None,
        cursor: str | None,
        limit: int,
        descending: bool,
    ) -> Page:
        if prefix:
            rows = [r for r in rows if r[0].startswith(prefix)]
        rows.sort(key=lambda r: (r[0], r[1], r[2]), reverse=descending)

        if cursor is not None:
            position = decode_cursor(cursor)
            if descending:
                rows = [r for r in rows if (r[0], r[1], r[2]) < position]
            else:
                rows = [r for r in rows if (r[0], r[1], r[2]) > position]

        # Fetch one extra to detect has_more
        window = rows[: limit + 1]
        has_more = len(window) > limit
        window = window[:limit]

        next_cursor = None
        if has_more and window:
            last = window[-1]
            next_cursor = encode_cursor(last[0], last[1], last[2])
        return Page(items=[copy.deepcopy(r[3]) for r in window], cursor=next_cursor)
