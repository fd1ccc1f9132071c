"""Redis storage engine.

Layout (``<p>`` is the configured key prefix)::

    <p>:<table>:i:<json [pk, sk]>        item as a JSON string (EXAT when the table has a TTL)
    <p>:<table>:p:<pk>                   sorted set of sort keys, lex ordered (score 0)
    <p>:<table>:x:<index>:<value>        sorted set of "<sort>\\x00<pk>\\x00<sk>" members

Every write is a WATCH/MULTI/EXEC transaction on the item key that also
rewrites the item's partition and index entries, so readers never observe an
index entry that disagrees with its item. Conflicting writers retry.
Index members left behind by TTL expiry are skipped and pruned on read.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as redis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from catmap.errors import StorageUnavailableError
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

logger = structlog.get_logger()

T = TypeVar("T")

_SEP = "\x00"
_MAX_CHAR = chr(0x10FFFF)
_ABSENT = object()


class RedisStore(StorageEngine):
    """Storage contract implemented over Redis."""

    def __init__(
        self,
        client: redis.Redis,
        tables: tuple[TableSpec, ...],
        key_prefix: str = "catmap",
        timeout_seconds: float = 2.0,
        max_attempts: int = 20,
        ttl_grace_seconds: float = 3600.0,
    ) -> None:
        super().__init__(tables)
        self._grace = ttl_grace_seconds
        self._redis = client
        self._prefix = key_prefix
        self._timeout = timeout_seconds
        self._max_attempts = max_attempts

    # ── keys ──

    def _item_key(self, table: str, pk: str, sk: str) -> str:
        return f"{self._prefix}:{table}:i:{json.dumps([pk, sk])}"

    def _partition_key(self, table: str, pk: str) -> str:
        return f"{self._prefix}:{table}:p:{pk}"

    def _index_key(self, table: str, index: str, value: str) -> str:
        return f"{self._prefix}:{table}:x:{index}:{value}"

    # ── plumbing ──

    async def _guard(self, op: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Bound a backend call by the timeout and map transport failures."""
        try:
            return await asyncio.wait_for(fn(), timeout=self._timeout)
        except (asyncio.TimeoutError, RedisTimeoutError) as e:
            logger.warning("storage_timeout", op=op, timeout=self._timeout)
            msg = f"Storage timed out during {op}"
            raise StorageUnavailableError(msg) from e
        except RedisConnectionError as e:
            logger.warning("storage_unreachable", op=op, error=str(e))
            msg = f"Storage unreachable during {op}"
            raise StorageUnavailableError(msg) from e

    def _decode(self, spec: TableSpec, raw: str | None) -> Item | None:
        if raw is None:
            return None
        item: Item = json.loads(raw)
        if spec.is_expired(item, grace=self._grace):
            return None
        return item

    def _entries(self, spec: TableSpec, item: Item) -> list[tuple[str, str]]:
        """(sorted set key, member) pairs an item occupies."""
        pk, sk = spec.key_of(item)
        entries = []
        if spec.sort_key is not None:
            entries.append((self._partition_key(spec.name, pk), sk))
        for idx in spec.indexes:
            entry = index_entry(idx, spec, item)
            if entry is not None:
                value, sort_value, _, _ = entry
                entries.append(
                    (self._index_key(spec.name, idx.name, value), _SEP.join((sort_value, pk, sk)))
                )
        return entries

    async def _transact(self, spec: TableSpec, pk: str, sk: str, decide: Callable[[Item | None], Any]) -> Any:
        """Run ``decide`` against the current item inside a WATCH transaction.

        ``decide`` returns ``(new_item_or_None_to_delete, result)`` to write, or
        ``(_ABSENT, result)`` to leave the key untouched.
        """
        key = self._item_key(spec.name, pk, sk)
        for attempt in range(self._max_attempts):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    current = self._decode(spec, await pipe.get(key))
                    new, result = decide(current)
                    if new is _ABSENT:
                        await pipe.unwatch()
                        return result

                    pipe.multi()
                    if current is not None:
                        for zkey, member in self._entries(spec, current):
                            pipe.zrem(zkey, member)
                    if new is None:
                        pipe.delete(key)
                    else:
                        for zkey, member in self._entries(spec, new):
                            pipe.zadd(zkey, {member: 0})
                        pipe.set(key, json.dumps(new), exat=self._expiry(spec, new))
                    await pipe.execute()
                    return result
                except WatchError:
                    logger.debug("storage_write_conflict", table=spec.name, attempt=attempt + 1)
                    continue
        msg = f"Too much contention on {spec.name} item after {self._max_attempts} attempts"
        raise StorageUnavailableError(msg)

    def _expiry(self, spec: TableSpec, item: Item) -> int | None:
        if spec.ttl_attribute is None or item.get(spec.ttl_attribute) is None:
            return None
        # EXAT in the past is rejected; keep at least one second
        return max(int(float(item[spec.ttl_attribute]) + self._grace), int(time.time()) + 1)

    # ── contract ──

    async def get(self, table: str, pk: str, sk: str | None = None) -> Item | None:
        spec = self.spec(table)
        raw = await self._guard("get", lambda: self._redis.get(self._item_key(table, pk, sk or "")))
        return self._decode(spec, raw)

    async def put(self, table: str, item: Item) -> None:
        spec = self.spec(table)
        pk, sk = spec.key_of(item)
        await self._guard("put", lambda: self._transact(spec, pk, sk, lambda _current: (item, None)))

    async def put_if_absent(self, table: str, item: Item) -> bool:
        spec = self.spec(table)
        pk, sk = spec.key_of(item)

        def decide(current: Item | None) -> tuple[Any, bool]:
            if current is not None:
                return _ABSENT, False
            return item, True

        return await self._guard("put_if_absent", lambda: self._transact(spec, pk, sk, decide))

    async def update(self, table: str, pk: str, sk: str | None, fn: UpdateFn) -> Item | None:
        spec = self.spec(table)
        sk = sk or ""

        def decide(current: Item | None) -> tuple[Any, Item | None]:
            new = fn(json.loads(json.dumps(current)) if current is not None else None)
            if new is None:
                return _ABSENT, current
            self._check_update_result(spec, pk, sk, new)
            return new, new

        return await self._guard("update", lambda: self._transact(spec, pk, sk, decide))

    async def delete(self, table: str, pk: str, sk: str | None = None) -> None:
        spec = self.spec(table)
        await self._guard(
            "delete", lambda: self._transact(spec, pk, sk or "", lambda current: (None, None) if current else (_ABSENT, None))
        )

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

        start = None
        if cursor is not None:
            start = decode_cursor(cursor)[0]

        def resolve(member: str) -> tuple[str, str, str]:
            return member, pk, member

        return await self._guard(
            "query",
            lambda: self._scan(spec, self._partition_key(table, pk), prefix, start, limit, descending, resolve),
        )

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
        spec.index(index)

        start = None
        if cursor is not None:
            start = _SEP.join(decode_cursor(cursor))

        def resolve(member: str) -> tuple[str, str, str]:
            sort_value, pk, sk = member.split(_SEP, 2)
            return sort_value, pk, sk

        return await self._guard(
            "query_index",
            lambda: self._scan(spec, self._index_key(table, index, value), prefix, start, limit, descending, resolve),
        )

    async def _scan(
        self,
        spec: TableSpec,
        zkey: str,
        prefix: str | None,
        start: str | None,
        limit: int,
        descending: bool,
        resolve: Callable[[str], tuple[str, str, str]],
    ) -> Page:
        low = f"[{prefix}" if prefix else "-"
        high = f"[{prefix}{_MAX_CHAR}" if prefix else "+"

        found: list[tuple[tuple[str, str, str], Item]] = []
        batch = limit + 1
        while len(found) <= limit:
            if descending:
                if start is not None:
                    high = f"({start}"
                members = await self._redis.zrevrangebylex(zkey, high, low, start=0, num=batch)
            else:
                if start is not None:
                    low = f"({start}"
                members = await self._redis.zrangebylex(zkey, low, high, start=0, num=batch)
            if not members:
                break

            positions = [resolve(m) for m in members]
            raws = await self._redis.mget([self._item_key(spec.name, p[1], p[2]) for p in positions])
            stale = []
            for member, position, raw in zip(members, positions, raws):
                item = self._decode(spec, raw)
                if item is None:
                    stale.append(member)
                    continue
                found.append((position, item))
            if stale:
                await self._redis.zrem(zkey, *stale)

            start = members[-1]
            if len(members) < batch:
                break

        has_more = len(found) > limit
        found = found[:limit]
        next_cursor = None
        if has_more and found:
            next_cursor = encode_cursor(*found[-1][0])
        return Page(items=[item for _, item in found], cursor=next_cursor)

    async def ping(self) -> bool:
        return bool(await self._guard("ping", self._redis.ping))
