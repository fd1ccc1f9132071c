"""Leaderboard: per-user, per-scope treat counts with a rank-ordered index.

Each UserStat item holds ``count`` and, in the same write, the index key pair
``gsi1pk = SCOPE#<scope>`` / ``gsi1sk = <rank key>``. The rank key is::

    f"{MAX_COUNT - count:010d}#{user_id}"

The count is stored complemented, so one ascending lexicographic scan of a
scope's index partition returns the highest count first, and equal counts
come out in ascending user id order. The 10-digit field caps a count at
MAX_COUNT; going beyond it is a ValidationError, never a wrap-around.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import structlog

from catmap.config import Settings
from catmap.counters import record_markers
from catmap.errors import ValidationError
from catmap.models import UserStat, now_iso
from catmap.storage.base import StorageEngine
from catmap.storage.tables import GSI_LEADERBOARD, USER_STATS, scope_key, user_key

logger = structlog.get_logger()

RANK_WIDTH = 10
MAX_COUNT = 10**RANK_WIDTH - 1


def build_rank_key(count: int, user_id: str) -> str:
    """Rank key for ``count``; ascending order is descending count."""
    if not 0 <= count <= MAX_COUNT:
        msg = f"Count {count} does not fit in a {RANK_WIDTH}-digit rank key"
        raise ValidationError(msg)
    return f"{MAX_COUNT - count:0{RANK_WIDTH}d}#{user_id}"


def parse_rank_key(rank_key: str) -> tuple[int, str]:
    """Inverse of build_rank_key: (count, user_id)."""
    inverted, _, user_id = rank_key.partition("#")
    return MAX_COUNT - int(inverted), user_id


def _validate_scope(scope: str) -> None:
    if not scope or "#" in scope:
        msg = f"Invalid leaderboard scope {scope!r}"
        raise ValidationError(msg)


class Leaderboard:
    """Owns UserStat records."""

    def __init__(
        self,
        store: StorageEngine,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock

    def _stat_item(
        self,
        user_id: str,
        scope: str,
        count: int,
        previous: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        stat = UserStat(
            pk=user_key(user_id),
            sk=scope_key(scope),
            user_id=user_id,
            scope=scope,
            count=count,
            gsi1pk=scope_key(scope),
            gsi1sk=build_rank_key(count, user_id),
            updated_at=now_iso(self._clock()),
        )
        item = stat.to_item()
        if previous and previous.get("appliedSteps"):
            item["appliedSteps"] = previous["appliedSteps"]
        return item

    async def increment_score(self, user_id: str, scope: str, marker: str | None = None) -> int:
        """Add one to the user's count in ``scope``. Returns the new count.

        Count and rank key are written together in one atomic update. With a
        ``marker`` the increment happens at most once per marker.

        Raises:
            ValidationError: If the count would exceed MAX_COUNT.
        """
        _validate_scope(scope)

        def bump(item: dict[str, Any] | None) -> dict[str, Any] | None:
            if item and marker is not None and marker in item.get("appliedSteps", []):
                return None
            current = int(item["count"]) if item else 0
            new = self._stat_item(user_id, scope, current + 1, item)
            if marker is not None:
                record_markers(new, [marker])
            return new

        stored = await self._store.update(USER_STATS, user_key(user_id), scope_key(scope), bump)
        return int(stored["count"])

    async def set_count(self, user_id: str, scope: str, count: int, markers: list[str] | None = None) -> None:
        """Overwrite a count. Used by reconciliation only.

        ``markers`` name ledger steps already included in ``count``.
        """
        _validate_scope(scope)

        def assign(item: dict[str, Any] | None) -> dict[str, Any]:
            new = self._stat_item(user_id, scope, count, item)
            if markers:
                record_markers(new, markers)
            return new

        await self._store.update(USER_STATS, user_key(user_id), scope_key(scope), assign)

    async def get_stat(self, user_id: str, scope: str) -> UserStat | None:
        item = await self._store.get(USER_STATS, user_key(user_id), scope_key(scope))
        return UserStat.from_item(item) if item else None

    async def top_n(self, scope: str, n: int) -> list[tuple[str, int]]:
        """Top ``n`` (user_id, count) pairs in ``scope``, best first.

        Raises:
            ValidationError: If ``n`` is outside 1..leaderboard_max_n.
        """
        _validate_scope(scope)
        if not 1 <= n <= self._settings.leaderboard_max_n:
            msg = f"n must be between 1 and {self._settings.leaderboard_max_n}"
            raise ValidationError(msg)

        page = await self._store.query_index(USER_STATS, GSI_LEADERBOARD, scope_key(scope), limit=n)
        return [(item["userId"], int(item["count"])) for item in page.items]
