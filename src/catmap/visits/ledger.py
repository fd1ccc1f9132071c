"""Visit ledger: at most one visit per (identity, cat).

The visit item is written with create-if-absent, so a retried or concurrent
duplicate call never writes a second visit. The winner of that write owns the
claim on the cat's ``visitCount`` step (see ``catmap.counters``); losers only
report ``created=False``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from catmap.cats.registry import CatRegistry
from catmap.config import Settings
from catmap.counters import CounterSteps, Tally
from catmap.identity import Identity
from catmap.models import Visit, now_iso
from catmap.storage.base import StorageEngine
from catmap.storage.tables import GSI_VISITS_BY_CAT, USER_VISITS, cat_key

logger = structlog.get_logger()

STEP_CAT = "cat"


@dataclass(frozen=True)
class VisitResult:
    created: bool


class VisitLedger:
    """Owns Visit records."""

    def __init__(
        self,
        store: StorageEngine,
        cats: CatRegistry,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._cats = cats
        self._clock = clock
        self._steps = CounterSteps(
            store,
            USER_VISITS,
            lease_seconds=settings.counter_claim_lease_seconds,
            retry_attempts=settings.storage_retry_attempts,
            retry_base_delay=settings.storage_retry_base_delay,
            retry_max_delay=settings.storage_retry_max_delay,
            clock=clock,
        )

    async def record_visit(self, identity: Identity, cat_id: str) -> VisitResult:
        """Record that ``identity`` saw ``cat_id``; idempotent.

        Raises:
            NotFoundError: If the cat does not exist or is not approved.
        """
        await self._cats.get_approved(cat_id)

        now = self._clock()
        visit = Visit(
            pk=identity.key,
            sk=cat_key(cat_id),
            visitor_id=identity.key,
            cat_id=cat_id,
            created_at=now_iso(now),
        )
        item = visit.to_item()
        claim_id = self._steps.stamp(item, [STEP_CAT])

        if await self._store.put_if_absent(USER_VISITS, item):
            await self._steps.run_remaining(visit.pk, visit.sk, claim_id, self._apply(cat_id))
            logger.info("visit_recorded", cat_id=cat_id, visitor=identity.key)
            return VisitResult(created=True)

        # Duplicate: finish a crashed predecessor's counter step, if any
        resumed = await self._steps.claim(visit.pk, visit.sk)
        if resumed is not None:
            await self._steps.run_remaining(visit.pk, visit.sk, resumed, self._apply(cat_id))
        logger.debug("visit_duplicate", cat_id=cat_id, visitor=identity.key, resumed=resumed is not None)
        return VisitResult(created=False)

    def _apply(self, cat_id: str) -> Callable:
        async def apply(step: str, marker: str) -> None:
            if step == STEP_CAT:
                await self._cats.increment_counter(cat_id, "visitCount", marker=marker)

        return apply

    async def has_visited(self, identity: Identity, cat_id: str) -> bool:
        return await self._store.get(USER_VISITS, identity.key, cat_key(cat_id)) is not None

    async def tally_for_cat(self, cat_id: str) -> Tally:
        """Visits in the ledger for ``cat_id``, with those whose counter step is outstanding."""
        tally = Tally()
        cursor = None
        while True:
            page = await self._store.query_index(USER_VISITS, GSI_VISITS_BY_CAT, cat_id, cursor=cursor, limit=500)
            for item in page.items:
                tally.count += 1
                marker = self._steps.pending_marker(item, STEP_CAT)
                if marker:
                    tally.pending.append(marker)
            if page.cursor is None:
                return tally
            cursor = page.cursor

    async def count_for_cat(self, cat_id: str) -> int:
        """Number of visits in the ledger for ``cat_id``."""
        return (await self.tally_for_cat(cat_id)).count
