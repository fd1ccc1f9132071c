"""Counter reconciliation.

Counters on cats and UserStats are caches; the visit and treat ledgers are the
truth. Recounting the ledger and overwriting the counter repairs any drift
left by an interrupted or doubly applied increment.

Ledger items whose counter step is still outstanding are counted, and their
step markers are written onto the counter together with the new value, so
the step finds itself already applied when it runs.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from catmap.cats.registry import CatRegistry
from catmap.identity import Identity
from catmap.leaderboard.service import Leaderboard
from catmap.treats.service import TreatService
from catmap.visits.ledger import VisitLedger

logger = structlog.get_logger()


@dataclass(frozen=True)
class CatCounts:
    cat_id: str
    visit_count: int
    treat_count: int
    visit_drift: int
    treat_drift: int


class Reconciler:
    """Recomputes cached counters from the ledgers."""

    def __init__(
        self,
        cats: CatRegistry,
        visits: VisitLedger,
        treats: TreatService,
        leaderboard: Leaderboard,
    ) -> None:
        self._cats = cats
        self._visits = visits
        self._treats = treats
        self._leaderboard = leaderboard

    async def reconcile_cat(self, cat_id: str) -> CatCounts:
        cat = await self._cats.get(cat_id)
        visits = await self._visits.tally_for_cat(cat_id)
        treats = await self._treats.tally_for_cat(cat_id)

        # Pending markers are recorded with the value so the outstanding steps become no-ops
        if visits.count != cat.visit_count or visits.pending:
            await self._cats.set_counter(cat_id, "visitCount", visits.count, markers=visits.pending)
        if treats.count != cat.treat_count or treats.pending:
            await self._cats.set_counter(cat_id, "treatCount", treats.count, markers=treats.pending)

        counts = CatCounts(
            cat_id=cat_id,
            visit_count=visits.count,
            treat_count=treats.count,
            visit_drift=cat.visit_count - visits.count,
            treat_drift=cat.treat_count - treats.count,
        )
        logger.info(
            "counters_reconciled",
            cat_id=cat_id,
            visit_drift=counts.visit_drift,
            treat_drift=counts.treat_drift,
            pending=len(visits.pending) + len(treats.pending),
        )
        return counts

    async def reconcile_user(self, user_id: str, scope: str) -> int:
        """Recount a user's treats in ``scope`` and store the result. Returns the count."""
        tally = await self._treats.tally_for_visitor(Identity.user(user_id), scope)
        stat = await self._leaderboard.get_stat(user_id, scope)
        previous = stat.count if stat else 0
        if stat is None and tally.count == 0:
            return 0
        if previous != tally.count or tally.pending:
            await self._leaderboard.set_count(user_id, scope, tally.count, markers=tally.pending)
        logger.info(
            "user_stat_reconciled",
            user_id=user_id,
            scope=scope,
            drift=previous - tally.count,
            pending=len(tally.pending),
        )
        return tally.count
