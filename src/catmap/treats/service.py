"""Treat deduplication: at most one treat per (cat, visitor).

Order of effects for ``give_treat``:

1. Redeem the visit token (nothing is recorded if that fails).
2. Create-if-absent the treat item; it is the durable fact and lists the
   counter steps it implies: the cat's ``treatCount`` and, for signed-in
   users, one leaderboard step per scope.
3. Apply each step with its own atomic update, retrying transient failures.

A duplicate gets ``ALREADY_GIVEN`` and changes nothing, unless it finds a
treat whose creator died before finishing step 3 and whose claim has lapsed,
in which case it finishes only the missing steps.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from catmap.cats.registry import CatRegistry
from catmap.config import Settings
from catmap.counters import CounterSteps, Tally
from catmap.errors import ValidationError
from catmap.identity import Identity
from catmap.leaderboard.service import Leaderboard
from catmap.models import Cat, Treat, now_iso
from catmap.storage.base import StorageEngine
from catmap.storage.tables import CAT_TREATS, GSI_TREATS_BY_VISITOR, cat_key, visitor_key
from catmap.tokens.service import TokenService, token_scope

logger = structlog.get_logger()

STEP_CAT = "cat"
SCOPE_STEP_PREFIX = "scope:"


class TreatStatus(str, Enum):
    AWARDED = "Awarded"
    ALREADY_GIVEN = "AlreadyGiven"


@dataclass(frozen=True)
class TreatResult:
    status: TreatStatus
    treat_count: int | None = None


class TreatService:
    """Owns Treat records."""

    def __init__(
        self,
        store: StorageEngine,
        cats: CatRegistry,
        tokens: TokenService,
        leaderboard: Leaderboard,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._cats = cats
        self._tokens = tokens
        self._leaderboard = leaderboard
        self._settings = settings
        self._clock = clock
        self._steps = CounterSteps(
            store,
            CAT_TREATS,
            lease_seconds=settings.counter_claim_lease_seconds,
            retry_attempts=settings.storage_retry_attempts,
            retry_base_delay=settings.storage_retry_base_delay,
            retry_max_delay=settings.storage_retry_max_delay,
            clock=clock,
        )

    def scopes_for(self, cat: Cat) -> list[str]:
        """Leaderboard scopes a treat on ``cat`` counts toward."""
        scopes = [self._settings.leaderboard_global_scope]
        if cat.scope and cat.scope not in scopes:
            scopes.append(cat.scope)
        return scopes

    async def give_treat(self, cat_id: str, visitor: Identity, token: str) -> TreatResult:
        """Give ``cat_id`` a treat from ``visitor``, spending ``token``.

        Raises:
            NotFoundError: If the cat does not exist or is not approved.
            TokenError: If the token is unknown, expired, used, or for another action.
        """
        cat = await self._cats.get_approved(cat_id)
        await self._tokens.redeem(token, scope=token_scope("treat", cat_id))

        scopes = self.scopes_for(cat) if visitor.user_id else []
        treat = Treat(
            pk=cat_key(cat_id),
            sk=visitor_key(visitor.key),
            cat_id=cat_id,
            visitor_id=visitor.key,
            created_at=now_iso(self._clock()),
            scopes=scopes,
        )
        item = treat.to_item()
        claim_id = self._steps.stamp(item, [STEP_CAT, *(SCOPE_STEP_PREFIX + s for s in scopes)])

        if await self._store.put_if_absent(CAT_TREATS, item):
            await self._steps.run_remaining(treat.pk, treat.sk, claim_id, self._apply(cat_id, visitor))
            logger.info("treat_awarded", cat_id=cat_id, visitor=visitor.key, scopes=scopes)
            stored = await self._cats.get(cat_id)
            return TreatResult(TreatStatus.AWARDED, stored.treat_count)

        resumed = await self._steps.claim(treat.pk, treat.sk)
        if resumed is not None:
            await self._steps.run_remaining(treat.pk, treat.sk, resumed, self._apply(cat_id, visitor))
        logger.info("treat_already_given", cat_id=cat_id, visitor=visitor.key, resumed=resumed is not None)
        return TreatResult(TreatStatus.ALREADY_GIVEN)

    def _apply(self, cat_id: str, visitor: Identity) -> Callable:
        async def apply(step: str, marker: str) -> None:
            if step == STEP_CAT:
                await self._cats.increment_counter(cat_id, "treatCount", marker=marker)
            elif step.startswith(SCOPE_STEP_PREFIX) and visitor.user_id:
                scope = step.removeprefix(SCOPE_STEP_PREFIX)
                try:
                    await self._leaderboard.increment_score(visitor.user_id, scope, marker=marker)
                except ValidationError as e:
                    # Permanent: the step is marked applied and left uncounted
                    logger.error(
                        "leaderboard_step_failed",
                        cat_id=cat_id,
                        user_id=visitor.user_id,
                        scope=scope,
                        error=e.message,
                    )

        return apply

    async def has_given(self, cat_id: str, visitor: Identity) -> bool:
        return await self._store.get(CAT_TREATS, cat_key(cat_id), visitor_key(visitor.key)) is not None

    async def tally_for_cat(self, cat_id: str) -> Tally:
        """Treats in the ledger for ``cat_id``, with those whose cat step is outstanding."""
        tally = Tally()
        cursor = None
        while True:
            page = await self._store.query(CAT_TREATS, cat_key(cat_id), cursor=cursor, limit=500)
            for item in page.items:
                tally.count += 1
                marker = self._steps.pending_marker(item, STEP_CAT)
                if marker:
                    tally.pending.append(marker)
            if page.cursor is None:
                return tally
            cursor = page.cursor

    async def count_for_cat(self, cat_id: str) -> int:
        """Number of treats in the ledger for ``cat_id``."""
        return (await self.tally_for_cat(cat_id)).count

    async def tally_for_visitor(self, visitor: Identity, scope: str) -> Tally:
        """Ledger treats by ``visitor`` that count toward ``scope``."""
        step = SCOPE_STEP_PREFIX + scope
        tally = Tally()
        cursor = None
        while True:
            page = await self._store.query_index(
                CAT_TREATS, GSI_TREATS_BY_VISITOR, visitor.key, cursor=cursor, limit=500
            )
            for item in page.items:
                if scope not in item.get("scopes", []):
                    continue
                tally.count += 1
                marker = self._steps.pending_marker(item, step)
                if marker:
                    tally.pending.append(marker)
            if page.cursor is None:
                return tally
            cursor = page.cursor

    async def count_for_visitor(self, visitor: Identity, scope: str) -> int:
        """Number of ledger treats by ``visitor`` that counted toward ``scope``."""
        return (await self.tally_for_visitor(visitor, scope)).count
