"""Completion of the derived counter updates behind a ledger write.

A ledger item (a visit or a treat) is the durable fact; the counters it
implies are applied afterwards, one per-key update at a time. The item lists
those ``steps``, records the ones already ``applied``, and carries a claim
(``claimId``/``claimedAt``) naming the request currently applying them.

The creating request holds the claim from the moment the item is written.
A later duplicate request may take the claim over only once it is older
than the lease, so concurrent duplicates never apply a step twice, while a
request that crashed half way is finished by the next retry.

Each step is also idempotent on its own target: the counter update receives
a marker naming the ledger item and step, and records it in the counter
item's ``appliedSteps`` in the same atomic write. A retried or resumed step
whose marker is already there changes nothing, so a write that committed
but whose reply was lost is never counted twice.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from catmap.storage.base import StorageEngine
from catmap.storage.retry import retry_async

logger = structlog.get_logger()

ApplyFn = Callable[[str, str], Awaitable[Any]]

# How many step markers a counter item remembers
APPLIED_STEPS_LIMIT = 64


def step_marker(table: str, pk: str, sk: str, step: str) -> str:
    """Identity of one step of one ledger item, recorded on the counter it changed."""
    return f"{table}|{pk}|{sk}|{step}"


def record_markers(item: dict[str, Any], markers: list[str]) -> None:
    """Append ``markers`` to the item's ``appliedSteps``, keeping the newest entries."""
    seen = [m for m in item.get("appliedSteps", []) if m not in markers] + list(markers)
    item["appliedSteps"] = seen[-max(APPLIED_STEPS_LIMIT, len(markers)) :]


@dataclass
class Tally:
    """Ledger items behind one counter.

    ``pending`` holds the markers of counted items whose step has not been
    marked applied yet.
    """

    count: int = 0
    pending: list[str] = field(default_factory=list)


class CounterSteps:
    """Claim and run the pending steps recorded on ledger items of one table."""

    def __init__(
        self,
        store: StorageEngine,
        table: str,
        lease_seconds: float = 30.0,
        retry_attempts: int = 5,
        retry_base_delay: float = 0.05,
        retry_max_delay: float = 2.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._table = table
        self._lease = lease_seconds
        self._attempts = retry_attempts
        self._base_delay = retry_base_delay
        self._max_delay = retry_max_delay
        self._clock = clock

    def stamp(self, item: dict[str, Any], steps: list[str]) -> str:
        """Mark a not-yet-written ledger item as claimed by the caller. Returns the claim id."""
        claim_id = uuid.uuid4().hex
        item["steps"] = list(steps)
        item["applied"] = []
        item["claimId"] = claim_id
        item["claimedAt"] = self._clock()
        return claim_id

    @staticmethod
    def remaining(item: dict[str, Any]) -> list[str]:
        applied = set(item.get("applied", []))
        return [s for s in item.get("steps", []) if s not in applied]

    def pending_marker(self, item: dict[str, Any], step: str) -> str | None:
        """Marker of ``step`` on a stored ledger item if that step is still outstanding."""
        if step not in self.remaining(item):
            return None
        return step_marker(self._table, item["pk"], item["sk"], step)

    async def claim(self, pk: str, sk: str) -> str | None:
        """Take over an item whose claim has lapsed and which still has steps left.

        Returns the new claim id, or None when nothing is left to do or another
        request still holds a live claim.
        """
        claim_id = uuid.uuid4().hex
        now = self._clock()

        def take(item: dict[str, Any] | None) -> dict[str, Any] | None:
            if item is None or not self.remaining(item):
                return None
            if float(item.get("claimedAt", 0)) + self._lease > now:
                return None
            item["claimId"] = claim_id
            item["claimedAt"] = now
            return item

        stored = await self._store.update(self._table, pk, sk, take)
        if stored is not None and stored.get("claimId") == claim_id:
            logger.info("counter_claim_taken_over", table=self._table, pk=pk, sk=sk)
            return claim_id
        return None

    async def run_remaining(self, pk: str, sk: str, claim_id: str, apply: ApplyFn) -> list[str]:
        """Apply each step not yet applied, marking it done after it succeeds.

        Each step is retried on transient storage failures. Only steps that are
        still outstanding are run, never the ledger write itself.
        """
        item = await retry_async(
            lambda: self._store.get(self._table, pk, sk),
            op=f"{self._table}.get",
            attempts=self._attempts,
            base_delay=self._base_delay,
            max_delay=self._max_delay,
        )
        if item is None:
            return []

        done = []
        for step in self.remaining(item):
            marker = step_marker(self._table, pk, sk, step)
            await retry_async(
                lambda step=step, marker=marker: apply(step, marker),
                op=f"{self._table}.step.{step}",
                attempts=self._attempts,
                base_delay=self._base_delay,
                max_delay=self._max_delay,
                event="counter_step_retry",
            )
            await retry_async(
                lambda step=step: self._mark(pk, sk, step),
                op=f"{self._table}.mark",
                attempts=self._attempts,
                base_delay=self._base_delay,
                max_delay=self._max_delay,
            )
            done.append(step)

        if done:
            logger.debug("counter_steps_applied", table=self._table, pk=pk, sk=sk, steps=done, claim=claim_id)
        return done

    async def _mark(self, pk: str, sk: str, step: str) -> None:
        def mark(item: dict[str, Any] | None) -> dict[str, Any] | None:
            if item is None or step in item.get("applied", []):
                return None
            item.setdefault("applied", []).append(step)
            return item

        await self._store.update(self._table, pk, sk, mark)
