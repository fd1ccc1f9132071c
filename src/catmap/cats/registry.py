"""Cat registry: submission, moderation lifecycle, map and queue queries.

Cats are created ``pending`` and moderated exactly once. Only ``approved``
cats are visible on the map. Counters on the cat record are caches over the
visit and treat ledgers and are only ever changed through
``increment_counter`` / ``set_counter``.
"""

from __future__ import annotations

import base64
import json
import time
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from catmap.config import Settings
from catmap.counters import record_markers
from catmap.errors import InvalidStateError, NotFoundError, ValidationError
from catmap.geo.geohash import BoundingBox, bounding_box_prefixes, encode
from catmap.models import Cat, CatStatus, ModerationDecision, now_iso
from catmap.storage.base import StorageEngine
from catmap.storage.tables import CATS, GSI_STATUS_CREATED_AT, GSI_STATUS_GEOHASH

logger = structlog.get_logger()

COUNTER_FIELDS = frozenset({"treatCount", "visitCount"})
_METADATA_FIELDS = {"name": 120, "description": 1000, "scope": 64, "imageKey": 512}


@dataclass(frozen=True)
class Location:
    lat: float
    lon: float


@dataclass
class CatPage:
    items: list[Cat] = field(default_factory=list)
    cursor: str | None = None


def _clean_metadata(metadata: dict[str, Any] | None) -> dict[str, str]:
    cleaned: dict[str, str] = {}
    for key, value in (metadata or {}).items():
        if key not in _METADATA_FIELDS:
            msg = f"Unknown cat metadata field {key!r}"
            raise ValidationError(msg)
        if value is None:
            continue
        text = str(value).strip()
        if len(text) > _METADATA_FIELDS[key]:
            msg = f"Cat {key} exceeds {_METADATA_FIELDS[key]} characters"
            raise ValidationError(msg)
        if text:
            cleaned[key] = text
    if "scope" in cleaned and "#" in cleaned["scope"]:
        msg = "Cat scope may not contain '#'"
        raise ValidationError(msg)
    return cleaned


def _encode_viewport_cursor(prefix: str, inner: str | None) -> str:
    payload = {"p": prefix, "c": inner}
    return base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()


def _decode_viewport_cursor(cursor: str) -> tuple[str, str | None]:
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode()))
        return str(data["p"]), data.get("c")
    except Exception as e:
        msg = f"Invalid cursor: {e}"
        raise ValidationError(msg) from e


class CatRegistry:
    """Owns cat records."""

    def __init__(
        self,
        store: StorageEngine,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock

    async def submit(
        self,
        location: Location,
        metadata: dict[str, Any] | None = None,
        submitted_by: str | None = None,
    ) -> str:
        """Register a new cat in ``pending``. Returns its catId."""
        geohash = encode(location.lat, location.lon, self._settings.geohash_precision)
        cat = Cat(
            cat_id=uuid.uuid4().hex,
            status=CatStatus.PENDING,
            geohash=geohash,
            lat=location.lat,
            lon=location.lon,
            created_at=now_iso(self._clock()),
            submitted_by=submitted_by,
        )
        item = {**cat.to_item(), **_clean_metadata(metadata)}

        if not await self._store.put_if_absent(CATS, item):
            # uuid4 collision; never expected in practice
            msg = "Generated catId already exists"
            raise InvalidStateError(msg)

        logger.info("cat_submitted", cat_id=cat.cat_id, geohash=geohash, submitted_by=submitted_by)
        return cat.cat_id

    async def get(self, cat_id: str) -> Cat:
        item = await self._store.get(CATS, cat_id)
        if item is None:
            msg = f"Cat {cat_id} not found"
            raise NotFoundError(msg)
        return Cat.from_item(item)

    async def get_approved(self, cat_id: str) -> Cat:
        """Fetch a cat that the public may interact with."""
        cat = await self.get(cat_id)
        if cat.status != CatStatus.APPROVED:
            msg = f"Cat {cat_id} not found"
            raise NotFoundError(msg)
        return cat

    async def moderate(
        self,
        cat_id: str,
        decision: ModerationDecision | str,
        moderator: str | None = None,
        reason: str | None = None,
    ) -> Cat:
        """Move a pending cat to approved or rejected.

        Raises:
            NotFoundError: If the cat does not exist.
            InvalidStateError: If the cat has already been moderated.
        """
        try:
            decision = ModerationDecision(decision)
        except ValueError as e:
            msg = f"Unknown moderation decision {decision!r}"
            raise ValidationError(msg) from e

        new_status = CatStatus.APPROVED if decision == ModerationDecision.APPROVE else CatStatus.REJECTED
        moderated_at = now_iso(self._clock())

        def transition(item: dict[str, Any] | None) -> dict[str, Any]:
            if item is None:
                msg = f"Cat {cat_id} not found"
                raise NotFoundError(msg)
            if item.get("status") != CatStatus.PENDING.value:
                msg = f"Cat {cat_id} is already {item.get('status')}"
                raise InvalidStateError(msg)
            item["status"] = new_status.value
            item["moderatedAt"] = moderated_at
            if moderator:
                item["moderatedBy"] = moderator
            if reason:
                item["moderationReason"] = reason
            return item

        stored = await self._store.update(CATS, cat_id, None, transition)
        logger.info("cat_moderated", cat_id=cat_id, status=new_status.value, moderator=moderator)
        return Cat.from_item(stored)

    async def query_by_viewport(
        self,
        bbox: BoundingBox,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> CatPage:
        """One page of approved cats inside ``bbox``, ordered by geohash.

        Each covering prefix is range-queried in turn on the status/geohash
        index; hits outside the exact box are dropped. The cursor names the
        prefix being read and the position inside it.
        """
        limit = limit or self._settings.viewport_page_size
        if limit < 1:
            msg = "limit must be >= 1"
            raise ValidationError(msg)

        prefixes = sorted(
            bounding_box_prefixes(bbox, self._settings.geohash_precision, self._settings.viewport_max_prefixes)
        )
        start, inner = 0, None
        if cursor is not None:
            prefix, inner = _decode_viewport_cursor(cursor)
            if prefix not in prefixes:
                msg = "Cursor does not belong to this bounding box"
                raise ValidationError(msg)
            start = prefixes.index(prefix)

        cats: list[Cat] = []
        for i in range(start, len(prefixes)):
            prefix = prefixes[i]
            while True:
                page = await self._store.query_index(
                    CATS,
                    GSI_STATUS_GEOHASH,
                    CatStatus.APPROVED.value,
                    prefix=prefix or None,
                    cursor=inner,
                    limit=limit - len(cats),
                )
                for item in page.items:
                    cat = Cat.from_item(item)
                    if bbox.contains(cat.lat, cat.lon):
                        cats.append(cat)
                inner = page.cursor
                if inner is None:
                    break
                if len(cats) >= limit:
                    return CatPage(cats, _encode_viewport_cursor(prefix, inner))
            if len(cats) >= limit:
                next_cursor = _encode_viewport_cursor(prefixes[i + 1], None) if i + 1 < len(prefixes) else None
                return CatPage(cats, next_cursor)
        return CatPage(cats, None)

    async def iter_viewport(self, bbox: BoundingBox, page_size: int | None = None) -> AsyncIterator[Cat]:
        """Lazily walk every approved cat in ``bbox``, page by page."""
        cursor = None
        while True:
            page = await self.query_by_viewport(bbox, cursor=cursor, limit=page_size)
            for cat in page.items:
                yield cat
            if page.cursor is None:
                return
            cursor = page.cursor

    async def query_pending_queue(
        self,
        cursor: str | None = None,
        limit: int | None = None,
        oldest_first: bool = True,
    ) -> CatPage:
        """Pending cats for moderation review, by creation time."""
        page = await self._store.query_index(
            CATS,
            GSI_STATUS_CREATED_AT,
            CatStatus.PENDING.value,
            cursor=cursor,
            limit=limit or self._settings.pending_page_size,
            descending=not oldest_first,
        )
        return CatPage([Cat.from_item(i) for i in page.items], page.cursor)

    async def increment_counter(
        self,
        cat_id: str,
        counter: str,
        amount: int = 1,
        marker: str | None = None,
    ) -> int:
        """Atomically add ``amount`` to a cat counter. Returns the new value.

        With a ``marker`` the increment happens at most once: the marker is
        stored with the new value, and a repeat carrying it is a no-op.
        """
        if counter not in COUNTER_FIELDS:
            msg = f"Unknown cat counter {counter!r}"
            raise ValueError(msg)

        def bump(item: dict[str, Any] | None) -> dict[str, Any] | None:
            if item is None:
                msg = f"Cat {cat_id} not found"
                raise NotFoundError(msg)
            if marker is not None:
                if marker in item.get("appliedSteps", []):
                    return None
                record_markers(item, [marker])
            item[counter] = int(item.get(counter, 0)) + amount
            return item

        stored = await self._store.update(CATS, cat_id, None, bump)
        return int(stored[counter])

    async def set_counter(self, cat_id: str, counter: str, value: int, markers: list[str] | None = None) -> None:
        """Overwrite a cat counter. Used by reconciliation only.

        ``markers`` name ledger steps already included in ``value``; they are
        recorded so those steps are skipped if they run later.
        """
        if counter not in COUNTER_FIELDS:
            msg = f"Unknown cat counter {counter!r}"
            raise ValueError(msg)

        def assign(item: dict[str, Any] | None) -> dict[str, Any]:
            if item is None:
                msg = f"Cat {cat_id} not found"
                raise NotFoundError(msg)
            item[counter] = value
            if markers:
                record_markers(item, markers)
            return item

        await self._store.update(CATS, cat_id, None, assign)

    def image_url(self, cat: Cat) -> str | None:
        if not cat.image_key or not self._settings.images_cdn_base:
            return None
        return f"{self._settings.images_cdn_base.rstrip('/')}/{cat.image_key.lstrip('/')}"
