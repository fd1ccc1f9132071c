"""Append-only comment stream per cat.

Comments live in the cat's partition under ``COMMENT#<createdAt>#<visitorId>``,
so a partition range scan returns them in time order. The part after
``COMMENT#`` is the public comment id.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from catmap.cats.registry import CatRegistry
from catmap.config import Settings
from catmap.errors import ConflictError, NotFoundError, ValidationError
from catmap.identity import Identity
from catmap.models import Comment, now_iso
from catmap.storage.base import StorageEngine
from catmap.storage.tables import CAT_COMMENTS, cat_key
from catmap.tokens.service import TokenService, token_scope

logger = structlog.get_logger()

COMMENT_PREFIX = "COMMENT#"


@dataclass
class CommentPage:
    items: list[Comment] = field(default_factory=list)
    cursor: str | None = None


class CommentLedger:
    """Owns Comment records."""

    def __init__(
        self,
        store: StorageEngine,
        cats: CatRegistry,
        tokens: TokenService,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._cats = cats
        self._tokens = tokens
        self._settings = settings
        self._clock = clock

    def _validate_body(self, body: str) -> str:
        text = (body or "").strip()
        if not text:
            msg = "Comment body must not be empty"
            raise ValidationError(msg)
        if len(text) > self._settings.comment_max_length:
            msg = f"Comment body exceeds {self._settings.comment_max_length} characters"
            raise ValidationError(msg)
        return text

    async def post(self, cat_id: str, visitor: Identity, body: str, token: str | None = None) -> str:
        """Append a comment. Returns its comment id.

        When ``token`` is given it must be a live ``comment:<catId>`` token and
        is spent before anything is written.

        Raises:
            ValidationError: Empty or over-long body.
            NotFoundError: Cat missing or not approved.
        """
        text = self._validate_body(body)
        await self._cats.get_approved(cat_id)
        if token is not None:
            await self._tokens.redeem(token, scope=token_scope("comment", cat_id))

        # Same visitor within the same microsecond: take the next timestamp
        now = self._clock()
        for attempt in range(5):
            created_at = now_iso(now + attempt * 1e-6)
            comment = Comment(
                pk=cat_key(cat_id),
                sk=f"{COMMENT_PREFIX}{created_at}#{visitor.key}",
                cat_id=cat_id,
                visitor_id=visitor.key,
                body=text,
                created_at=created_at,
            )
            if await self._store.put_if_absent(CAT_COMMENTS, comment.to_item()):
                logger.info("comment_posted", cat_id=cat_id, visitor=visitor.key, length=len(text))
                return comment.comment_id
        msg = "Could not allocate a comment id"
        raise ConflictError(msg)

    async def list_by_cat(
        self,
        cat_id: str,
        cursor: str | None = None,
        limit: int | None = None,
        newest_first: bool | None = None,
    ) -> CommentPage:
        """One page of a cat's comments in time order."""
        if newest_first is None:
            newest_first = self._settings.comment_order == "desc"
        page = await self._store.query(
            CAT_COMMENTS,
            cat_key(cat_id),
            prefix=COMMENT_PREFIX,
            cursor=cursor,
            limit=limit or self._settings.comment_page_size,
            descending=newest_first,
        )
        return CommentPage([Comment.from_item(i) for i in page.items], page.cursor)

    async def remove(self, cat_id: str, comment_id: str, moderator: str | None = None) -> None:
        """Moderation removal of one comment."""
        sk = f"{COMMENT_PREFIX}{comment_id}"
        if await self._store.get(CAT_COMMENTS, cat_key(cat_id), sk) is None:
            msg = f"Comment {comment_id} not found"
            raise NotFoundError(msg)
        await self._store.delete(CAT_COMMENTS, cat_key(cat_id), sk)
        logger.info("comment_removed", cat_id=cat_id, comment_id=comment_id, moderator=moderator)
