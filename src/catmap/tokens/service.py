"""Short-lived, single-use visit tokens that gate treats and comments.

Tokens are random url-safe strings generated with ``secrets``. Redemption is
one atomic read-and-mark on the token's own key, so of any number of
concurrent redemptions exactly one succeeds. The stored ``expiresAt`` doubles
as the storage TTL attribute, so spent and abandoned tokens are purged by the
backend; until then an expired token is still refused here.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Any

import structlog

from catmap.config import Settings
from catmap.errors import (
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenScopeError,
    ValidationError,
)
from catmap.models import VisitToken, now_iso
from catmap.storage.base import StorageEngine
from catmap.storage.tables import VISIT_TOKENS

logger = structlog.get_logger()

TOKEN_ACTIONS = frozenset({"treat", "comment"})


def token_scope(action: str, cat_id: str) -> str:
    """Scope string a token authorizes, e.g. ``treat:<catId>``."""
    if action not in TOKEN_ACTIONS:
        msg = f"Unknown token action {action!r}"
        raise ValidationError(msg)
    if not cat_id:
        msg = "Token scope needs a catId"
        raise ValidationError(msg)
    return f"{action}:{cat_id}"


def _redacted(token: str) -> str:
    return f"{token[:6]}..."


class TokenService:
    """Owns VisitToken records."""

    def __init__(
        self,
        store: StorageEngine,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock

    async def issue(self, scope: str, ttl_seconds: int | None = None) -> VisitToken:
        """Create an unconsumed token for ``scope`` valid for ``ttl_seconds``."""
        ttl = self._settings.token_default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if not 1 <= ttl <= self._settings.token_max_ttl_seconds:
            msg = f"ttl_seconds must be between 1 and {self._settings.token_max_ttl_seconds}"
            raise ValidationError(msg)
        if not scope:
            msg = "Token scope must not be empty"
            raise ValidationError(msg)

        now = self._clock()
        for _ in range(3):
            token = VisitToken(
                token=secrets.token_urlsafe(self._settings.token_bytes),
                scope=scope,
                expires_at=int(now + ttl),
                created_at=now_iso(now),
            )
            if await self._store.put_if_absent(VISIT_TOKENS, token.to_item()):
                logger.info("token_issued", token=_redacted(token.token), scope=scope, ttl=ttl)
                return token
        msg = "Failed to generate a unique token after 3 attempts"
        raise RuntimeError(msg)

    async def redeem(self, token: str, scope: str | None = None) -> bool:
        """Consume a token exactly once.

        When ``scope`` is given the token must have been issued for it; a
        mismatch is refused without consuming the token.

        Raises:
            TokenNotFoundError: Unknown (or already purged) token.
            TokenExpiredError: ``now`` is past ``expiresAt``.
            TokenAlreadyUsedError: The token was consumed before.
            TokenScopeError: The token authorizes a different scope.
        """
        if not token:
            msg = "Token not found"
            raise TokenNotFoundError(msg)
        now = self._clock()

        def consume(item: dict[str, Any] | None) -> dict[str, Any]:
            if item is None:
                msg = "Token not found"
                raise TokenNotFoundError(msg)
            if now > float(item["expiresAt"]):
                msg = "Token expired"
                raise TokenExpiredError(msg)
            if item.get("consumed"):
                msg = "Token already used"
                raise TokenAlreadyUsedError(msg)
            if scope is not None and item.get("scope") != scope:
                msg = "Token was issued for a different action"
                raise TokenScopeError(msg)
            item["consumed"] = True
            item["consumedAt"] = now_iso(now)
            return item

        try:
            await self._store.update(VISIT_TOKENS, token, None, consume)
        except (TokenNotFoundError, TokenExpiredError, TokenAlreadyUsedError, TokenScopeError) as e:
            logger.info("token_rejected", token=_redacted(token), reason=e.code)
            raise
        logger.info("token_redeemed", token=_redacted(token), scope=scope)
        return True
