"""Component graph and shared FastAPI dependencies."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException

from catmap.cats.registry import CatRegistry
from catmap.comments.ledger import CommentLedger
from catmap.config import Settings
from catmap.errors import ValidationError
from catmap.identity import Identity
from catmap.leaderboard.service import Leaderboard
from catmap.reconcile import Reconciler
from catmap.redis_client import close_redis, init_redis
from catmap.storage.base import StorageEngine
from catmap.storage.memory import MemoryStore
from catmap.storage.redis_store import RedisStore
from catmap.storage.tables import TABLES
from catmap.tokens.service import TokenService
from catmap.treats.service import TreatService
from catmap.visits.ledger import VisitLedger


@dataclass
class Services:
    """Every component, wired to one storage engine."""

    store: StorageEngine
    cats: CatRegistry
    visits: VisitLedger
    tokens: TokenService
    leaderboard: Leaderboard
    treats: TreatService
    comments: CommentLedger
    reconciler: Reconciler
    settings: Settings


def build_services(
    store: StorageEngine,
    settings: Settings,
    clock: Callable[[], float] = time.time,
) -> Services:
    cats = CatRegistry(store, settings, clock)
    tokens = TokenService(store, settings, clock)
    leaderboard = Leaderboard(store, settings, clock)
    visits = VisitLedger(store, cats, settings, clock)
    treats = TreatService(store, cats, tokens, leaderboard, settings, clock)
    comments = CommentLedger(store, cats, tokens, settings, clock)
    return Services(
        store=store,
        cats=cats,
        visits=visits,
        tokens=tokens,
        leaderboard=leaderboard,
        treats=treats,
        comments=comments,
        reconciler=Reconciler(cats, visits, treats, leaderboard),
        settings=settings,
    )


async def build_store(settings: Settings) -> StorageEngine:
    """Create the configured storage backend."""
    if settings.storage_backend == "memory":
        return MemoryStore(TABLES, ttl_grace_seconds=settings.storage_ttl_grace_seconds)
    if settings.storage_backend == "redis":
        client = await init_redis(settings.redis_url, settings.storage_timeout_seconds)
        return RedisStore(
            client,
            TABLES,
            key_prefix=settings.redis_key_prefix,
            timeout_seconds=settings.storage_timeout_seconds,
            max_attempts=settings.storage_update_max_attempts,
            ttl_grace_seconds=settings.storage_ttl_grace_seconds,
        )
    msg = f"Unknown storage backend {settings.storage_backend!r}"
    raise ValueError(msg)


_services: Services | None = None


async def init_services(settings: Settings, store: StorageEngine | None = None) -> Services:
    """Initialize the component graph (called from the app lifespan)."""
    global _services  # noqa: PLW0603
    _services = build_services(store or await build_store(settings), settings)
    return _services


async def close_services() -> None:
    global _services  # noqa: PLW0603
    if _services is not None:
        if isinstance(_services.store, RedisStore):
            await close_redis()
        _services = None


def get_services() -> Services:
    """Get the component graph (FastAPI dependency)."""
    if _services is None:
        msg = "Services not initialized. Call init_services() first."
        raise RuntimeError(msg)
    return _services


# ── Identity (verified upstream; the core never checks credentials) ──


async def get_identity(
    x_user_id: str | None = Header(None),
    x_anon_id: str | None = Header(None),
) -> Identity:
    """Caller identity from the authenticator's headers. 401 if absent."""
    try:
        if x_user_id:
            return Identity.user(x_user_id)
        if x_anon_id:
            return Identity.anon(x_anon_id)
    except ValidationError as e:
        raise HTTPException(status_code=401, detail=e.message) from e
    raise HTTPException(status_code=401, detail="Missing caller identity")


async def get_user_identity(identity: Identity = Depends(get_identity)) -> Identity:  # noqa: B008
    """Same as get_identity but rejects anonymous callers."""
    if identity.anonymous:
        raise HTTPException(status_code=401, detail="Sign-in required")
    return identity


async def require_admin(
    identity: Identity = Depends(get_user_identity),  # noqa: B008
    x_user_groups: str | None = Header(None),
    services: Services = Depends(get_services),  # noqa: B008
) -> Identity:
    """Capability check for moderation endpoints."""
    groups = {g.strip() for g in (x_user_groups or "").split(",") if g.strip()}
    if services.settings.admin_group not in groups:
        raise HTTPException(status_code=403, detail="Admin group membership required")
    return identity
