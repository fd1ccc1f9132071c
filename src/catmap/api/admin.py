"""Moderation and maintenance endpoints. Admin group only."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from catmap.api.schemas import (
    CatPageResponse,
    CatReconcileResponse,
    CatResponse,
    ModerationRequest,
    ModerationResponse,
    UserReconcileResponse,
)
from catmap.dependencies import Services, get_services, require_admin
from catmap.identity import Identity

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


@router.get("/cats/pending", response_model=CatPageResponse)
async def pending_queue(
    cursor: str | None = Query(None),
    limit: int | None = Query(None, ge=1, le=200),
    _admin: Identity = Depends(require_admin),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> CatPageResponse:
    """Pending submissions, oldest first."""
    page = await services.cats.query_pending_queue(cursor=cursor, limit=limit)
    return CatPageResponse(
        cats=[CatResponse.from_cat(c, services.cats.image_url(c)) for c in page.items],
        cursor=page.cursor,
    )


@router.post("/cats/{cat_id}/moderation", response_model=ModerationResponse)
async def moderate(
    cat_id: str,
    body: ModerationRequest,
    admin: Identity = Depends(require_admin),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> ModerationResponse:
    cat = await services.cats.moderate(cat_id, body.decision, moderator=admin.key, reason=body.reason)
    return ModerationResponse(cat_id=cat.cat_id, status=cat.status)


@router.delete("/cats/{cat_id}/comments/{comment_id}", status_code=204)
async def remove_comment(
    cat_id: str,
    comment_id: str,
    admin: Identity = Depends(require_admin),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> None:
    await services.comments.remove(cat_id, comment_id, moderator=admin.key)


@router.post("/reconcile/cats/{cat_id}", response_model=CatReconcileResponse)
async def reconcile_cat(
    cat_id: str,
    _admin: Identity = Depends(require_admin),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> CatReconcileResponse:
    """Recount a cat's visits and treats from the ledgers."""
    counts = await services.reconciler.reconcile_cat(cat_id)
    return CatReconcileResponse(**counts.__dict__)


@router.post("/reconcile/users/{user_id}", response_model=UserReconcileResponse)
async def reconcile_user(
    user_id: str,
    scope: str = Query(...),
    _admin: Identity = Depends(require_admin),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> UserReconcileResponse:
    count = await services.reconciler.reconcile_user(user_id, scope)
    return UserReconcileResponse(user_id=user_id, scope=scope, count=count)
