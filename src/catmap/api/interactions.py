"""Visitor interactions: visits, visit tokens, treats and comments."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from catmap.api.schemas import (
    CommentPageResponse,
    CommentResponse,
    IssueTokenRequest,
    PostCommentRequest,
    PostCommentResponse,
    TokenResponse,
    TreatRequest,
    TreatResponse,
    VisitResponse,
)
from catmap.dependencies import Services, get_identity, get_services
from catmap.errors import ValidationError
from catmap.identity import Identity
from catmap.tokens.service import token_scope

router = APIRouter(prefix="/api/v1", tags=["Interactions"])


@router.post("/cats/{cat_id}/visits", response_model=VisitResponse)
async def record_visit(
    cat_id: str,
    identity: Identity = Depends(get_identity),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> VisitResponse:
    """Record a visit; repeating it is harmless."""
    result = await services.visits.record_visit(identity, cat_id)
    return VisitResponse(created=result.created)


@router.post("/tokens", response_model=TokenResponse, status_code=201)
async def issue_token(
    body: IssueTokenRequest,
    _identity: Identity = Depends(get_identity),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> TokenResponse:
    """Issue a single-use token for one treat or comment on one cat."""
    await services.cats.get_approved(body.cat_id)
    token = await services.tokens.issue(token_scope(body.action, body.cat_id), body.ttl_seconds)
    return TokenResponse(token=token.token, scope=token.scope, expires_at=token.expires_at)


@router.post("/cats/{cat_id}/treats", response_model=TreatResponse)
async def give_treat(
    cat_id: str,
    body: TreatRequest,
    identity: Identity = Depends(get_identity),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> TreatResponse:
    """Give a treat. A repeat from the same visitor reports AlreadyGiven."""
    result = await services.treats.give_treat(cat_id, identity, body.token)
    return TreatResponse(status=result.status.value, treat_count=result.treat_count)


@router.post("/cats/{cat_id}/comments", response_model=PostCommentResponse, status_code=201)
async def post_comment(
    cat_id: str,
    body: PostCommentRequest,
    identity: Identity = Depends(get_identity),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> PostCommentResponse:
    if services.settings.require_comment_token and not body.token:
        msg = "A comment token is required"
        raise ValidationError(msg)
    comment_id = await services.comments.post(cat_id, identity, body.body, token=body.token)
    return PostCommentResponse(comment_id=comment_id)


@router.get("/cats/{cat_id}/comments", response_model=CommentPageResponse)
async def list_comments(
    cat_id: str,
    cursor: str | None = Query(None),
    limit: int | None = Query(None, ge=1, le=200),
    services: Services = Depends(get_services),  # noqa: B008
) -> CommentPageResponse:
    await services.cats.get_approved(cat_id)
    page = await services.comments.list_by_cat(cat_id, cursor=cursor, limit=limit)
    return CommentPageResponse(
        comments=[CommentResponse.from_comment(c) for c in page.items],
        cursor=page.cursor,
    )
