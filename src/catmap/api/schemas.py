"""Request/response schemas for the HTTP surface."""

from __future__ import annotations

from pydantic import BaseModel, Field

from catmap.models import Cat, Comment


# ── Cats ──


class SubmitCatRequest(BaseModel):
    lat: float
    lon: float
    name: str | None = Field(None, max_length=120)
    description: str | None = Field(None, max_length=1000)
    scope: str | None = Field(None, max_length=64)
    image_key: str | None = Field(None, max_length=512)


class SubmitCatResponse(BaseModel):
    cat_id: str
    status: str


class CatResponse(BaseModel):
    cat_id: str
    status: str
    lat: float
    lon: float
    geohash: str
    created_at: str
    treat_count: int
    visit_count: int
    name: str | None = None
    description: str | None = None
    scope: str | None = None
    image_url: str | None = None

    @classmethod
    def from_cat(cls, cat: Cat, image_url: str | None = None) -> CatResponse:
        return cls(
            cat_id=cat.cat_id,
            status=cat.status,
            lat=cat.lat,
            lon=cat.lon,
            geohash=cat.geohash,
            created_at=cat.created_at,
            treat_count=cat.treat_count,
            visit_count=cat.visit_count,
            name=cat.name,
            description=cat.description,
            scope=cat.scope,
            image_url=image_url,
        )


class CatPageResponse(BaseModel):
    cats: list[CatResponse]
    cursor: str | None = None


class ModerationRequest(BaseModel):
    decision: str = Field(..., pattern="^(approve|reject)$")
    reason: str | None = Field(None, max_length=500)


class ModerationResponse(BaseModel):
    cat_id: str
    status: str


# ── Visits / tokens / treats ──


class VisitResponse(BaseModel):
    created: bool


class IssueTokenRequest(BaseModel):
    action: str = Field(..., pattern="^(treat|comment)$")
    cat_id: str
    ttl_seconds: int | None = None


class TokenResponse(BaseModel):
    token: str
    scope: str
    expires_at: int


class TreatRequest(BaseModel):
    token: str


class TreatResponse(BaseModel):
    status: str
    treat_count: int | None = None


# ── Comments ──


class PostCommentRequest(BaseModel):
    body: str
    token: str | None = None


class PostCommentResponse(BaseModel):
    comment_id: str


class CommentResponse(BaseModel):
    comment_id: str
    visitor_id: str
    body: str
    created_at: str

    @classmethod
    def from_comment(cls, comment: Comment) -> CommentResponse:
        return cls(
            comment_id=comment.comment_id,
            visitor_id=comment.visitor_id,
            body=comment.body,
            created_at=comment.created_at,
        )


class CommentPageResponse(BaseModel):
    comments: list[CommentResponse]
    cursor: str | None = None


# ── Leaderboard ──


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: str
    count: int


class LeaderboardResponse(BaseModel):
    scope: str
    entries: list[LeaderboardEntryResponse]


# ── Reconciliation ──


class CatReconcileResponse(BaseModel):
    cat_id: str
    visit_count: int
    treat_count: int
    visit_drift: int
    treat_drift: int


class UserReconcileResponse(BaseModel):
    user_id: str
    scope: str
    count: int
