"""Leaderboard endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from catmap.api.schemas import LeaderboardEntryResponse, LeaderboardResponse
from catmap.dependencies import Services, get_services

router = APIRouter(prefix="/api/v1/leaderboard", tags=["Leaderboard"])


@router.get("/{scope}", response_model=LeaderboardResponse)
async def top_n(
    scope: str,
    n: int = Query(10),
    services: Services = Depends(get_services),  # noqa: B008
) -> LeaderboardResponse:
    """Top ``n`` treat givers in ``scope``; out-of-range ``n`` is a 422."""
    rows = await services.leaderboard.top_n(scope, n)
    return LeaderboardResponse(
        scope=scope,
        entries=[
            LeaderboardEntryResponse(rank=i + 1, user_id=user_id, count=count)
            for i, (user_id, count) in enumerate(rows)
        ],
    )
