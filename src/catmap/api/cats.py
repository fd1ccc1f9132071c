"""Cat endpoints: submission, lookup, and the map viewport."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from catmap.api.schemas import CatPageResponse, CatResponse, SubmitCatRequest, SubmitCatResponse
from catmap.cats.registry import Location
from catmap.dependencies import Services, get_identity, get_services
from catmap.geo.geohash import BoundingBox
from catmap.identity import Identity
from catmap.models import CatStatus

router = APIRouter(prefix="/api/v1/cats", tags=["Cats"])


@router.post("", response_model=SubmitCatResponse, status_code=201)
async def submit_cat(
    body: SubmitCatRequest,
    identity: Identity = Depends(get_identity),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> SubmitCatResponse:
    """Submit a cat sighting; it stays pending until moderated."""
    metadata = {
        "name": body.name,
        "description": body.description,
        "scope": body.scope,
        "imageKey": body.image_key,
    }
    cat_id = await services.cats.submit(Location(body.lat, body.lon), metadata, submitted_by=identity.key)
    return SubmitCatResponse(cat_id=cat_id, status=CatStatus.PENDING.value)


@router.get("", response_model=CatPageResponse)
async def query_viewport(
    south: float = Query(..., ge=-90, le=90),
    west: float = Query(..., ge=-180, le=180),
    north: float = Query(..., ge=-90, le=90),
    east: float = Query(..., ge=-180, le=180),
    cursor: str | None = Query(None),
    limit: int | None = Query(None, ge=1, le=500),
    services: Services = Depends(get_services),  # noqa: B008
) -> CatPageResponse:
    """Approved cats inside the map viewport, ordered by geohash."""
    page = await services.cats.query_by_viewport(BoundingBox(south, west, north, east), cursor=cursor, limit=limit)
    return CatPageResponse(
        cats=[CatResponse.from_cat(c, services.cats.image_url(c)) for c in page.items],
        cursor=page.cursor,
    )


@router.get("/{cat_id}", response_model=CatResponse)
async def get_cat(
    cat_id: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> CatResponse:
    cat = await services.cats.get_approved(cat_id)
    return CatResponse.from_cat(cat, services.cats.image_url(cat))
