from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from typing import List

from app.models.geo import SearchCandidate
from app.services.app_services import AppServices, get_services
from app.services.errors import NetworkError
from config import settings

router = APIRouter(prefix="/geo", tags=["geo"])


class SearchResponse(BaseModel):
    query: str
    results: List[SearchCandidate]


class ReverseResponse(BaseModel):
    lat: float
    lng: float
    label: str


@router.get("/search", response_model=SearchResponse)
async def search(q: str = Query(..., min_length=1),
                 limit: int = Query(settings.SEARCH_RESULT_LIMIT, ge=1, le=10),
                 services: AppServices = Depends(get_services)):
    try:
        results = await services.geo.search(q, limit=limit)
    except NetworkError as e:
        raise HTTPException(502, detail=f"geocoder_error:{e}")
    return SearchResponse(query=q, results=results)


@router.get("/reverse", response_model=ReverseResponse)
async def reverse(lat: float = Query(..., ge=-90, le=90),
                  lng: float = Query(..., ge=-180, le=180),
                  services: AppServices = Depends(get_services)):
    # best effort: falls back to formatted coordinates
    label = await services.geo.reverse_geocode(lat, lng)
    return ReverseResponse(lat=lat, lng=lng, label=label)
