from __future__ import annotations
import math
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float

    @field_validator("lat", "lng")
    @classmethod
    def _finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("coordinate must be a finite number")
        return v


class SearchCandidate(BaseModel):
    """One place-search hit. Lives only as long as the query session that produced it."""
    model_config = ConfigDict(frozen=True)

    place_id: str
    display_name: str
    lat: float
    lng: float
    kind: Optional[str] = None

    @field_validator("lat", "lng")
    @classmethod
    def _finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("coordinate must be a finite number")
        return v

    @classmethod
    def from_nominatim(cls, item: Dict[str, Any]) -> "SearchCandidate":
        # Nominatim returns lat/lon as strings and place_id as int
        return cls(
            place_id=str(item.get("place_id") if item.get("place_id") is not None else item.get("osm_id", "")),
            display_name=item.get("display_name") or "",
            lat=float(item["lat"]),
            lng=float(item["lon"]),
            kind=item.get("type") or item.get("addresstype"),
        )

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)
