from __future__ import annotations
import math
from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional

from app.models.reports import PetReport
from config import settings

SEARCH_MARKER_KEY = "search"


@dataclass(frozen=True)
class CameraMove:
    lat: float
    lng: float
    zoom: int
    animate: bool = True


@dataclass(frozen=True)
class Marker:
    key: str           # stable across renders: category + record id
    kind: str          # missing | found | search
    lat: float
    lng: float
    title: str
    subtitle: str = ""
    contact: str = ""
    photo_url: Optional[str] = None


class MapViewport:
    """Camera state plus marker projection of the current record snapshots.

    Holds read-only views of the collections; it never mutates them.
    """

    def __init__(self, lat: Optional[float] = None, lng: Optional[float] = None,
                 zoom: Optional[int] = None, close_up_zoom: Optional[int] = None):
        self.lat = settings.MAP_DEFAULT_CENTER_LAT if lat is None else lat
        self.lng = settings.MAP_DEFAULT_CENTER_LNG if lng is None else lng
        self.zoom = settings.MAP_DEFAULT_ZOOM if zoom is None else zoom
        self.close_up_zoom = settings.MAP_CLOSE_UP_ZOOM if close_up_zoom is None else close_up_zoom
        self.search_marker: Optional[Marker] = None
        self.last_move: Optional[CameraMove] = None

    def focus(self, lat: float, lng: float, zoom: Optional[int] = None) -> Optional[CameraMove]:
        if not (math.isfinite(lat) and math.isfinite(lng)):
            return None
        # without an explicit zoom, focusing never zooms out
        target_zoom = zoom if zoom is not None else max(self.zoom, self.close_up_zoom)
        move = CameraMove(lat=lat, lng=lng, zoom=target_zoom)
        self.lat, self.lng, self.zoom = lat, lng, target_zoom
        self.last_move = move
        return move

    def set_zoom(self, zoom: int) -> None:
        self.zoom = zoom

    def set_search_marker(self, lat: float, lng: float, label: str = "") -> Marker:
        self.search_marker = Marker(key=SEARCH_MARKER_KEY, kind="search", lat=lat, lng=lng,
                                    title=label or "Search result")
        return self.search_marker

    def clear_search_marker(self) -> None:
        self.search_marker = None

    @staticmethod
    def _report_marker(report: PetReport) -> Marker:
        cat = report.category.value
        prefix = "Last seen" if cat == "missing" else "Found at"
        title = report.pet_name if cat == "missing" else f"Found Pet: {report.pet_name}"
        if report.breed:
            title = f"{title} ({report.breed})"
        return Marker(
            key=f"{cat}:{report.id}",
            kind=cat,
            lat=report.lat,
            lng=report.lng,
            title=title,
            subtitle=f"{prefix}: {report.location_label}" if report.location_label else "",
            contact=report.contact,
            photo_url=report.photo_url,
        )

    def render(self, missing: Iterable[PetReport], found: Iterable[PetReport]) -> List[Marker]:
        markers: List[Marker] = []
        seen = set()
        for report in list(missing) + list(found):
            if not report.has_location:
                continue
            m = self._report_marker(report)
            if m.key in seen:
                continue
            seen.add(m.key)
            markers.append(m)
        if self.search_marker is not None:
            markers.append(self.search_marker)
        return markers

    def to_view(self) -> dict:
        return {
            "center": {"lat": self.lat, "lng": self.lng},
            "zoom": self.zoom,
            "last_move": asdict(self.last_move) if self.last_move else None,
        }
