"""Create-report modal surface (missing or found).

Exposes the three hooks the presentation layer uses: `initial_coordinates`
for prefill, `on_submit(draft, photo)` and `on_cancel()`. The location field
has its own debounced autocomplete stream (5 suggestions). Reverse-geocoded
labels (map-click prefill, "my location") are generation-checked too: if the
user types in the field before the label arrives, the label is dropped.
"""
from __future__ import annotations
import asyncio
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from app.domain import pet_report_schema as schema
from app.models.geo import Coordinates, SearchCandidate
from app.models.reports import Category, PetReport, PetReportDraft
from app.scripts.logging_config import get_logger
from app.services.debounced_query import DebouncedQuery
from app.services.geo_search import GeoSearchClient
from app.services.media_store import PhotoUpload
from config import settings

logger = get_logger("report_form")

SubmitHandler = Callable[[PetReportDraft, Optional[PhotoUpload]], Awaitable[PetReport]]

TEXT_FIELDS = ("pet_name", "breed", "species", "contact")


class ReportForm:
    def __init__(self, category: Category | str, geo: GeoSearchClient, *,
                 on_submit: SubmitHandler,
                 on_cancel: Optional[Callable[[], None]] = None,
                 on_change: Optional[Callable[["ReportForm"], None]] = None,
                 initial_coordinates: Optional[Coordinates] = None,
                 debounce_delay: Optional[float] = None):
        self.category = Category(category)
        self._geo = geo
        self._on_submit = on_submit
        self._on_cancel = on_cancel
        self._on_change = on_change
        self.initial_coordinates = initial_coordinates

        self.pet_name = ""
        self.breed = ""
        self.species = schema.DEFAULT_SPECIES
        self.contact = ""
        self.coords: Optional[Coordinates] = None
        self.photo: Optional[PhotoUpload] = None
        self.error: Optional[str] = None
        self.submitting = False

        self.location = DebouncedQuery(
            partial(geo.search, limit=settings.AUTOCOMPLETE_RESULT_LIMIT),
            delay=debounce_delay,
            on_change=lambda _dq: self._notify(),
            name=f"{self.category.value}.location",
        )
        self._label_generation = 0
        self._label_task: Optional[asyncio.Task] = None
        self._closed = False

        if initial_coordinates is not None:
            self.coords = initial_coordinates
            self._resolve_label(initial_coordinates)

    @property
    def location_label(self) -> str:
        return self.location.text

    @property
    def closed(self) -> bool:
        return self._closed

    # --------------------------- field edits ---------------------------

    def set_field(self, name: str, value: Any) -> bool:
        if self._closed:
            return False
        if name == "location_label":
            self.location_input(value)
            return True
        if name not in TEXT_FIELDS:
            return False
        setattr(self, name, "" if value is None else str(value))
        self.error = None
        self._notify()
        return True

    def location_input(self, text: str) -> None:
        if self._closed:
            return
        # typed text no longer matches any resolved point
        self.coords = None
        self._label_generation += 1
        self._cancel_label_task()
        self.location.on_input(text or "")

    def select_suggestion(self, place_id: str) -> Optional[SearchCandidate]:
        if self._closed:
            return None
        cand = next((s for s in self.location.suggestions if s.place_id == place_id), None)
        if cand is None:
            return None
        self._label_generation += 1
        self._cancel_label_task()
        self.coords = cand.coordinates
        self.location.reset(cand.display_name)
        return cand

    def use_my_location(self, lat: float, lng: float) -> None:
        if self._closed:
            return
        self.coords = Coordinates(lat=lat, lng=lng)
        self.location.reset(self.location.text)
        self._resolve_label(self.coords)
        self._notify()

    def set_photo(self, photo: Optional[PhotoUpload]) -> None:
        if self._closed:
            return
        self.photo = photo
        self._notify()

    # --------------------------- label resolution ---------------------------

    def _cancel_label_task(self) -> None:
        task, self._label_task = self._label_task, None
        if task is not None and not task.done():
            task.cancel()

    def _resolve_label(self, coords: Coordinates) -> None:
        self._label_generation += 1
        self._cancel_label_task()
        self._label_task = asyncio.get_running_loop().create_task(
            self._apply_label(self._label_generation, coords))

    async def _apply_label(self, generation: int, coords: Coordinates) -> None:
        label = await self._geo.reverse_geocode(coords.lat, coords.lng)
        if generation != self._label_generation or self._closed:
            logger.debug("form.label_discard gen=%d current=%d", generation, self._label_generation)
            return
        self.location.reset(label)

    async def settle(self) -> None:
        task = self._label_task
        if task is not None and not task.done():
            await asyncio.wait({task})
        await self.location.settle()

    # --------------------------- submit / cancel ---------------------------

    def build_draft(self) -> PetReportDraft:
        return PetReportDraft(
            category=self.category,
            pet_name=self.pet_name,
            breed=self.breed,
            species=self.species,
            location_label=self.location_label,
            contact=self.contact,
            lat=self.coords.lat if self.coords else None,
            lng=self.coords.lng if self.coords else None,
        )

    async def submit(self) -> PetReport:
        """Build and hand the draft to on_submit. On failure the fields stay as they are."""
        if self._closed:
            raise RuntimeError("form is closed")
        if self.submitting:
            raise RuntimeError("submit already in progress")
        try:
            draft = self.build_draft()
        except ValidationError as e:
            self.error = "; ".join(f"{'.'.join(str(p) for p in err['loc']) or 'form'}: {err['msg']}"
                                   for err in e.errors())
            self._notify()
            raise
        self.submitting = True
        self.error = None
        self._notify()
        try:
            report = await self._on_submit(draft, self.photo)
        except Exception as e:
            self.error = str(e) or type(e).__name__
            raise
        finally:
            self.submitting = False
            self._notify()
        return report

    def cancel(self) -> None:
        if self._closed:
            return
        if self._on_cancel is not None:
            self._on_cancel()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._label_generation += 1
        self._cancel_label_task()
        self.location.close()

    # --------------------------- view ---------------------------

    def _notify(self) -> None:
        if self._closed or self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception:
            logger.exception("form.on_change failed")

    def to_view(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "pet_name": self.pet_name,
            "breed": self.breed,
            "species": self.species,
            "contact": self.contact,
            "location": self.location.to_view(),
            "coords": self.coords.model_dump() if self.coords else None,
            "photo": {"content_type": self.photo.content_type, "bytes": self.photo.size,
                      "filename": self.photo.filename} if self.photo else None,
            "submitting": self.submitting,
            "error": self.error,
        }
