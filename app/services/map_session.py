"""One interactive map session (one per connected client).

Owns the UI state machine, the camera, the search-panel stream, the open
report form, and one RecordSync per category. Every public operation absorbs
failures into state (banners, form error, empty suggestions); nothing raised
by the services escapes to the transport layer.

Lifecycle:
    session = MapSession(data_service, geo, on_change=push)
    await session.start()      # initial load + push-feed subscriptions
    ...                        # operations
    session.close()            # subscriptions disposed, streams torn down
"""
from __future__ import annotations
import uuid
from dataclasses import asdict, dataclass
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from app.models.geo import Coordinates, SearchCandidate
from app.models.reports import Category, PetReport, PetReportDraft
from app.scripts.logging_config import get_logger
from app.services.data_service import RemoteDataService
from app.services.debounced_query import DebouncedQuery
from app.services.errors import PawMapError
from app.services.geo_search import GeoSearchClient
from app.services.interaction_state import (
    Cancelled, CreateOpened, Dismissed, InteractionStateMachine, MapClicked,
    SearchClosed, SearchOpened, Submitted, TypeChosen,
)
from app.services.map_viewport import MapViewport
from app.services.media_store import PhotoUpload
from app.services.record_sync import RecordSync
from app.services.report_form import ReportForm
from config import settings

logger = get_logger("map_session")

MAX_BANNERS = 5


@dataclass(frozen=True)
class Banner:
    id: str
    kind: str      # network | integrity | upload | validation
    message: str


class MapSession:
    def __init__(self, data_service: RemoteDataService, geo: GeoSearchClient, *,
                 on_change: Optional[Callable[["MapSession"], None]] = None,
                 debounce_delay: Optional[float] = None,
                 session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.geo = geo
        self._on_change = on_change
        self._debounce_delay = debounce_delay

        self.state = InteractionStateMachine()
        self.state.add_listener(self._on_state_change)
        self.viewport = MapViewport()
        self.search = DebouncedQuery(
            partial(geo.search, limit=settings.SEARCH_RESULT_LIMIT),
            delay=debounce_delay,
            on_change=lambda _dq: self._changed(),
            name="search",
        )
        self.syncs: Dict[Category, RecordSync] = {
            cat: RecordSync(data_service, cat, on_error=self._on_sync_error) for cat in Category
        }
        self.form: Optional[ReportForm] = None
        self._form_state = None
        self.banners: List[Banner] = []
        self.version = 0
        self._started = False
        self._closed = False

    # --------------------------- lifecycle ---------------------------

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        for cat, sync in self.syncs.items():
            try:
                await sync.load()
            except PawMapError as e:
                self._add_banner(e.code, str(e))
            sync.subscribe(lambda _snap: self._changed())
        logger.info("session.start id=%s missing=%d found=%d", self.session_id,
                    self.syncs[Category.MISSING].size, self.syncs[Category.FOUND].size)
        self._changed()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sync in self.syncs.values():
            sync.close()
        self.search.close()
        self._close_form()
        logger.info("session.close id=%s", self.session_id)

    @property
    def closed(self) -> bool:
        return self._closed

    # --------------------------- modal transitions ---------------------------

    def map_click(self, lat: float, lng: float) -> bool:
        try:
            coords = Coordinates(lat=lat, lng=lng)
        except ValidationError:
            logger.info("session.map_click ignored lat=%r lng=%r", lat, lng)
            return False
        return self.state.dispatch(MapClicked(coords))

    def choose_type(self, category: Category | str) -> bool:
        return self.state.dispatch(TypeChosen(Category(category)))

    def open_create(self, category: Category | str) -> bool:
        return self.state.dispatch(CreateOpened(Category(category)))

    def cancel(self) -> bool:
        return self.state.dispatch(Cancelled())

    def dismiss(self) -> bool:
        return self.state.dispatch(Dismissed())

    def open_search(self) -> bool:
        return self.state.dispatch(SearchOpened())

    def close_search(self) -> bool:
        return self.state.dispatch(SearchClosed())

    def _on_state_change(self, sm: InteractionStateMachine) -> None:
        if not sm.search_open:
            self.search.cancel_pending()
        cat = sm.active_category
        if cat is None:
            self._close_form()
        elif self.form is None or sm.modal != self._form_state:
            self._close_form()
            self.form = ReportForm(
                cat, self.geo,
                on_submit=self._submit_report,
                on_cancel=self.cancel,
                on_change=lambda _f: self._changed(),
                initial_coordinates=sm.pending_coords,
                debounce_delay=self._debounce_delay,
            )
            self._form_state = sm.modal
        self._changed()

    def _close_form(self) -> None:
        form, self.form = self.form, None
        self._form_state = None
        if form is not None:
            form.close()

    # --------------------------- search panel ---------------------------

    def search_input(self, text: str) -> None:
        self.search.on_input(text)

    def search_submit(self, text: Optional[str] = None) -> None:
        self.search.submit(text)

    def select_result(self, place_id: str) -> Optional[SearchCandidate]:
        cand = next((c for c in self.search.suggestions if c.place_id == place_id), None)
        if cand is None:
            return None
        self.viewport.focus(cand.lat, cand.lng, settings.MAP_SEARCH_RESULT_ZOOM)
        self.viewport.set_search_marker(cand.lat, cand.lng, cand.display_name)
        self._changed()
        return cand

    def focus(self, lat: float, lng: float, zoom: Optional[int] = None) -> bool:
        moved = self.viewport.focus(lat, lng, zoom) is not None
        if moved:
            self._changed()
        return moved

    def set_zoom(self, zoom: int) -> None:
        self.viewport.set_zoom(zoom)

    # --------------------------- form ---------------------------

    def form_field(self, name: str, value: Any) -> bool:
        return self.form.set_field(name, value) if self.form else False

    def location_input(self, text: str) -> bool:
        if self.form is None:
            return False
        self.form.location_input(text)
        return True

    def select_suggestion(self, place_id: str) -> Optional[SearchCandidate]:
        return self.form.select_suggestion(place_id) if self.form else None

    def use_my_location(self, lat: float, lng: float) -> bool:
        if self.form is None:
            return False
        try:
            self.form.use_my_location(lat, lng)
        except ValidationError:
            return False
        return True

    def set_photo(self, photo: Optional[PhotoUpload]) -> bool:
        if self.form is None:
            return False
        self.form.set_photo(photo)
        return True

    async def _submit_report(self, draft: PetReportDraft, photo: Optional[PhotoUpload]) -> PetReport:
        return await self.syncs[draft.category].add(draft, photo)

    async def submit(self) -> Optional[PetReport]:
        form = self.form
        if form is None or form.submitting:
            return None
        try:
            report = await form.submit()
        except ValidationError:
            self._add_banner("validation", form.error or "invalid report")
            return None
        except PawMapError as e:
            # modal stays open with the draft intact
            self._add_banner(e.code, str(e))
            return None
        logger.info("session.submit id=%s category=%s report=%s", self.session_id,
                    report.category.value, report.id)
        if self.form is form:
            self.state.dispatch(Submitted())
        return report

    # --------------------------- banners ---------------------------

    def _on_sync_error(self, exc: PawMapError) -> None:
        self._add_banner(exc.code, str(exc))

    def _add_banner(self, kind: str, message: str) -> Banner:
        banner = Banner(id=uuid.uuid4().hex[:8], kind=kind, message=message)
        self.banners = (self.banners + [banner])[-MAX_BANNERS:]
        logger.info("session.banner id=%s kind=%s msg=%s", self.session_id, kind, message)
        self._changed()
        return banner

    def dismiss_banner(self, banner_id: str) -> bool:
        before = len(self.banners)
        self.banners = [b for b in self.banners if b.id != banner_id]
        changed = len(self.banners) != before
        if changed:
            self._changed()
        return changed

    # --------------------------- view ---------------------------

    def _changed(self) -> None:
        self.version += 1
        if self._closed or self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception:
            logger.exception("session.on_change failed id=%s", self.session_id)

    def view(self) -> Dict[str, Any]:
        missing = self.syncs[Category.MISSING].snapshot
        found = self.syncs[Category.FOUND].snapshot
        return {
            "session_id": self.session_id,
            "version": self.version,
            "ui": self.state.to_view(),
            "search": {**self.search.to_view(), "open": self.state.search_open},
            "form": self.form.to_view() if self.form else None,
            "camera": self.viewport.to_view(),
            "markers": [asdict(m) for m in self.viewport.render(missing, found)],
            "counts": {"missing": len(missing), "found": len(found)},
            "banners": [asdict(b) for b in self.banners],
        }
