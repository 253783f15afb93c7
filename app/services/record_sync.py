"""In-memory collection for one report category, kept in step with the store.

Three things mutate the collection and nothing else may:
  - load():       full newest-first fetch, rows validated on ingress
  - add():        optimistic merge of the canonical row returned by insert
  - push feed:    any change notification triggers a background load()

Loads are sequence-stamped. A load result older than one already applied is
dropped, and a row added locally survives a reload whose fetch began before the
insert finished (the store may not have had it yet). Rows are keyed by id so a
local add and the feed echo converge on a single copy.
"""
from __future__ import annotations
import asyncio
from typing import Callable, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from app.models.reports import Category, PetReport, PetReportDraft
from app.scripts.logging_config import get_logger, log_photo_upload, log_sync_event
from app.services import media_store
from app.services.data_service import Disposer, RemoteDataService
from app.services.errors import IntegrityError, NetworkError, PawMapError, UploadError
from app.services.media_store import PhotoUpload

logger = get_logger("record_sync")

Snapshot = Tuple[PetReport, ...]
ChangeListener = Callable[[Snapshot], None]
ErrorListener = Callable[[PawMapError], None]


def _describe(exc: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in err.get('loc', ())) or 'row'}: {err.get('msg')}" for err in exc.errors()]


class RecordSync:
    def __init__(self, service: RemoteDataService, category: Category | str, *,
                 on_error: Optional[ErrorListener] = None):
        self.service = service
        self.category = Category(category)
        self._on_error = on_error
        self._records: List[PetReport] = []
        self._listeners: List[ChangeListener] = []
        self._load_seq = 0
        self._applied_seq = 0
        # id -> (report, load sequence number at the time the insert completed)
        self._local: Dict[str, Tuple[PetReport, int]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._disposers: List[Disposer] = []
        self.loaded = False

    # --------------------------- read access ---------------------------

    @property
    def snapshot(self) -> Snapshot:
        return tuple(self._records)

    @property
    def size(self) -> int:
        return len(self._records)

    def get(self, report_id: str) -> Optional[PetReport]:
        return next((r for r in self._records if r.id == report_id), None)

    # --------------------------- load ---------------------------

    async def load(self) -> List[PetReport]:
        self._load_seq += 1
        seq = self._load_seq
        cat = self.category.value
        try:
            rows = await self.service.select_all(cat)
        except NetworkError as e:
            if seq >= self._applied_seq:
                self._applied_seq = seq
                self._records = []
                self._notify()
            log_sync_event("load_failed", {"category": cat, "seq": seq, "error": str(e)}, logger)
            raise

        valid: List[PetReport] = []
        problems: List[dict] = []
        seen: Set[str] = set()
        for row in rows:
            if not isinstance(row, dict):
                problems.append({"id": None, "errors": ["row: not an object"]})
                continue
            try:
                report = PetReport.from_row(self.category, row)
            except ValidationError as e:
                problems.append({"id": row.get("id"), "errors": _describe(e)})
                continue
            if report.id in seen:
                continue
            seen.add(report.id)
            valid.append(report)

        if seq < self._applied_seq:
            logger.info("record_sync.stale_load_discard category=%s seq=%d applied=%d", cat, seq, self._applied_seq)
            return list(self._records)
        self._applied_seq = seq

        kept_local: List[PetReport] = []
        for rid, (report, add_seq) in list(self._local.items()):
            if seq > add_seq:
                # fetch started after the insert completed: the store is authoritative
                del self._local[rid]
            elif rid not in seen:
                kept_local.append(report)
        kept_local.reverse()  # most recent add first
        self._records = kept_local + valid
        self.loaded = True
        log_sync_event("load", {
            "category": cat, "seq": seq, "rows": len(rows),
            "valid": len(valid), "rejected": len(problems), "kept_local": len(kept_local),
        }, logger)
        self._notify()

        if problems:
            raise IntegrityError(
                f"{len(problems)} malformed {cat} report(s) skipped",
                records=list(self._records), problems=problems,
            )
        return list(self._records)

    # --------------------------- push feed ---------------------------

    def subscribe(self, on_change: Optional[ChangeListener] = None) -> Disposer:
        if on_change is not None:
            self._listeners.append(on_change)
        disposed = False

        def _on_feed():
            if disposed:
                return
            self._schedule_reload()

        unsubscribe = self.service.subscribe_to_changes(self.category.value, _on_feed)

        def dispose():
            nonlocal disposed
            if disposed:
                return
            disposed = True
            unsubscribe()
            if on_change is not None and on_change in self._listeners:
                self._listeners.remove(on_change)
            if dispose in self._disposers:
                self._disposers.remove(dispose)
            if not self._disposers:
                self._cancel_tasks()
            logger.info("record_sync.unsubscribed category=%s", self.category.value)

        self._disposers.append(dispose)
        logger.info("record_sync.subscribed category=%s", self.category.value)
        return dispose

    def _schedule_reload(self) -> None:
        task = asyncio.get_running_loop().create_task(self._reload())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _reload(self) -> None:
        try:
            await self.load()
        except (NetworkError, IntegrityError) as e:
            self._report(e)

    def _cancel_tasks(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def settle(self) -> None:
        """Wait for background reloads scheduled so far."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    def close(self) -> None:
        for dispose in list(self._disposers):
            dispose()
        self._cancel_tasks()
        self._listeners.clear()

    # --------------------------- add ---------------------------

    async def add(self, draft: PetReportDraft, photo: Optional[PhotoUpload] = None) -> PetReport:
        if draft.category != self.category:
            raise ValueError(f"draft category {draft.category.value} does not match {self.category.value}")
        cat = self.category.value
        if photo is not None:
            try:
                media_store.inspect_photo(photo)
                photo_url = await self.service.upload(photo.data, cat, photo.content_type)
            except UploadError as e:
                log_photo_upload(cat, False, photo.size, error=str(e), logger=logger)
                raise
            except Exception as e:
                log_photo_upload(cat, False, photo.size, error=str(e), logger=logger)
                raise UploadError(f"photo upload failed: {e}") from e
            log_photo_upload(cat, True, photo.size, url=photo_url, logger=logger)
            draft = draft.model_copy(update={"photo_url": photo_url})

        row = await self.service.insert(cat, draft.to_row())
        try:
            report = PetReport.from_row(self.category, row)
        except ValidationError as e:
            raise IntegrityError("store returned a malformed row",
                                 problems=[{"id": row.get("id"), "errors": _describe(e)}]) from e

        self._local[report.id] = (report, self._load_seq)
        self._records = [report] + [r for r in self._records if r.id != report.id]
        log_sync_event("add", {"category": cat, "id": report.id, "photo": bool(report.photo_url)}, logger)
        self._notify()
        return report

    # --------------------------- listeners ---------------------------

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        snap = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("record_sync.listener failed category=%s", self.category.value)

    def _report(self, exc: PawMapError) -> None:
        logger.warning("record_sync.background_error category=%s code=%s err=%s",
                       self.category.value, exc.code, exc)
        if self._on_error is not None:
            try:
                self._on_error(exc)
            except Exception:
                logger.exception("record_sync.on_error failed category=%s", self.category.value)
