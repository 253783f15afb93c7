"""Remote data service abstraction.

Usage:
  from app.services.data_service import build_data_service
  service = build_data_service()          # honours settings.DATA_BACKEND
  rows = await service.select_all("missing")

Backends:
    - InMemoryDataService: process-local tables, for tests and local runs without credentials
    - FirestoreDataService: Firestore collections + Firebase Storage uploads

Every backend exposes the same four primitives: select_all, insert,
subscribe_to_changes and upload. Push notifications carry no payload; the
subscriber is expected to re-read the whole category.
"""
from __future__ import annotations
import abc
import asyncio
import copy
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from app.domain import pet_report_schema as schema
from app.scripts.logging_config import get_logger
from app.services import firebase_app, media_store
from app.services.errors import NetworkError
from config import settings

logger = get_logger("data_service")

Row = Dict[str, Any]
ChangeCallback = Callable[[], None]
Disposer = Callable[[], None]


def _check_category(category: str) -> str:
    if category not in schema.CATEGORIES:
        raise ValueError(f"unknown category: {category!r}")
    return category


class RemoteDataService(abc.ABC):
    name: str

    @abc.abstractmethod
    async def select_all(self, category: str) -> List[Row]:
        """All rows of a category, newest first (created_at desc)."""

    @abc.abstractmethod
    async def insert(self, category: str, row: Row) -> Row:
        """Persist a row; returns the canonical row with id and created_at."""

    @abc.abstractmethod
    def subscribe_to_changes(self, category: str, callback: ChangeCallback) -> Disposer:
        """Call `callback` on the running event loop whenever the category mutates."""

    @abc.abstractmethod
    async def upload(self, data: bytes, path_hint: str, content_type: str) -> str:
        """Store an object; returns its public URL."""

    async def close(self) -> None:
        return None


# ------------------------------------------------------------------------------
# In-memory
# ------------------------------------------------------------------------------

def demo_rows() -> Dict[str, List[Row]]:
    now = datetime.now(timezone.utc)
    return {
        "missing": [
            {"id": "m1", "pet_name": "Max", "breed": "Golden Retriever", "species": "Dog",
             "last_seen": "123 Main St", "contact": "john@example.com",
             "lat": 40.7128, "lng": -74.006, "type": "missing", "created_at": now},
            {"id": "m2", "pet_name": "Whiskers", "breed": "Tabby", "species": "Cat",
             "last_seen": "456 Park Ave", "contact": "sarah@example.com",
             "lat": 40.7135, "lng": -74.0080, "type": "missing", "created_at": now - timedelta(minutes=1)},
        ],
        "found": [
            {"id": "f1", "pet_name": "Unknown", "breed": "Beagle", "species": "Dog",
             "found_at": "Central Park", "contact": "mike@example.com",
             "lat": 40.7821, "lng": -73.9665, "type": "found", "created_at": now},
        ],
    }


class InMemoryDataService(RemoteDataService):
    name = "memory"

    def __init__(self, seed: Optional[Dict[str, List[Row]]] = None):
        self._tables: Dict[str, List[Row]] = {c: [] for c in schema.CATEGORIES}
        self._subscribers: Dict[str, List[ChangeCallback]] = {c: [] for c in schema.CATEGORIES}
        self.objects: Dict[str, bytes] = {}
        for category, rows in (seed or {}).items():
            self._tables[_check_category(category)].extend(copy.deepcopy(rows))
        for rows in self._tables.values():
            self._sort(rows)

    @staticmethod
    def _sort(rows: List[Row]) -> None:
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        rows.sort(key=lambda r: r.get("created_at") or epoch, reverse=True)

    def _notify(self, category: str) -> None:
        loop = asyncio.get_running_loop()
        for cb in list(self._subscribers[category]):
            loop.call_soon(cb)

    def subscriber_count(self, category: str) -> int:
        return len(self._subscribers[_check_category(category)])

    async def select_all(self, category: str) -> List[Row]:
        return copy.deepcopy(self._tables[_check_category(category)])

    async def insert(self, category: str, row: Row) -> Row:
        rows = self._tables[_check_category(category)]
        new = dict(row)
        new["id"] = uuid.uuid4().hex[:12]
        new["created_at"] = datetime.now(timezone.utc)
        rows.insert(0, new)
        self._sort(rows)
        logger.info("memory.insert category=%s id=%s count=%d", category, new["id"], len(rows))
        self._notify(category)
        return dict(new)

    async def put_raw(self, category: str, row: Row) -> None:
        """Write a row as-is (out-of-band writer; no validation, no id assignment)."""
        rows = self._tables[_check_category(category)]
        rows.insert(0, dict(row))
        self._sort(rows)
        self._notify(category)

    async def delete(self, category: str, row_id: str) -> bool:
        rows = self._tables[_check_category(category)]
        before = len(rows)
        rows[:] = [r for r in rows if r.get("id") != row_id]
        removed = len(rows) != before
        if removed:
            self._notify(category)
        return removed

    def subscribe_to_changes(self, category: str, callback: ChangeCallback) -> Disposer:
        subs = self._subscribers[_check_category(category)]
        subs.append(callback)

        def dispose():
            try:
                subs.remove(callback)
            except ValueError:
                pass
        return dispose

    async def upload(self, data: bytes, path_hint: str, content_type: str) -> str:
        path = media_store.object_path(path_hint, content_type)
        self.objects[path] = bytes(data)
        return f"memory://{path}"


# ------------------------------------------------------------------------------
# Firestore
# ------------------------------------------------------------------------------

class FirestoreDataService(RemoteDataService):
    """Firestore-backed store. Blocking client calls run in worker threads."""
    name = "firestore"

    def __init__(self, db=None):
        self._db = db

    @property
    def db(self):
        if self._db is None:
            from firebase_admin import firestore
            self._db = firestore.client()
        return self._db

    def _collection(self, category: str):
        return self.db.collection(schema.COLLECTIONS[_check_category(category)])

    async def select_all(self, category: str) -> List[Row]:
        from firebase_admin import firestore

        def _run() -> List[Row]:
            q = self._collection(category).order_by(schema.ORDER_BY_FIELD, direction=firestore.Query.DESCENDING)
            out = []
            for doc in q.stream():
                data = doc.to_dict() or {}
                data["id"] = doc.id
                out.append(data)
            return out
        try:
            rows = await asyncio.to_thread(_run)
        except Exception as e:
            logger.error("firestore.select failed category=%s err=%s", category, e)
            raise NetworkError(f"select {category} failed: {e}") from e
        logger.info("firestore.read op=select category=%s rows=%d", category, len(rows))
        return rows

    async def insert(self, category: str, row: Row) -> Row:
        from firebase_admin import firestore

        def _run() -> Row:
            ref = self._collection(category).document()
            payload = dict(row)
            payload[schema.ORDER_BY_FIELD] = firestore.SERVER_TIMESTAMP
            ref.set(payload)
            snap = ref.get()
            data = snap.to_dict() or {}
            data["id"] = ref.id
            return data
        try:
            created = await asyncio.to_thread(_run)
        except Exception as e:
            logger.error("firestore.insert failed category=%s err=%s", category, e)
            raise NetworkError(f"insert {category} failed: {e}") from e
        logger.info("firestore.write op=set category=%s id=%s", category, created.get("id"))
        return created

    def subscribe_to_changes(self, category: str, callback: ChangeCallback) -> Disposer:
        loop = asyncio.get_running_loop()

        def _on_snapshot(col_snapshot, changes, read_time):
            # Firestore watch thread -> event loop
            if not loop.is_closed():
                loop.call_soon_threadsafe(callback)

        watch = self._collection(category).on_snapshot(_on_snapshot)
        disposed = False

        def dispose():
            nonlocal disposed
            if disposed:
                return
            disposed = True
            try:
                watch.unsubscribe()
            except Exception as e:
                logger.warning("firestore.unsubscribe failed category=%s err=%s", category, e)
        return dispose

    async def upload(self, data: bytes, path_hint: str, content_type: str) -> str:
        return await asyncio.to_thread(media_store.upload_photo, data, path_hint, content_type)


# ------------------------------------------------------------------------------
# 선택
# ------------------------------------------------------------------------------

def build_data_service(backend: Optional[str] = None) -> RemoteDataService:
    choice = (backend or settings.DATA_BACKEND or "auto").strip().lower()
    if choice == "auto":
        choice = "firestore" if firebase_app.is_initialized() else "memory"
        if choice == "memory":
            logger.warning("Firebase not initialized; using in-memory data service (data is not persisted).")
    if choice == "firestore":
        return FirestoreDataService()
    if choice == "memory":
        return InMemoryDataService(seed=demo_rows() if settings.MEMORY_SEED_DEMO_DATA else None)
    raise ValueError(f"unknown DATA_BACKEND: {choice!r}")
