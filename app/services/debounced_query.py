"""Debounced, race-safe search stream for one text input.

Each input bumps the stream generation. A request fires only after the quiet
period passes with no newer input, and carries the generation it was fired
under; a result is applied only if that generation is still current. Arrival
order never matters.

    dq = DebouncedQuery(partial(geo.search, limit=5), on_change=push_view)
    dq.on_input("bak")     # timer (re)starts
    dq.on_input("baker")   # previous timer cancelled, new one started
    ...
    dq.close()             # on teardown; no callback fires afterwards

Search failures are absorbed: suggestions become empty and `error` holds the
message. An AbortError from a torn-down source leaves both untouched. Nothing
here raises.
"""
from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.scripts.logging_config import get_logger
from app.services.errors import AbortError
from config import settings

logger = get_logger("debounced_query")

SearchFn = Callable[[str], Awaitable[List[Any]]]
ChangeListener = Callable[["DebouncedQuery"], None]


class DebouncedQuery:
    def __init__(self, search: SearchFn, *,
                 delay: Optional[float] = None,
                 min_chars: Optional[int] = None,
                 on_change: Optional[ChangeListener] = None,
                 name: str = "query"):
        self._search = search
        self.delay = delay if delay is not None else settings.SEARCH_DEBOUNCE_MS / 1000.0
        self.min_chars = min_chars if min_chars is not None else settings.SEARCH_MIN_QUERY_CHARS
        self._on_change = on_change
        self.name = name

        self.text = ""
        self.generation = 0
        self.loading = False
        self.suggestions: List[Any] = []
        self.has_searched = False
        self.error: Optional[str] = None
        self.requests_fired = 0

        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    # --------------------------- inputs ---------------------------

    def on_input(self, text: str) -> None:
        if self._closed:
            return
        self.text = text or ""
        self._supersede()
        query = self.text.strip()
        if len(query) < self.min_chars:
            self._notify()
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(self.generation, query, self.delay))
        self._notify()

    def submit(self, text: Optional[str] = None) -> None:
        """Fire immediately (Enter key / search button); same generation rules as typing."""
        if self._closed:
            return
        if text is not None:
            self.text = text
        query = self.text.strip()
        if not query:
            return
        self._supersede()
        self._task = asyncio.get_running_loop().create_task(
            self._run(self.generation, query, 0.0))
        self._notify()

    def reset(self, text: str = "") -> None:
        """Replace the text without searching (e.g. after a suggestion was picked)."""
        if self._closed:
            return
        self.text = text
        self._supersede()
        self._notify()

    def cancel_pending(self) -> None:
        """Drop the pending timer / in-flight request but keep the visible suggestions."""
        if self._closed:
            return
        if self._task is None or self._task.done():
            return
        self.generation += 1
        self._cancel_task()
        self.loading = False
        self._notify()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.generation += 1
        self._cancel_task()
        self.loading = False
        self.suggestions = []

    async def settle(self) -> None:
        """Wait for the current timer/request task, whatever its outcome."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    # --------------------------- internals ---------------------------

    def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            # aiohttp aborts the transport when the awaiting task is cancelled
            task.cancel()

    def _supersede(self) -> None:
        self.generation += 1
        self._cancel_task()
        self.loading = False
        self.suggestions = []
        self.error = None

    async def _run(self, generation: int, query: str, delay: float) -> None:
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            if generation != self.generation or self._closed:
                return
            self.loading = True
            self.requests_fired += 1
            self._notify()
            try:
                result = list(await self._search(query))
                error = None
            except asyncio.CancelledError:
                raise
            except AbortError as e:
                # torn-down source: drop silently, nothing is shown
                logger.debug("%s.aborted gen=%d q=%r err=%s", self.name, generation, query, e)
                self._discard(generation)
                return
            except Exception as e:
                logger.info("%s.search failed gen=%d q=%r err=%s", self.name, generation, query, e)
                result, error = [], (str(e) or type(e).__name__)
            self._apply(generation, result, error)
        except asyncio.CancelledError:
            logger.debug("%s.aborted gen=%d q=%r", self.name, generation, query)
            raise

    def _apply(self, generation: int, result: List[Any], error: Optional[str]) -> bool:
        if generation != self.generation or self._closed:
            logger.debug("%s.stale_discard gen=%d current=%d", self.name, generation, self.generation)
            return False
        self.suggestions = result
        self.loading = False
        self.has_searched = True
        self.error = error
        self._notify()
        return True

    def _discard(self, generation: int) -> None:
        # aborted request: suggestions and error stay as they were
        if generation != self.generation or self._closed:
            return
        self.loading = False
        self._notify()

    def _notify(self) -> None:
        if self._closed or self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception:
            logger.exception("%s.on_change listener failed", self.name)

    def to_view(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "loading": self.loading,
            "has_searched": self.has_searched,
            "error": self.error,
            "suggestions": [s.model_dump() if hasattr(s, "model_dump") else s for s in self.suggestions],
        }
