"""Place search / reverse geocoding against a Nominatim-compatible service.

Usage:
  async with GeoSearchClient() as geo:
      candidates = await geo.search("baker street", limit=5)
      label = await geo.reverse_geocode(51.5237, -0.1585)

`search` raises NetworkError, or AbortError once the client is closed;
`reverse_geocode` is best effort and always returns a label (formatted
coordinates when the service cannot answer).
"""
from __future__ import annotations
import asyncio
import json
from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import ValidationError

from app.models.geo import SearchCandidate
from app.scripts.logging_config import get_logger, log_geocode
from app.services.errors import AbortError, NetworkError
from config import settings

logger = get_logger("geo_search")

MAX_RESULTS = 10
COORD_PRECISION = 6


def format_coordinates(lat: float, lng: float) -> str:
    """Fixed-precision "lat, lng" label; trailing zeros trimmed so (10, 20) -> "10, 20"."""
    def _fmt(v: float) -> str:
        s = f"{float(v):.{COORD_PRECISION}f}".rstrip("0").rstrip(".")
        return "0" if s in {"-0", ""} else s
    return f"{_fmt(lat)}, {_fmt(lng)}"


class GeoSearchClient:
    def __init__(self, base_url: Optional[str] = None, *,
                 session: Optional[aiohttp.ClientSession] = None,
                 timeout: Optional[float] = None,
                 user_agent: Optional[str] = None):
        self.base_url = (base_url or settings.GEOCODER_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT_SECONDS
        self.user_agent = user_agent or settings.GEOCODER_USER_AGENT
        self._session = session
        self._owns_session = session is None
        self._closed = False

    async def __aenter__(self):
        self._closed = False
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def close(self):
        self._closed = True
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    # --------------------------- 네트워크 ---------------------------

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        if self._closed:
            raise AbortError(f"{path} requested after close")
        session = self._ensure_session()
        url = f"{self.base_url}/{path}"
        try:
            async with session.get(url, params=params) as resp:
                if resp.status != 200:
                    raise NetworkError(f"{path} returned HTTP {resp.status}", status=resp.status)
                text = await resp.text()
        except asyncio.TimeoutError as e:
            raise NetworkError(f"{path} timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"{path} transport error: {e}") from e
        try:
            return json.loads(text)
        except ValueError as e:
            raise NetworkError(f"{path} returned invalid JSON") from e

    # --------------------------- 공개 API ---------------------------

    async def search(self, text: str, limit: int = MAX_RESULTS) -> List[SearchCandidate]:
        limit = max(1, min(int(limit), MAX_RESULTS))
        q = (text or "").strip()
        if not q:
            return []
        try:
            data = await self._get_json("search", {
                "format": "jsonv2",
                "q": q,
                "addressdetails": 1,
                "limit": limit,
            })
        except NetworkError as e:
            log_geocode("search", q, False, error=str(e), logger=logger)
            raise
        if not isinstance(data, list):
            err = NetworkError("search returned a non-list payload")
            log_geocode("search", q, False, error=str(err), logger=logger)
            raise err
        out: List[SearchCandidate] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                out.append(SearchCandidate.from_nominatim(item))
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                logger.debug("geo.search skip malformed place_id=%s err=%s", item.get("place_id"), e)
            if len(out) >= limit:
                break
        log_geocode("search", q, True, hits=len(out), logger=logger)
        return out

    async def reverse_geocode(self, lat: float, lng: float) -> str:
        fallback = format_coordinates(lat, lng)
        try:
            data = await self._get_json("reverse", {"format": "jsonv2", "lat": lat, "lon": lng})
        except Exception as e:  # best effort: never blocks the form
            log_geocode("reverse", fallback, False, error=str(e), logger=logger)
            return fallback
        if isinstance(data, dict) and data.get("display_name"):
            return str(data["display_name"])
        return fallback
