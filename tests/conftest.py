import asyncio
import io

import pytest
from PIL import Image

from app.models.geo import SearchCandidate
from app.services.data_service import InMemoryDataService, demo_rows
from app.services.geo_search import format_coordinates


def make_candidate(name: str, lat: float = 51.5, lng: float = -0.1, place_id: str | None = None) -> SearchCandidate:
    return SearchCandidate(place_id=place_id or f"p-{name}", display_name=name, lat=lat, lng=lng, kind="city")


class FakeGeo:
    """Stands in for GeoSearchClient. `gates` hold a query until the test releases it."""
    base_url = "fake://geo"

    def __init__(self, places=None, labels=None, abortable=True):
        self.places = places or {}
        self.labels = labels or {}
        self.abortable = abortable
        self.calls = []
        self.reverse_calls = []
        self.gates = {}
        self.reverse_gate = None

    async def search(self, text, limit=10):
        self.calls.append((text, limit))
        gate = self.gates.get(text)
        if gate is not None:
            try:
                await gate.wait()
            except asyncio.CancelledError:
                if self.abortable:
                    raise
                # transport could not be aborted; the response still arrives
                await gate.wait()
        result = self.places.get(text)
        if isinstance(result, Exception):
            raise result
        if result is None:
            result = [make_candidate(text)]
        return list(result)[:limit]

    async def reverse_geocode(self, lat, lng):
        self.reverse_calls.append((lat, lng))
        if self.reverse_gate is not None:
            await self.reverse_gate.wait()
        return self.labels.get((lat, lng), format_coordinates(lat, lng))

    async def close(self):
        return None


async def wait_until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


def png_bytes(size=(16, 16)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (200, 120, 40)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def fake_geo():
    return FakeGeo()


@pytest.fixture
def memory_service():
    return InMemoryDataService(seed=demo_rows())


@pytest.fixture
def empty_service():
    return InMemoryDataService()
