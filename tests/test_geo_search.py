import asyncio

import aiohttp
import pytest

from app.services import geo_search
from app.services.errors import AbortError, NetworkError
from app.services.geo_search import GeoSearchClient, format_coordinates


class _FakeResponse:
    def __init__(self, status, text):
        self.status = status
        self._text = text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self):
        return self._text


class _FakeSession:
    closed = False

    def __init__(self, status=200, text="[]", exc=None):
        self.status = status
        self.body = text
        self.exc = exc
        self.requests = []

    def get(self, url, params=None):
        self.requests.append((url, params))
        if self.exc is not None:
            raise self.exc
        return _FakeResponse(self.status, self.body)


NOMINATIM = (
    '[{"place_id": 101, "display_name": "Paris, France", "lat": "48.8566", "lon": "2.3522", "type": "city"},'
    ' {"place_id": 102, "display_name": "Paris, Texas", "lat": "33.66", "lon": "-95.55", "type": "town"},'
    ' {"place_id": 103, "display_name": "broken"},'
    ' {"place_id": 104, "display_name": "Paris, Ontario", "lat": "43.19", "lon": "-80.38", "type": "town"}]'
)


def test_search_parses_in_upstream_order():
    session = _FakeSession(text=NOMINATIM)
    geo = GeoSearchClient("https://geo.test", session=session)
    results = asyncio.run(geo.search("  paris "))
    assert [r.place_id for r in results] == ["101", "102", "104"]
    assert results[0].lat == 48.8566 and results[0].lng == 2.3522
    assert results[0].kind == "city"
    url, params = session.requests[0]
    assert url == "https://geo.test/search"
    assert params["q"] == "paris"
    assert params["format"] == "jsonv2"
    assert params["limit"] == 10


def test_search_caps_limit():
    session = _FakeSession(text=NOMINATIM)
    geo = GeoSearchClient("https://geo.test", session=session)
    results = asyncio.run(geo.search("paris", limit=2))
    assert len(results) == 2
    assert session.requests[0][1]["limit"] == 2
    asyncio.run(geo.search("paris", limit=50))
    assert session.requests[1][1]["limit"] == 10


def test_search_blank_text_issues_no_request():
    session = _FakeSession()
    geo = GeoSearchClient("https://geo.test", session=session)
    assert asyncio.run(geo.search("   ")) == []
    assert session.requests == []


@pytest.mark.parametrize("session", [
    _FakeSession(status=503, text="unavailable"),
    _FakeSession(text="<html>not json</html>"),
    _FakeSession(text='{"error": "bad"}'),
    _FakeSession(exc=aiohttp.ClientConnectionError("refused")),
    _FakeSession(exc=asyncio.TimeoutError()),
])
def test_search_failures_raise_network_error(session):
    geo = GeoSearchClient("https://geo.test", session=session)
    with pytest.raises(NetworkError):
        asyncio.run(geo.search("paris"))


def test_reverse_geocode_returns_display_name():
    session = _FakeSession(text='{"display_name": "10 Downing Street, London"}')
    geo = GeoSearchClient("https://geo.test", session=session)
    assert asyncio.run(geo.reverse_geocode(51.5034, -0.1276)) == "10 Downing Street, London"
    url, params = session.requests[0]
    assert url == "https://geo.test/reverse"
    assert params["lon"] == -0.1276


def test_reverse_geocode_failure_falls_back_to_coordinates():
    geo = GeoSearchClient("https://geo.test", session=_FakeSession(exc=aiohttp.ClientConnectionError("down")))
    assert asyncio.run(geo.reverse_geocode(10, 20)) == "10, 20"


def test_reverse_geocode_without_name_falls_back(monkeypatch):
    geo = GeoSearchClient("https://geo.test", session=_FakeSession())

    async def fake_get_json(path, params):
        return {"error": "Unable to geocode"}
    monkeypatch.setattr(geo, "_get_json", fake_get_json)
    assert asyncio.run(geo.reverse_geocode(48.8566, 2.3522)) == "48.8566, 2.3522"


def test_format_coordinates_fixed_precision():
    assert format_coordinates(10, 20) == "10, 20"
    assert format_coordinates(51.5, -0.1) == "51.5, -0.1"
    assert format_coordinates(1.23456789, -0.0000001) == "1.234568, 0"


def test_non_list_payload_is_logged_as_failure(monkeypatch):
    logged = []
    monkeypatch.setattr(geo_search, "log_geocode",
                        lambda kind, query, ok, **kw: logged.append((kind, query, ok, kw.get("error"))))
    geo = GeoSearchClient("https://geo.test", session=_FakeSession(text='{"error": "bad"}'))
    with pytest.raises(NetworkError):
        asyncio.run(geo.search("paris"))
    assert logged == [("search", "paris", False, "search returned a non-list payload")]


def test_closed_client_aborts_search_without_request():
    session = _FakeSession(text=NOMINATIM)
    geo = GeoSearchClient("https://geo.test", session=session)

    async def scenario():
        await geo.close()
        with pytest.raises(AbortError):
            await geo.search("paris")
        return await geo.reverse_geocode(10, 20)

    assert asyncio.run(scenario()) == "10, 20"
    assert session.requests == []
