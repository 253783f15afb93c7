import asyncio
import gc

import pytest
from fastapi.testclient import TestClient

import main
from app.api import session as session_api
from app.services.app_services import AppServices
from app.services.data_service import InMemoryDataService, demo_rows
from app.services.errors import NetworkError
from conftest import FakeGeo, png_bytes


@pytest.fixture
def services(monkeypatch):
    built = AppServices(data=InMemoryDataService(seed=demo_rows()),
                        geo=FakeGeo(labels={(51.5, -0.1): "Westminster, London"}))
    monkeypatch.setattr(main, "build_app_services", lambda: built)
    return built


@pytest.fixture
def client(services):
    with TestClient(main.app) as c:
        yield c


def _receive_until(ws, predicate, limit=20):
    for _ in range(limit):
        msg = ws.receive_json()
        if predicate(msg):
            return msg
    raise AssertionError("expected message not received")


def test_root_lists_routes(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "/session/ws" in r.json()["routes"]


def test_list_reports(client):
    r = client.get("/reports/missing")
    assert r.status_code == 200
    body = r.json()
    assert body["category"] == "missing"
    assert [rep["pet_name"] for rep in body["reports"]] == ["Max", "Whiskers"]
    assert body["warnings"] == []


def test_list_reports_unknown_category(client):
    assert client.get("/reports/adopted").status_code == 422


def test_list_reports_surfaces_malformed_rows(client, services):
    services.data._tables["found"].append({"id": "broken", "pet_name": ""})
    body = client.get("/reports/found").json()
    assert [rep["id"] for rep in body["reports"]] == ["f1"]
    assert body["warnings"][0]["id"] == "broken"


def test_create_found_report_with_photo(client, services):
    r = client.post(
        "/reports/found",
        data={"pet_name": "Unknown", "breed": "Beagle", "species": "Dog",
              "location_label": "Hyde Park", "lat": "51.507", "lng": "-0.165"},
        files={"photo": ("dog.png", png_bytes(), "image/png")},
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["photo_url"].startswith("memory://pets/found/")
    assert body["species"] == "dog"
    assert body["location_label"] == "Hyde Park"
    assert services.data._tables["found"][0]["found_at"] == "Hyde Park"


def test_create_report_rejects_wrong_photo_type(client, services):
    r = client.post("/reports/missing", data={"pet_name": "Rex"},
                    files={"photo": ("notes.txt", b"hello", "text/plain")})
    assert r.status_code == 415
    assert len(services.data._tables["missing"]) == 2


def test_create_report_rejects_unreadable_photo(client):
    r = client.post("/reports/missing", data={"pet_name": "Rex"},
                    files={"photo": ("x.png", b"not really a png", "image/png")})
    assert r.status_code == 422
    assert r.json()["detail"].startswith("invalid_photo:")


def test_create_report_needs_both_coordinates(client):
    r = client.post("/reports/missing", data={"pet_name": "Rex", "lat": "51.5"})
    assert r.status_code == 422


def test_geo_reverse(client):
    r = client.get("/geo/reverse", params={"lat": 51.5, "lng": -0.1})
    assert r.json() == {"lat": 51.5, "lng": -0.1, "label": "Westminster, London"}


def test_geo_search(client):
    r = client.get("/geo/search", params={"q": "paris", "limit": 3})
    assert r.status_code == 200
    assert r.json()["results"][0]["display_name"] == "paris"


def test_geo_search_upstream_failure(client, services):
    services.geo.places["atlantis"] = NetworkError("geocoder returned 503", status=503)
    r = client.get("/geo/search", params={"q": "atlantis"})
    assert r.status_code == 502
    assert r.json()["detail"].startswith("geocoder_error:")


def test_session_click_opens_type_prompt(client):
    with client.websocket_connect("/session/ws") as ws:
        first = _receive_until(ws, lambda m: m["type"] == "view")
        assert first["view"]["counts"] == {"missing": 2, "found": 1}
        ws.send_json({"action": "map_click", "lat": 48.8566, "lng": 2.3522})
        view = _receive_until(ws, lambda m: m["type"] == "view" and m["view"]["ui"]["mode"] == "ask_type")
        assert view["view"]["ui"]["pending_coords"] == {"lat": 48.8566, "lng": 2.3522}


def test_session_reports_bad_commands(client):
    with client.websocket_connect("/session/ws") as ws:
        ws.send_json({"action": "fly_away"})
        err = _receive_until(ws, lambda m: m["type"] == "error")
        assert err == {"type": "error", "action": "fly_away", "detail": "unknown_action"}
        ws.send_json({"action": "map_click", "lat": 1.0})
        err = _receive_until(ws, lambda m: m["type"] == "error")
        assert err["detail"] == "missing_field:lng"
        ws.send_text("{not json")
        err = _receive_until(ws, lambda m: m["type"] == "error")
        assert err["detail"] == "invalid_json"


def test_session_is_removed_on_disconnect(client, services):
    with client.websocket_connect("/session/ws") as ws:
        _receive_until(ws, lambda m: m["type"] == "view")
        assert len(services.sessions) == 1
    # the server side finishes its cleanup after the close frame
    for _ in range(100):
        if not services.sessions:
            break
        client.get("/")
    assert services.sessions == {}


def test_stopping_sender_collects_its_outcome():
    reported = []

    async def broken_send():
        raise RuntimeError("send on a closed socket")

    async def idle():
        await asyncio.Event().wait()

    async def scenario():
        asyncio.get_running_loop().set_exception_handler(lambda _loop, ctx: reported.append(ctx))
        failed = asyncio.create_task(broken_send())
        pending = asyncio.create_task(idle())
        await asyncio.sleep(0)
        assert failed.done()
        await session_api._stop_sender(failed)
        await session_api._stop_sender(pending)
        cancelled = pending.cancelled()
        del failed, pending
        gc.collect()
        return cancelled

    assert asyncio.run(scenario()) is True
    assert [ctx.get("message") for ctx in reported] == []
