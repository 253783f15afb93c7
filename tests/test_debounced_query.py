import asyncio

import pytest

from app.services.debounced_query import DebouncedQuery
from app.services.errors import AbortError, NetworkError
from conftest import FakeGeo, make_candidate, wait_until


@pytest.mark.parametrize("text", ["", "a", "ab", "  ab  ", "\tx\n"])
def test_short_inputs_never_search(text):
    geo = FakeGeo()

    async def scenario():
        dq = DebouncedQuery(geo.search, delay=0.01)
        dq.on_input(text)
        await dq.settle()
        await asyncio.sleep(0.03)
        return dq

    dq = asyncio.run(scenario())
    assert geo.calls == []
    assert dq.suggestions == []
    assert dq.loading is False


def test_rapid_inputs_fire_once_for_last():
    geo = FakeGeo()

    async def scenario():
        dq = DebouncedQuery(geo.search, delay=0.05)
        for text in ["lon", "lond", "londo", "london"]:
            dq.on_input(text)
            await asyncio.sleep(0.005)
        await asyncio.sleep(0.1)
        await dq.settle()
        return dq

    dq = asyncio.run(scenario())
    assert geo.calls == [("london", 10)]
    assert [s.display_name for s in dq.suggestions] == ["london"]
    assert dq.requests_fired == 1


def test_short_input_clears_previous_suggestions():
    geo = FakeGeo()

    async def scenario():
        dq = DebouncedQuery(geo.search, delay=0)
        dq.on_input("berlin")
        await dq.settle()
        assert dq.suggestions
        dq.on_input("be")
        return dq

    dq = asyncio.run(scenario())
    assert dq.suggestions == []
    assert geo.calls == [("berlin", 10)]


@pytest.mark.parametrize("late_first", [True, False])
def test_stale_generation_never_applies(late_first):
    # search cannot be aborted, so the old response really arrives
    geo = FakeGeo(abortable=False)

    async def scenario():
        geo.gates = {"paris": asyncio.Event(), "berlin": asyncio.Event()}
        dq = DebouncedQuery(geo.search, delay=0)
        dq.on_input("paris")
        await wait_until(lambda: ("paris", 10) in geo.calls)
        dq.on_input("berlin")
        await wait_until(lambda: ("berlin", 10) in geo.calls)
        assert dq.loading is True

        order = ["paris", "berlin"] if late_first else ["berlin", "paris"]
        seen = []
        for q in order:
            geo.gates[q].set()
            await asyncio.sleep(0.01)
            seen.append([s.display_name for s in dq.suggestions])
        await dq.settle()
        return dq, seen

    dq, seen = asyncio.run(scenario())
    if late_first:
        assert seen == [[], ["berlin"]]
    else:
        assert seen == [["berlin"], ["berlin"]]
    assert dq.loading is False


def test_superseded_request_is_aborted():
    geo = FakeGeo(abortable=True)

    async def scenario():
        gate = asyncio.Event()
        geo.gates = {"paris": gate}
        dq = DebouncedQuery(geo.search, delay=0)
        dq.on_input("paris")
        await wait_until(lambda: geo.calls)
        first = dq._task
        dq.on_input("rome")
        await dq.settle()
        await asyncio.sleep(0)
        return dq, first

    dq, first = asyncio.run(scenario())
    assert first.cancelled()
    assert [s.display_name for s in dq.suggestions] == ["rome"]


def test_failed_search_means_no_results():
    geo = FakeGeo(places={"atlantis": NetworkError("boom")})

    async def scenario():
        dq = DebouncedQuery(geo.search, delay=0)
        dq.on_input("atlantis")
        await dq.settle()
        return dq

    dq = asyncio.run(scenario())
    assert dq.suggestions == []
    assert dq.has_searched is True
    assert dq.error == "boom"
    assert dq.loading is False


def test_aborted_search_is_not_an_error():
    geo = FakeGeo(places={"atlantis": AbortError("client closed")})
    loading = []

    async def scenario():
        dq = DebouncedQuery(geo.search, delay=0, on_change=lambda q: loading.append(q.loading))
        dq.on_input("atlantis")
        await dq.settle()
        return dq

    dq = asyncio.run(scenario())
    assert dq.requests_fired == 1
    assert dq.error is None
    assert dq.has_searched is False
    assert dq.loading is False
    assert loading[-2:] == [True, False]


def test_close_cancels_timer_and_silences_callbacks():
    geo = FakeGeo()
    events = []

    async def scenario():
        dq = DebouncedQuery(geo.search, delay=0.02, on_change=lambda q: events.append(q.loading))
        dq.on_input("madrid")
        count = len(events)
        dq.close()
        await asyncio.sleep(0.05)
        dq.on_input("lisbon")
        await asyncio.sleep(0.05)
        return dq, count

    dq, count = asyncio.run(scenario())
    assert geo.calls == []
    assert len(events) == count
    assert dq.closed


def test_close_during_flight_discards_result():
    geo = FakeGeo(abortable=False)

    async def scenario():
        geo.gates = {"oslo": asyncio.Event()}
        dq = DebouncedQuery(geo.search, delay=0)
        dq.on_input("oslo")
        await wait_until(lambda: geo.calls)
        dq.close()
        geo.gates["oslo"].set()
        await asyncio.sleep(0.01)
        return dq

    dq = asyncio.run(scenario())
    assert dq.suggestions == []
    assert dq.loading is False


def test_submit_fires_immediately():
    geo = FakeGeo(places={"ny": [make_candidate("New York")]})

    async def scenario():
        dq = DebouncedQuery(geo.search, delay=10)
        dq.submit("ny")
        await dq.settle()
        return dq

    dq = asyncio.run(scenario())
    assert geo.calls == [("ny", 10)]
    assert [s.display_name for s in dq.suggestions] == ["New York"]


def test_cancel_pending_stops_queued_request():
    geo = FakeGeo()

    async def scenario():
        dq = DebouncedQuery(geo.search, delay=0)
        dq.on_input("vienna")
        await dq.settle()
        dq.on_input("vienna austria")
        dq.cancel_pending()
        await asyncio.sleep(0.01)
        return dq

    dq = asyncio.run(scenario())
    assert geo.calls == [("vienna", 10)]
    assert dq.loading is False
