import random

import pytest

from app.models.geo import Coordinates
from app.models.reports import Category
from app.services.interaction_state import (
    IDLE, AskType, Cancelled, CreateFound, CreateMissing, CreateOpened, Dismissed,
    InteractionStateMachine, MapClicked, SearchClosed, SearchOpened, Submitted,
    TypeChosen, UIMode, transition,
)

PARIS = Coordinates(lat=48.8566, lng=2.3522)
MODALS = {UIMode.IDLE, UIMode.ASK_TYPE, UIMode.CREATE_MISSING, UIMode.CREATE_FOUND}


def test_click_choose_cancel_round_trip():
    sm = InteractionStateMachine()
    assert sm.dispatch(MapClicked(PARIS))
    assert sm.modal == AskType(PARIS)
    assert sm.dispatch(TypeChosen(Category.MISSING))
    assert sm.modal == CreateMissing(PARIS)
    assert sm.pending_coords == PARIS
    assert sm.active_category is Category.MISSING
    assert sm.dispatch(Cancelled())
    assert sm.modal is IDLE
    assert sm.modes == {UIMode.IDLE}


def test_found_path_carries_coordinates():
    sm = InteractionStateMachine()
    sm.dispatch(MapClicked(PARIS))
    sm.dispatch(TypeChosen(Category.FOUND))
    assert sm.modal == CreateFound(PARIS)
    sm.dispatch(Submitted())
    assert sm.mode is UIMode.IDLE


def test_open_create_without_coordinates():
    sm = InteractionStateMachine()
    sm.dispatch(CreateOpened(Category.FOUND))
    assert sm.modal == CreateFound(None)
    assert sm.pending_coords is None


def test_dismiss_closes_modal_and_search_together():
    sm = InteractionStateMachine()
    sm.dispatch(SearchOpened())
    sm.dispatch(MapClicked(PARIS))
    sm.dispatch(TypeChosen(Category.MISSING))
    assert sm.modes == {UIMode.CREATE_MISSING, UIMode.SEARCH_OPEN}
    assert sm.dispatch(Dismissed())
    assert sm.modes == {UIMode.IDLE}


def test_search_panel_is_independent_of_modal():
    sm = InteractionStateMachine()
    sm.dispatch(MapClicked(PARIS))
    sm.dispatch(SearchOpened())
    assert sm.modal == AskType(PARIS)
    assert sm.search_open
    sm.dispatch(Cancelled())
    assert sm.search_open
    sm.dispatch(SearchClosed())
    assert sm.modal is IDLE and not sm.search_open


@pytest.mark.parametrize("event", [TypeChosen(Category.MISSING), Cancelled(), Submitted(), SearchClosed()])
def test_events_that_do_not_apply_are_ignored(event):
    sm = InteractionStateMachine()
    calls = []
    sm.add_listener(calls.append)
    assert sm.dispatch(event) is False
    assert sm.modal is IDLE
    assert calls == []


def test_type_choice_outside_ask_type_keeps_create_state():
    modal, search_open = transition(CreateMissing(PARIS), False, TypeChosen(Category.FOUND))
    assert modal == CreateMissing(PARIS)
    assert search_open is False


def test_new_click_replaces_pending_coordinates():
    sm = InteractionStateMachine()
    sm.dispatch(MapClicked(PARIS))
    other = Coordinates(lat=51.5, lng=-0.1)
    sm.dispatch(MapClicked(other))
    assert sm.modal == AskType(other)


def test_listener_failure_does_not_block_transition():
    sm = InteractionStateMachine()

    def boom(_sm):
        raise RuntimeError("listener broke")
    sm.add_listener(boom)
    assert sm.dispatch(SearchOpened())
    assert sm.search_open


def test_random_sequences_keep_one_modal():
    rng = random.Random(7)
    coords = [PARIS, Coordinates(lat=0, lng=0), Coordinates(lat=-33.86, lng=151.21)]
    events = [
        lambda: MapClicked(rng.choice(coords)),
        lambda: TypeChosen(rng.choice(list(Category))),
        lambda: CreateOpened(rng.choice(list(Category))),
        Submitted, Cancelled, Dismissed, SearchOpened, SearchClosed,
    ]
    sm = InteractionStateMachine()
    for _ in range(2000):
        sm.dispatch(rng.choice(events)())
        assert len(sm.modes & MODALS) == 1
        assert (UIMode.SEARCH_OPEN in sm.modes) == sm.search_open
        if sm.mode is UIMode.ASK_TYPE:
            assert sm.pending_coords is not None


def test_view_shape():
    sm = InteractionStateMachine()
    sm.dispatch(MapClicked(PARIS))
    assert sm.to_view() == {
        "mode": "ask_type",
        "search_open": False,
        "pending_coords": {"lat": 48.8566, "lng": 2.3522},
    }
