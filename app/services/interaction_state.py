"""Which UI surface is visible.

The modal axis is a single tagged value, so two modals can never be open at
once; the search panel is a separate boolean. Every change goes through
`dispatch(event)`; events that make no sense in the current state are ignored.

    sm = InteractionStateMachine()
    sm.dispatch(MapClicked(Coordinates(lat=48.8566, lng=2.3522)))   # -> AskType
    sm.dispatch(TypeChosen(Category.MISSING))                        # -> CreateMissing(coords)
    sm.dispatch(Cancelled())                                         # -> Idle
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Set, Union

from app.models.geo import Coordinates
from app.models.reports import Category
from app.scripts.logging_config import get_logger

logger = get_logger("interaction_state")


class UIMode(str, Enum):
    IDLE = "idle"
    ASK_TYPE = "ask_type"
    CREATE_MISSING = "create_missing"
    CREATE_FOUND = "create_found"
    SEARCH_OPEN = "search_open"


# ----- modal states -----

@dataclass(frozen=True)
class Idle:
    mode = UIMode.IDLE


@dataclass(frozen=True)
class AskType:
    coords: Coordinates
    mode = UIMode.ASK_TYPE


@dataclass(frozen=True)
class CreateMissing:
    coords: Optional[Coordinates] = None
    mode = UIMode.CREATE_MISSING


@dataclass(frozen=True)
class CreateFound:
    coords: Optional[Coordinates] = None
    mode = UIMode.CREATE_FOUND


ModalState = Union[Idle, AskType, CreateMissing, CreateFound]

IDLE = Idle()


# ----- events -----

@dataclass(frozen=True)
class MapClicked:
    coords: Coordinates


@dataclass(frozen=True)
class TypeChosen:
    category: Category


@dataclass(frozen=True)
class CreateOpened:
    category: Category


@dataclass(frozen=True)
class Submitted:
    pass


@dataclass(frozen=True)
class Cancelled:
    pass


@dataclass(frozen=True)
class Dismissed:
    pass


@dataclass(frozen=True)
class SearchOpened:
    pass


@dataclass(frozen=True)
class SearchClosed:
    pass


Event = Union[MapClicked, TypeChosen, CreateOpened, Submitted, Cancelled,
              Dismissed, SearchOpened, SearchClosed]

StateListener = Callable[["InteractionStateMachine"], None]


def _create_state(category: Category, coords: Optional[Coordinates]) -> ModalState:
    return CreateMissing(coords) if Category(category) is Category.MISSING else CreateFound(coords)


def transition(modal: ModalState, search_open: bool, event: Event) -> tuple[ModalState, bool]:
    """Pure transition function: (modal, search_open) x event -> (modal, search_open)."""
    if isinstance(event, MapClicked):
        return AskType(event.coords), search_open
    if isinstance(event, TypeChosen):
        if isinstance(modal, AskType):
            return _create_state(event.category, modal.coords), search_open
        return modal, search_open
    if isinstance(event, CreateOpened):
        return _create_state(event.category, None), search_open
    if isinstance(event, (Submitted, Cancelled)):
        return IDLE, search_open
    if isinstance(event, Dismissed):
        return IDLE, False
    if isinstance(event, SearchOpened):
        return modal, True
    if isinstance(event, SearchClosed):
        return modal, False
    return modal, search_open


class InteractionStateMachine:
    def __init__(self):
        self._modal: ModalState = IDLE
        self._search_open = False
        self._listeners: List[StateListener] = []

    # --------------------------- read access ---------------------------

    @property
    def modal(self) -> ModalState:
        return self._modal

    @property
    def search_open(self) -> bool:
        return self._search_open

    @property
    def mode(self) -> UIMode:
        return self._modal.mode

    @property
    def modes(self) -> Set[UIMode]:
        out = {self._modal.mode}
        if self._search_open:
            out.add(UIMode.SEARCH_OPEN)
        return out

    @property
    def pending_coords(self) -> Optional[Coordinates]:
        return getattr(self._modal, "coords", None)

    @property
    def active_category(self) -> Optional[Category]:
        if isinstance(self._modal, CreateMissing):
            return Category.MISSING
        if isinstance(self._modal, CreateFound):
            return Category.FOUND
        return None

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    # --------------------------- transitions ---------------------------

    def dispatch(self, event: Event) -> bool:
        """Apply one event. Returns True when anything visible changed; never raises."""
        try:
            modal, search_open = transition(self._modal, self._search_open, event)
        except Exception:
            logger.exception("transition failed event=%r", event)
            return False
        if modal == self._modal and search_open == self._search_open:
            logger.debug("ignored event=%s mode=%s", type(event).__name__, self.mode.value)
            return False
        prev = self._modal
        self._modal, self._search_open = modal, search_open
        logger.info("ui.transition event=%s %s -> %s search_open=%s",
                    type(event).__name__, prev.mode.value, modal.mode.value, search_open)
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("state listener failed")
        return True

    def to_view(self) -> dict:
        coords = self.pending_coords
        return {
            "mode": self.mode.value,
            "search_open": self._search_open,
            "pending_coords": coords.model_dump() if coords else None,
        }
