"""Interactive map session over a WebSocket.

Client -> server: {"action": "<name>", ...params}
Server -> client: {"type": "view", "view": {...}} after every state change
                  (coalesced), {"type": "error", "action": ..., "detail": ...}
                  for commands that could not be applied.
"""
from __future__ import annotations
import asyncio
import base64
import binascii
import inspect
import json
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from app.models.reports import Category
from app.scripts.logging_config import get_logger, set_request_id
from app.services.map_session import MapSession
from app.services.media_store import PhotoUpload

logger = get_logger("api.session")

router = APIRouter(prefix="/session", tags=["session"])


class SessionCommand(BaseModel):
    action: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    zoom: Optional[int] = None
    category: Optional[Category] = None
    text: Optional[str] = None
    place_id: Optional[str] = None
    field: Optional[str] = None
    value: Optional[str] = None
    banner_id: Optional[str] = None
    photo_base64: Optional[str] = None
    photo_content_type: Optional[str] = None
    photo_filename: Optional[str] = None


def _need(cmd: SessionCommand, *names: str) -> List[Any]:
    values = [getattr(cmd, n) for n in names]
    missing = [n for n, v in zip(names, values) if v is None]
    if missing:
        raise ValueError(f"missing_field:{','.join(missing)}")
    return values


def _decode_photo(cmd: SessionCommand) -> Optional[PhotoUpload]:
    if not cmd.photo_base64:
        return None
    try:
        data = base64.b64decode(cmd.photo_base64, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("invalid_photo_encoding")
    return PhotoUpload(data=data, content_type=cmd.photo_content_type or "application/octet-stream",
                       filename=cmd.photo_filename)


Handler = Callable[[MapSession, SessionCommand], Any]

HANDLERS: Dict[str, Handler] = {
    "map_click": lambda s, c: s.map_click(*_need(c, "lat", "lng")),
    "choose_type": lambda s, c: s.choose_type(*_need(c, "category")),
    "open_create": lambda s, c: s.open_create(*_need(c, "category")),
    "cancel": lambda s, c: s.cancel(),
    "dismiss": lambda s, c: s.dismiss(),
    "open_search": lambda s, c: s.open_search(),
    "close_search": lambda s, c: s.close_search(),
    "search_input": lambda s, c: s.search_input(c.text or ""),
    "search_submit": lambda s, c: s.search_submit(c.text),
    "select_result": lambda s, c: s.select_result(*_need(c, "place_id")),
    "focus": lambda s, c: s.focus(*_need(c, "lat", "lng"), c.zoom),
    "set_zoom": lambda s, c: s.set_zoom(*_need(c, "zoom")),
    "form_field": lambda s, c: s.form_field(*_need(c, "field"), c.value),
    "location_input": lambda s, c: s.location_input(c.text or ""),
    "select_suggestion": lambda s, c: s.select_suggestion(*_need(c, "place_id")),
    "use_my_location": lambda s, c: s.use_my_location(*_need(c, "lat", "lng")),
    "set_photo": lambda s, c: s.set_photo(_decode_photo(c)),
    "submit": lambda s, c: s.submit(),
    "dismiss_banner": lambda s, c: s.dismiss_banner(*_need(c, "banner_id")),
}


async def handle_command(session: MapSession, payload: Any) -> Optional[Dict[str, Any]]:
    """Apply one client message. Returns an error message dict, or None on success."""
    try:
        cmd = SessionCommand.model_validate(payload)
    except ValidationError as e:
        return {"type": "error", "action": None, "detail": f"invalid_command:{e.error_count()} error(s)"}
    handler = HANDLERS.get(cmd.action)
    if handler is None:
        return {"type": "error", "action": cmd.action, "detail": "unknown_action"}
    try:
        result = handler(session, cmd)
        if inspect.isawaitable(result):
            await result
    except ValueError as e:
        return {"type": "error", "action": cmd.action, "detail": str(e)}
    return None


async def _pump(websocket: WebSocket, session: MapSession, dirty: asyncio.Event, outbox: List[dict]):
    while True:
        await dirty.wait()
        dirty.clear()
        while outbox:
            await websocket.send_json(outbox.pop(0))
        await websocket.send_json({"type": "view", "view": session.view()})


async def _stop_sender(task: asyncio.Task) -> None:
    """Cancel the view pump and collect its outcome (a send on a closed socket may have failed it)."""
    task.cancel()
    for outcome in await asyncio.gather(task, return_exceptions=True):
        if isinstance(outcome, Exception):
            logger.info("WS sender ended with %s: %s", type(outcome).__name__, outcome)


@router.websocket("/ws")
async def session_ws(websocket: WebSocket):
    services = websocket.app.state.services
    await websocket.accept()
    dirty = asyncio.Event()
    outbox: List[dict] = []
    session = MapSession(services.data, services.geo, on_change=lambda _s: dirty.set())
    set_request_id(session.session_id)
    services.sessions[session.session_id] = session
    sender = asyncio.create_task(_pump(websocket, session, dirty, outbox))
    logger.info("WS open session=%s sessions=%d", session.session_id, len(services.sessions))
    try:
        await session.start()
        dirty.set()
        while True:
            raw = await websocket.receive_text()
            try:
                payload = json.loads(raw)
            except ValueError:
                outbox.append({"type": "error", "action": None, "detail": "invalid_json"})
                dirty.set()
                continue
            error = await handle_command(session, payload)
            if error is not None:
                outbox.append(error)
                dirty.set()
    except WebSocketDisconnect as e:
        logger.info("WS closed session=%s code=%s", session.session_id, e.code)
    finally:
        await _stop_sender(sender)
        session.close()
        services.sessions.pop(session.session_id, None)
