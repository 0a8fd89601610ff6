# prepstream/api/feed_routes.py
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from prepstream.feed_manager import FeedController, FeedHub
from prepstream.schemas import DEFAULT_FILTERS, Filters

logger = logging.getLogger(__name__)

router = APIRouter()


async def handle_message(feed: FeedController, websocket: WebSocket, text: str) -> None:
    """Dispatches one consumer event: a consumption report, a filter commit or an exam switch."""
    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        await websocket.send_json({"type": "ERROR", "detail": "message is not valid JSON"})
        return
    if not isinstance(message, dict):
        await websocket.send_json({"type": "ERROR", "detail": "message must be an object"})
        return

    kind = message.get("type")
    if kind == "consumption":
        index = message.get("index")
        if not isinstance(index, int) or isinstance(index, bool):
            await websocket.send_json({"type": "ERROR", "detail": "index must be an integer"})
            return
        feed.report_consumption(index)
    elif kind == "filters":
        try:
            filters = Filters.model_validate(message.get("filters"))
        except ValidationError as e:
            await websocket.send_json({"type": "ERROR", "detail": f"invalid filters: {e.error_count()} error(s)"})
            return
        feed.set_filters(filters)
    elif kind == "exam":
        try:
            filters = (feed.filters or DEFAULT_FILTERS).with_exam(message.get("exam"))
        except ValidationError as e:
            await websocket.send_json({"type": "ERROR", "detail": f"invalid exam: {e.error_count()} error(s)"})
            return
        feed.set_filters(filters)
    else:
        await websocket.send_json({"type": "ERROR", "detail": f"unknown message type: {kind}"})


@router.websocket("/ws/feed/{feed_id}")
async def feed_websocket(websocket: WebSocket, feed_id: str):
    hub: FeedHub = websocket.app.state.hub
    feed = await hub.connect(feed_id, websocket)
    try:
        while True:
            text = await websocket.receive_text()
            await handle_message(feed, websocket, text)
    except WebSocketDisconnect:
        logger.info("Client disconnected from feed %s", feed_id)
    finally:
        await hub.disconnect(feed_id, websocket)
