import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from coursehub.core.current_user import user_from_token
from coursehub.core.errors import DomainError, Unauthenticated, ValidationFailed
from coursehub.models.user import User
from coursehub.services.chat import ChatEngine

logger = logging.getLogger(__name__)

router = APIRouter()

JOIN_ROOM = "join_room"
LEAVE_ROOM = "leave_room"
SEND_MESSAGE = "send_message"
TYPING = "typing"


def _room_id(data: dict) -> int:
    try:
        return int(data["room_id"])
    except (KeyError, TypeError, ValueError):
        raise ValidationFailed("room_id is required")


def _authenticate(state, token: Optional[str]) -> int:
    db = state.session_factory()
    try:
        return user_from_token(db, state.settings, token).id
    finally:
        db.close()


def _handle_event(state, websocket: WebSocket, user_id: int, event: str, data: dict) -> Optional[dict]:
    """Apply one client frame. Returns an acknowledgement for the sender, if any.

    Runs in a worker thread with its own session, like a sync endpoint.
    """
    db = state.session_factory()
    try:
        user = db.get(User, user_id)
        if user is None:
            raise Unauthenticated("User no longer exists")

        engine = ChatEngine(db, state.broadcaster, room_locks=state.room_locks, clock=state.clock)
        room_id = _room_id(data)

        if event == JOIN_ROOM:
            engine.require_participant(room_id, user)
            state.broadcaster.join(room_id, websocket, user.id)
            return {"event": "joined_room", "data": {"room_id": room_id}}

        if event == LEAVE_ROOM:
            state.broadcaster.leave(room_id, websocket)
            return {"event": "left_room", "data": {"room_id": room_id}}

        if event == SEND_MESSAGE:
            # the sender gets receive_message through the room like everyone else
            engine.send_message(
                room_id,
                user,
                data.get("content") or "",
                attachment=data.get("attachment"),
                attachment_type=data.get("attachment_type"),
                attachment_name=data.get("attachment_name"),
            )
            return None

        if event == TYPING:
            engine.typing(room_id, user, bool(data.get("is_typing", True)), exclude=websocket)
            return None

        raise ValidationFailed(f"Unknown event {event!r}")
    finally:
        db.close()


def _error_frame(message: str, status_code: int) -> dict:
    return {"event": "error", "data": {"message": message, "status": status_code}}


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket, token: Optional[str] = None):
    state = websocket.app.state

    try:
        user_id = await run_in_threadpool(_authenticate, state, token)
    except Unauthenticated as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.detail)
        return

    await websocket.accept()
    logger.info("websocket connected for user %s", user_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
                event = frame["event"]
                data = frame.get("data") or {}
            except (ValueError, KeyError, TypeError, AttributeError):
                await websocket.send_json(_error_frame("Malformed frame", 400))
                continue

            try:
                ack = await run_in_threadpool(_handle_event, state, websocket, user_id, event, data)
            except DomainError as exc:
                await websocket.send_json(_error_frame(exc.detail, exc.status_code))
                continue
            except SQLAlchemyError:
                logger.exception("%s from user %s failed", event, user_id)
                await websocket.send_json(_error_frame(f"Failed to handle {event}", 500))
                continue

            if ack is not None:
                await websocket.send_json(ack)
    except WebSocketDisconnect:
        logger.info("websocket disconnected for user %s", user_id)
    finally:
        state.broadcaster.disconnect(websocket)
