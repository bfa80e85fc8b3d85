"""Fan-out of chat events to the subscribers of a room.

The chat engine only knows the ``Broadcaster`` interface. The application
wires in ``WebSocketBroadcaster``; tests use ``InMemoryBroadcaster``.
"""
import abc
import logging
import threading
from collections import defaultdict
from typing import Any, Hashable, Optional

import anyio.from_thread
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


class Broadcaster(abc.ABC):
    @abc.abstractmethod
    def publish(
        self,
        room_id: int,
        event: str,
        payload: dict[str, Any],
        exclude: Optional[Hashable] = None,
    ) -> None:
        """Deliver ``event`` to every subscriber of ``room_id`` except ``exclude``."""

    @abc.abstractmethod
    def evict(self, room_id: int, user_id: int) -> None:
        """Drop every subscription ``user_id`` holds on ``room_id``."""


class InMemoryBroadcaster(Broadcaster):
    def __init__(self):
        self.events: list[tuple[int, str, dict[str, Any], Optional[Hashable]]] = []
        self.evictions: list[tuple[int, int]] = []

    def publish(self, room_id, event, payload, exclude=None):
        self.events.append((room_id, event, payload, exclude))

    def evict(self, room_id, user_id):
        self.evictions.append((room_id, user_id))

    def events_for(self, room_id: int, event: Optional[str] = None) -> list[dict[str, Any]]:
        return [
            payload
            for rid, name, payload, _exclude in self.events
            if rid == room_id and (event is None or name == event)
        ]


class WebSocketBroadcaster(Broadcaster):
    """Room subscriptions for live websocket connections.

    ``publish`` is called from worker threads (sync endpoints and engine
    calls run in the threadpool) and hops onto the event loop to send.
    """

    def __init__(self):
        self._lock = threading.Lock()
        # room id -> {socket: id of the user on that socket}
        self._rooms: dict[int, dict[WebSocket, int]] = defaultdict(dict)

    def join(self, room_id: int, websocket: WebSocket, user_id: int) -> None:
        with self._lock:
            self._rooms[room_id][websocket] = user_id

    def _drop(self, room_id: int, sockets) -> None:
        members = self._rooms.get(room_id)
        if members is None:
            return
        for websocket in sockets:
            members.pop(websocket, None)
        if not members:
            del self._rooms[room_id]

    def leave(self, room_id: int, websocket: WebSocket) -> None:
        with self._lock:
            self._drop(room_id, [websocket])

    def evict(self, room_id: int, user_id: int) -> None:
        with self._lock:
            members = self._rooms.get(room_id, {})
            gone = [ws for ws, uid in members.items() if uid == user_id]
            self._drop(room_id, gone)
        if gone:
            logger.info("evicted %d socket(s) of user %s from room %s", len(gone), user_id, room_id)

    def disconnect(self, websocket: WebSocket) -> None:
        with self._lock:
            for room_id in list(self._rooms):
                self._drop(room_id, [websocket])

    def subscribers(self, room_id: int) -> int:
        with self._lock:
            return len(self._rooms.get(room_id, ()))

    def publish(self, room_id, event, payload, exclude=None):
        with self._lock:
            targets = [ws for ws in self._rooms.get(room_id, ()) if ws is not exclude]
        if not targets:
            return

        frame = {"event": event, "data": jsonable_encoder(payload)}
        anyio.from_thread.run(self._send_all, room_id, targets, frame)

    async def _send_all(self, room_id: int, targets: list[WebSocket], frame: dict) -> None:
        for websocket in targets:
            try:
                await websocket.send_json(frame)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.warning("dropping dead socket from room %s: %r", room_id, exc)
                self.disconnect(websocket)
