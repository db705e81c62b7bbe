from collections import deque
from typing import Deque, Dict, List, Optional, Set, Tuple
import asyncio
import logging

logger = logging.getLogger(__name__)


class Outbox:
    """Events produced by one command, delivered in order after the room lock is released."""

    def __init__(self):
        self.items: List[Tuple] = []

    def to_room(self, room_code: str, event: str, exclude: Optional[str] = None, **payload):
        self.items.append(("room", room_code, exclude, {"type": event, **payload}))

    def to_connection(self, connection_id: str, event: str, **payload):
        self.items.append(("connection", connection_id, None, {"type": event, **payload}))

    def join(self, connection_id: str, room_code: str):
        self.items.append(("join", connection_id, room_code, None))

    def leave(self, connection_id: str):
        self.items.append(("leave", connection_id, None, None))

    def close_room(self, room_code: str):
        self.items.append(("close", room_code, None, None))


class BroadcastGateway:
    """Fan-out of room events to live WebSocket connections.

    Delivery is best-effort: a failed send drops that connection from the
    gateway and never touches room state. Events queued for a room go out in
    the order they were queued, to the members the room had at queue time.
    """

    def __init__(self):
        self.connections: Dict[str, object] = {}  # connection_id -> websocket
        self.memberships: Dict[str, str] = {}  # connection_id -> room_code
        self.rooms: Dict[str, Set[str]] = {}  # room_code -> connection ids
        self._pending: Dict[str, Deque[Tuple[str, dict]]] = {}  # room_code -> queued sends
        self._drains: Dict[str, asyncio.Task] = {}

    def register(self, connection_id: str, websocket):
        self.connections[connection_id] = websocket

    def unregister(self, connection_id: str):
        self.connections.pop(connection_id, None)
        self.leave(connection_id)

    def room_of(self, connection_id: str) -> Optional[str]:
        return self.memberships.get(connection_id)

    def join(self, connection_id: str, room_code: str):
        current = self.memberships.get(connection_id)
        if current and current != room_code:
            self.leave(connection_id)
        self.memberships[connection_id] = room_code
        self.rooms.setdefault(room_code, set()).add(connection_id)

    def leave(self, connection_id: str):
        room_code = self.memberships.pop(connection_id, None)
        if room_code is None:
            return
        members = self.rooms.get(room_code)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self.rooms[room_code]

    def close_room(self, room_code: str):
        for connection_id in self.rooms.pop(room_code, set()):
            self.memberships.pop(connection_id, None)

    def _route(self, outbox: Outbox) -> List[Tuple[str, dict]]:
        """Apply the outbox's membership changes and expand it into (connection, message) sends."""
        sends = []
        for kind, target, extra, message in outbox.items:
            if kind == "room":
                sends.extend((connection_id, message) for connection_id in self.rooms.get(target, ())
                             if connection_id != extra)
            elif kind == "connection":
                sends.append((target, message))
            elif kind == "join":
                self.join(target, extra)
            elif kind == "leave":
                self.leave(target)
            elif kind == "close":
                self.close_room(target)
        return sends

    async def send(self, connection_id: str, message: dict) -> bool:
        ws = self.connections.get(connection_id)
        if ws is None:
            return False
        try:
            await ws.send_json(message)
            return True
        except Exception as e:
            logger.warning("Send of '%s' to %s failed: %s", message.get("type"), connection_id, e)
            self.connections.pop(connection_id, None)
            return False

    async def deliver(self, outbox: Outbox):
        """Send an outbox straight away, outside any room's queue."""
        for connection_id, message in self._route(outbox):
            await self.send(connection_id, message)

    def enqueue(self, room_code: str, outbox: Outbox):
        """Queue an outbox behind everything already queued for the room.

        Called with the room's lock held, so the queue follows mutation order.
        """
        sends = self._route(outbox)
        if sends:
            self._pending.setdefault(room_code, deque()).extend(sends)

    async def flush(self, room_code: str):
        """Wait until everything queued for the room has been sent.

        One drain task per room does the sending. A caller cancelled while it
        waits (a timer stopped mid-send) leaves the drain running.
        """
        if room_code not in self._pending:
            return
        drain = self._drains.get(room_code)
        if drain is None or drain.done():
            drain = asyncio.create_task(self._drain(room_code))
            self._drains[room_code] = drain
        await asyncio.shield(drain)

    async def _drain(self, room_code: str):
        queue = self._pending.get(room_code)
        while queue:
            connection_id, message = queue.popleft()
            await self.send(connection_id, message)
        self._pending.pop(room_code, None)
        self._drains.pop(room_code, None)

    def clear(self):
        for drain in self._drains.values():
            drain.cancel()
        self._drains.clear()
        self._pending.clear()
        self.connections.clear()
        self.memberships.clear()
        self.rooms.clear()
