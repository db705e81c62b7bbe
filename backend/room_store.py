from typing import Callable, Dict, List, Optional
import asyncio
import inspect
import logging
import random
import string
import time

import config
from errors import NotFoundError
from room import Room

logger = logging.getLogger(__name__)


class RoomStore:
    """Owns every live room, keyed by room code.

    Mutations for one code are serialized through that room's lock; rooms
    never share a lock, so unrelated rooms proceed in parallel.
    """

    def __init__(self):
        self._rooms: Dict[str, Room] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, code: str) -> bool:
        return code in self._rooms

    def generate_code(self) -> str:
        """Generate a unique room code, checking for collisions."""
        alphabet = string.ascii_uppercase + string.digits
        for _ in range(config.MAX_ROOM_CODE_ATTEMPTS):
            code = ''.join(random.choices(alphabet, k=config.ROOM_CODE_LENGTH))
            if code not in self._rooms:
                return code
        raise RuntimeError("Failed to generate unique room code")

    def create(self, code: str, room: Room) -> Room:
        if code in self._rooms:
            raise ValueError(f"Room code already in use: {code}")
        self._rooms[code] = room
        self._locks[code] = asyncio.Lock()
        return room

    def get(self, code: str) -> Room:
        room = self._rooms.get(code)
        if room is None:
            raise NotFoundError(code)
        return room

    def find(self, code: str) -> Optional[Room]:
        return self._rooms.get(code)

    async def mutate(self, code: str, fn: Callable) -> Room:
        """Apply ``fn(room)`` while holding the room's lock.

        ``fn`` may be a plain function or a coroutine function. A room that
        ``fn`` marks as closed is removed before the lock is released.
        """
        room = self._rooms.get(code)
        lock = self._locks.get(code)
        if room is None or lock is None:
            raise NotFoundError(code)
        async with lock:
            # The room may have been deleted (or the code reused) while we waited
            if self._rooms.get(code) is not room:
                raise NotFoundError(code)
            try:
                result = fn(room)
                if inspect.isawaitable(result):
                    await result
            finally:
                if room.closed:
                    self._remove(code, room)
            room.touch()
            return room

    async def delete(self, code: str) -> Optional[Room]:
        room = self._rooms.get(code)
        lock = self._locks.get(code)
        if room is None or lock is None:
            return None
        async with lock:
            if self._rooms.get(code) is not room:
                return None
            room.closed = True
            self._remove(code, room)
            return room

    def _remove(self, code: str, room: Room):
        if self._rooms.get(code) is room:
            del self._rooms[code]
            self._locks.pop(code, None)
            logger.info("Room %s removed", code)

    def expired_codes(self, now: Optional[float] = None) -> List[str]:
        now = now if now is not None else time.time()
        return [code for code, room in self._rooms.items() if room.is_expired(now)]

    def clear(self):
        for room in self._rooms.values():
            if room.timer_task:
                room.timer_task.cancel()
        self._rooms.clear()
        self._locks.clear()
