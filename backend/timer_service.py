from typing import Awaitable, Callable, Optional
import asyncio
import logging

import config
from commands import TimerTick
from room import Room

logger = logging.getLogger(__name__)


class TimerService:
    """One repeating tick task per room.

    Ticks are not applied here: each one is posted to the engine as a
    ``TimerTick`` command tagged with the room's timer generation, so ticks and
    client actions share the same mutation path. Starting or cancelling a timer
    bumps the generation, which turns any tick still in flight into a no-op.
    """

    def __init__(self, tick_interval: float = config.TICK_SECONDS):
        self.tick_interval = tick_interval
        self._dispatch: Optional[Callable[[TimerTick], Awaitable]] = None
        self._generation_of: Optional[Callable[[str], Optional[int]]] = None

    def bind(self, dispatch: Callable[[TimerTick], Awaitable],
             generation_of: Callable[[str], Optional[int]]):
        self._dispatch = dispatch
        self._generation_of = generation_of

    def start(self, room: Room, kind: str):
        """Replace the room's timer with a new one of the given kind."""
        self.cancel(room)
        generation = room.timer_generation
        room.timer_task = asyncio.create_task(self._run(room.code, kind, generation))
        logger.debug("Started %s timer for room %s (generation %d)", kind, room.code, generation)

    def cancel(self, room: Room):
        room.timer_generation += 1
        task = room.timer_task
        room.timer_task = None
        # A tick that stops its own timer must not cancel the task delivering its events
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def is_current(self, room: Room, tick: TimerTick) -> bool:
        return tick.generation == room.timer_generation

    async def _run(self, room_code: str, kind: str, generation: int):
        try:
            while True:
                await asyncio.sleep(self.tick_interval)
                await self._dispatch(TimerTick(room_code=room_code, actor_id=None,
                                               kind=kind, generation=generation))
                if self._generation_of(room_code) != generation:
                    break
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Timer for room %s stopped unexpectedly", room_code)
