"""Live game-session engine.

Every change to a room goes through ``GameEngine.dispatch``: client events and
timer ticks alike are commands, applied under the room's lock by the handler
for their type. Handlers only mutate the room and collect events in an
``Outbox``, which joins the room's delivery queue before the lock is released
and is sent after it, so every client sees a room's events in mutation order.
"""
from typing import List, Optional
import asyncio
import hmac
import logging
import secrets
import time

import config
import scoring
from broadcast import BroadcastGateway, Outbox
from commands import (
    TIMER_COUNTDOWN,
    TIMER_QUESTION,
    Command,
    CreateGame,
    Disconnect,
    JoinGame,
    NextQuestion,
    ShowLeaderboard,
    StartGame,
    SubmitAnswer,
    TimerTick,
)
from errors import DuplicateSubmission, NotFoundError, UnauthorizedAction, ValidationError
from room import (
    ANSWER_REVEAL,
    COUNTDOWN,
    FINISHED,
    LEADERBOARD,
    PLAYING,
    ROLE_HOST,
    ROLE_PLAYER,
    ROLE_RECONNECTED,
    WAITING,
    Room,
)
from room_store import RoomStore
from timer_service import TimerService

logger = logging.getLogger(__name__)


class GameEngine:
    def __init__(self, store: Optional[RoomStore] = None,
                 gateway: Optional[BroadcastGateway] = None,
                 timers: Optional[TimerService] = None):
        self.store = store or RoomStore()
        self.gateway = gateway or BroadcastGateway()
        self.timers = timers or TimerService()
        self.timers.bind(self.dispatch, self._timer_generation)
        self.history: List[dict] = []
        self._cleanup_task: Optional[asyncio.Task] = None
        self._handlers = {
            JoinGame: self._join,
            StartGame: self._start_game,
            SubmitAnswer: self._submit_answer,
            ShowLeaderboard: self._show_leaderboard,
            NextQuestion: self._next_question,
            Disconnect: self._disconnect,
            TimerTick: self._tick,
        }

    # ------------------------------------------------------------------
    # Mutation funnel
    # ------------------------------------------------------------------

    async def dispatch(self, command: Command) -> Outbox:
        """Apply one command and deliver the events it produced."""
        if isinstance(command, (CreateGame, JoinGame)):
            await self._leave_previous_room(command)
        outbox = Outbox()
        queued = False
        try:
            if isinstance(command, CreateGame):
                self._create_game(command, outbox)
            else:
                handler = self._handlers[type(command)]

                def apply(room: Room):
                    handler(room, command, outbox)
                    self.gateway.enqueue(room.code, outbox)

                await self.store.mutate(command.room_code, apply)
                queued = True
        except NotFoundError as e:
            self._reject_unknown_room(command, e, outbox)
        except UnauthorizedAction as e:
            logger.warning("Ignored %s from %s: %s", type(command).__name__, command.actor_id, e)
        except DuplicateSubmission as e:
            logger.info("Ignored duplicate submission in room %s: %s", command.room_code, e)
        except ValidationError as e:
            logger.info("Rejected %s from %s: %s", type(command).__name__, command.actor_id, e)
            if command.actor_id:
                event = "join-error" if isinstance(command, JoinGame) else "error"
                outbox.to_connection(command.actor_id, event, message=str(e))
        except Exception:
            logger.exception("Failed to apply %s to room %s", type(command).__name__, command.room_code)
            outbox = Outbox()
            await self._teardown(command.room_code, outbox)
            self.gateway.enqueue(command.room_code, outbox)
            queued = True
        if queued:
            await self.gateway.flush(command.room_code)
        else:
            await self.gateway.deliver(outbox)
        return outbox

    async def _leave_previous_room(self, command: Command):
        """A connection sits in one room at a time; moving on leaves the old one."""
        previous = self.gateway.room_of(command.actor_id)
        if previous and previous != command.room_code:
            logger.info("Connection %s moving from room %s to %s", command.actor_id,
                        previous, command.room_code or "a new room")
            await self.dispatch(Disconnect(room_code=previous, actor_id=command.actor_id))

    async def disconnect(self, connection_id: str):
        """Resolve a closed connection to its room and remove it from the game."""
        room_code = self.gateway.room_of(connection_id)
        if room_code:
            await self.dispatch(Disconnect(room_code=room_code, actor_id=connection_id))
        self.gateway.unregister(connection_id)

    def _reject_unknown_room(self, command: Command, error: NotFoundError, outbox: Outbox):
        if isinstance(command, (Disconnect, TimerTick)) or not command.actor_id:
            return
        logger.info("%s from %s for unknown room %s", type(command).__name__,
                    command.actor_id, error.room_code)
        event = "join-error" if isinstance(command, JoinGame) else "error"
        outbox.to_connection(command.actor_id, event, message="Game room not found")

    async def _teardown(self, room_code: str, outbox: Outbox):
        """End a room whose state can no longer be trusted."""
        room = await self.store.delete(room_code)
        if room is None:
            return
        self.timers.cancel(room)
        outbox.to_room(room_code, "game-ended", message="The game ended unexpectedly")
        outbox.close_room(room_code)
        logger.error("Room %s torn down after an internal error", room_code)

    def _timer_generation(self, room_code: str) -> Optional[int]:
        room = self.store.find(room_code)
        return room.timer_generation if room else None

    @staticmethod
    def _require_host(room: Room, command: Command):
        if not room.is_host(command.actor_id):
            raise UnauthorizedAction(
                f"{type(command).__name__} from non-host {command.actor_id} in room {room.code}")

    # ------------------------------------------------------------------
    # Room lifecycle
    # ------------------------------------------------------------------

    def _create_game(self, command: CreateGame, outbox: Outbox):
        if len(self.store) >= config.MAX_ROOMS:
            raise ValidationError("Too many active rooms. Please try again later.")
        try:
            code = self.store.generate_code()
        except RuntimeError as e:
            raise ValidationError(str(e)) from e
        room = Room(
            code=code,
            host_id=command.actor_id,
            questions=list(command.questions),
            settings=command.settings,
            title=command.title,
            host_token=secrets.token_urlsafe(32),
        )
        self.store.create(code, room)
        outbox.join(command.actor_id, code)
        outbox.to_connection(command.actor_id, "game-created",
                             roomCode=code, hostToken=room.host_token)
        logger.info("Room created: %s (%d questions, host %s)", code, len(room.questions), command.actor_id)

    def _join(self, room: Room, command: JoinGame, outbox: Outbox):
        actor = command.actor_id
        if command.is_host:
            self._rebind_host(room, command, outbox)
            return
        if room.game_state == FINISHED:
            raise ValidationError("Game has already finished")
        name = command.player_name
        existing = room.players.get(name)
        if existing is None and len(room.players) >= config.MAX_PLAYERS_PER_ROOM:
            raise ValidationError("Room is full")
        old_connection = existing.connection_id if existing else None

        role = room.join(name, actor)
        if role == ROLE_HOST:
            raise UnauthorizedAction(f"Host tried to join room {room.code} as a player")

        outbox.join(actor, room.code)
        if role == ROLE_RECONNECTED and old_connection != actor:
            outbox.to_connection(old_connection, "kicked", message="You joined from another device")
            outbox.leave(old_connection)

        player = room.players[name]
        if command.session:
            outbox.to_connection(actor, "game-state", role=role, score=player.score, **room.snapshot())
        else:
            outbox.to_connection(actor, "joined-game",
                                 roomCode=room.code,
                                 role=role,
                                 score=player.score,
                                 playerCount=len(room.players),
                                 players=room.player_list())
        if role == ROLE_PLAYER:
            outbox.to_room(room.code, "player-joined", exclude=actor,
                           playerName=name,
                           playerCount=len(room.players),
                           players=room.player_list())

    def _rebind_host(self, room: Room, command: JoinGame, outbox: Outbox):
        if not room.host_token or not hmac.compare_digest(command.host_token, room.host_token):
            raise UnauthorizedAction(f"Invalid host token for room {room.code}")
        previous = room.host_id
        room.host_id = command.actor_id
        if previous != command.actor_id:
            outbox.leave(previous)
            logger.info("Host of room %s rebound (%s -> %s)", room.code, previous, command.actor_id)
        outbox.join(command.actor_id, room.code)
        outbox.to_connection(command.actor_id, "game-state", role=ROLE_HOST, **room.snapshot())

    def _disconnect(self, room: Room, command: Disconnect, outbox: Outbox):
        actor = command.actor_id
        if room.is_host(actor):
            outbox.leave(actor)
            self._close(room, outbox, "Host has left the game")
            return
        player = room.leave(actor)
        outbox.leave(actor)
        if player is None:
            return
        if not room.players:
            self._close(room, outbox, "All players have left the game")
            return
        outbox.to_room(room.code, "player-left",
                       playerName=player.name,
                       playerCount=len(room.players),
                       players=room.player_list())

    def _close(self, room: Room, outbox: Outbox, message: str):
        self.timers.cancel(room)
        room.closed = True
        outbox.to_room(room.code, "game-ended", message=message,
                       leaderboard=scoring.get_leaderboard(room))
        outbox.close_room(room.code)
        logger.info("Room %s closed: %s", room.code, message)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _start_game(self, room: Room, command: StartGame, outbox: Outbox):
        self._require_host(room, command)
        if room.game_state != WAITING:
            logger.info("start-game ignored in room %s (state %s)", room.code, room.game_state)
            return
        if command.questions:
            room.questions = list(command.questions)
        if command.settings:
            room.settings = command.settings
        if not room.questions:
            raise ValidationError("Cannot start a game without questions")

        room.game_state = COUNTDOWN
        room.countdown = config.COUNTDOWN_SECONDS
        room.current_question_index = 0
        room.time_remaining = room.time_limit
        outbox.to_room(room.code, "game-state", **room.snapshot())
        outbox.to_room(room.code, "countdown", count=room.countdown)
        self.timers.start(room, TIMER_COUNTDOWN)
        logger.info("Game starting in room %s with %d players", room.code, len(room.players))

    def _tick(self, room: Room, tick: TimerTick, outbox: Outbox):
        if not self.timers.is_current(room, tick):
            return
        if tick.kind == TIMER_COUNTDOWN and room.game_state == COUNTDOWN:
            room.countdown -= 1
            outbox.to_room(room.code, "countdown", count=room.countdown)
            if room.countdown <= 0:
                room.current_question_index = 0
                self._open_question(room, outbox, "game-state")
        elif tick.kind == TIMER_QUESTION and room.game_state == PLAYING:
            room.time_remaining = max(room.time_remaining - 1, 0)
            outbox.to_room(room.code, "time-update", timeRemaining=room.time_remaining)
            if room.time_remaining == 0:
                self.timers.cancel(room)
                self._reveal_answer(room, outbox)
        else:
            # The room moved on without this timer noticing
            self.timers.cancel(room)

    def _open_question(self, room: Room, outbox: Outbox, event: str):
        room.game_state = PLAYING
        room.time_remaining = room.time_limit
        room.clear_answers()
        outbox.to_room(room.code, event, **room.snapshot())
        outbox.to_room(room.code, "time-update", timeRemaining=room.time_remaining)
        self.timers.start(room, TIMER_QUESTION)
        logger.info("Room %s question %d/%d", room.code,
                    room.current_question_index + 1, len(room.questions))

    def _reveal_answer(self, room: Room, outbox: Outbox):
        room.game_state = ANSWER_REVEAL
        question = room.current_question
        answers = []
        for player in room.players.values():
            submission = room.submissions.get(player.name)
            answers.append({
                "playerName": player.name,
                "answer": player.current_answer,
                "isCorrect": submission.is_correct if submission else False,
                "points": submission.points_awarded if submission else 0,
            })
        outbox.to_room(room.code, "answer-reveal",
                       questionId=question.id,
                       correctAnswer=question.correct_answer,
                       answers=answers,
                       answerDistribution=scoring.get_answer_distribution(room))

    def _submit_answer(self, room: Room, command: SubmitAnswer, outbox: Outbox):
        submission = scoring.submit_answer(room, command.actor_id, command.question_id,
                                           command.answer, command.time_left)
        if submission is None:
            return
        outbox.to_room(room.code, "answer-submitted",
                       playerName=submission.player_name,
                       questionId=submission.question_id,
                       answer=submission.answer,
                       isCorrect=submission.is_correct,
                       points=submission.points_awarded,
                       answeredCount=len(room.submissions),
                       playerCount=len(room.players),
                       leaderboard=scoring.get_leaderboard(room),
                       answerDistribution=scoring.get_answer_distribution(room))

    def _show_leaderboard(self, room: Room, command: ShowLeaderboard, outbox: Outbox):
        self._require_host(room, command)
        if room.game_state not in (PLAYING, ANSWER_REVEAL):
            logger.info("show-leaderboard ignored in room %s (state %s)", room.code, room.game_state)
            return
        self.timers.cancel(room)
        room.game_state = LEADERBOARD
        outbox.to_room(room.code, "show-leaderboard",
                       gameState=room.game_state,
                       leaderboard=scoring.get_leaderboard(room),
                       isEndOfGame=room.is_last_question)

    def _next_question(self, room: Room, command: NextQuestion, outbox: Outbox):
        self._require_host(room, command)
        if room.game_state not in (PLAYING, ANSWER_REVEAL, LEADERBOARD):
            logger.info("next-question-host ignored in room %s (state %s)", room.code, room.game_state)
            return
        self.timers.cancel(room)
        if room.current_question_index + 1 >= len(room.questions):
            self._finish(room, outbox)
            return
        room.current_question_index += 1
        self._open_question(room, outbox, "next-question")

    def _finish(self, room: Room, outbox: Outbox):
        room.game_state = FINISHED
        room.current_question_index = len(room.questions)
        room.finished_at = time.time()
        leaderboard = scoring.get_leaderboard(room)
        outbox.to_room(room.code, "show-leaderboard",
                       gameState=room.game_state,
                       leaderboard=leaderboard,
                       isEndOfGame=True)
        self._record_history(room, leaderboard)
        logger.info("Game finished in room %s", room.code)

    # ------------------------------------------------------------------
    # History and cleanup
    # ------------------------------------------------------------------

    def get_game_summary(self, room: Room, leaderboard: Optional[List[dict]] = None) -> dict:
        """Build a game summary for history storage."""
        return {
            "room_code": room.code,
            "title": room.title or "Untitled",
            "total_questions": len(room.questions),
            "player_count": len(room.players),
            "leaderboard": leaderboard if leaderboard is not None else scoring.get_leaderboard(room),
            "answer_log": list(room.answer_log),
            "completed_at": room.finished_at or time.time(),
        }

    def _record_history(self, room: Room, leaderboard: List[dict]):
        self.history.append(self.get_game_summary(room, leaderboard))
        if len(self.history) > config.MAX_GAME_HISTORY:
            del self.history[:len(self.history) - config.MAX_GAME_HISTORY]

    def start_cleanup_loop(self):
        """Start the background room cleanup task."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_expired_rooms())

    def stop_cleanup_loop(self):
        if self._cleanup_task:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    async def _cleanup_expired_rooms(self):
        """Periodically remove idle and long-finished rooms."""
        while True:
            try:
                await asyncio.sleep(config.CLEANUP_INTERVAL_SECONDS)
                await self.reap_expired_rooms()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in room cleanup loop")

    async def reap_expired_rooms(self, now: Optional[float] = None) -> List[str]:
        reaped = []
        for code in self.store.expired_codes(now):
            room = await self.store.delete(code)
            if room is None:
                continue
            self.timers.cancel(room)
            outbox = Outbox()
            if room.game_state != FINISHED:
                outbox.to_room(code, "game-ended", message="Room expired")
            outbox.close_room(code)
            self.gateway.enqueue(code, outbox)
            await self.gateway.flush(code)
            reaped.append(code)
            logger.info("Cleaned up expired room %s", code)
        return reaped

    def reset(self):
        """Drop every room and connection (used on shutdown and in tests)."""
        self.store.clear()
        self.gateway.clear()
        self.history.clear()


game_engine = GameEngine()
