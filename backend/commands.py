"""Session commands: one plain value per inbound event or timer tick.

Every command names the room it targets and the connection that issued it, so
the engine can resolve, authorize and apply it through one code path.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError
from models import (
    CreateGamePayload,
    GameSettings,
    JoinGamePayload,
    JoinSessionPayload,
    RoomPayload,
    StartGamePayload,
    SubmitAnswerPayload,
)

TIMER_COUNTDOWN = "countdown"
TIMER_QUESTION = "question"


@dataclass(frozen=True)
class Command:
    room_code: str
    actor_id: Optional[str]


@dataclass(frozen=True)
class CreateGame(Command):
    questions: Tuple
    settings: GameSettings
    title: str = ""


@dataclass(frozen=True)
class JoinGame(Command):
    player_name: str
    is_host: bool = False
    host_token: str = ""
    session: bool = False  # join-game-session replies with a full game-state


@dataclass(frozen=True)
class StartGame(Command):
    questions: Optional[Tuple] = None
    settings: Optional[GameSettings] = None


@dataclass(frozen=True)
class SubmitAnswer(Command):
    question_id: str
    answer: str
    time_left: float


@dataclass(frozen=True)
class ShowLeaderboard(Command):
    pass


@dataclass(frozen=True)
class NextQuestion(Command):
    pass


@dataclass(frozen=True)
class Disconnect(Command):
    pass


@dataclass(frozen=True)
class TimerTick(Command):
    kind: str
    generation: int


def _create_game(connection_id: str, message: dict) -> Command:
    payload = CreateGamePayload.model_validate(message)
    return CreateGame(room_code="", actor_id=connection_id,
                      questions=tuple(payload.questions), settings=payload.settings,
                      title=payload.title)


def _join_game(connection_id: str, message: dict) -> Command:
    payload = JoinGamePayload.model_validate(message)
    return JoinGame(room_code=payload.room_code, actor_id=connection_id,
                    player_name=payload.player_name)


def _join_game_session(connection_id: str, message: dict) -> Command:
    payload = JoinSessionPayload.model_validate(message)
    return JoinGame(room_code=payload.room_code, actor_id=connection_id,
                    player_name=payload.player_name, is_host=payload.is_host,
                    host_token=payload.host_token, session=True)


def _start_game(connection_id: str, message: dict) -> Command:
    payload = StartGamePayload.model_validate(message)
    questions = tuple(payload.questions) if payload.questions else None
    return StartGame(room_code=payload.room_code, actor_id=connection_id,
                     questions=questions, settings=payload.settings)


def _submit_answer(connection_id: str, message: dict) -> Command:
    payload = SubmitAnswerPayload.model_validate(message)
    return SubmitAnswer(room_code=payload.room_code, actor_id=connection_id,
                        question_id=payload.question_id, answer=payload.answer,
                        time_left=payload.time_left)


def _show_leaderboard(connection_id: str, message: dict) -> Command:
    payload = RoomPayload.model_validate(message)
    return ShowLeaderboard(room_code=payload.room_code, actor_id=connection_id)


def _next_question(connection_id: str, message: dict) -> Command:
    payload = RoomPayload.model_validate(message)
    return NextQuestion(room_code=payload.room_code, actor_id=connection_id)


PARSERS = {
    "create-game": _create_game,
    "join-game": _join_game,
    "join-game-session": _join_game_session,
    "start-game": _start_game,
    "submit-answer": _submit_answer,
    "show-leaderboard": _show_leaderboard,
    "next-question-host": _next_question,
}


def parse_command(connection_id: str, message: dict) -> Command:
    """Turn a decoded client message into a command, or raise ValidationError."""
    if not isinstance(message, dict):
        raise ValidationError("Message must be a JSON object")
    msg_type = message.get("type")
    parser = PARSERS.get(msg_type)
    if parser is None:
        raise ValidationError(f"Unknown message type: {msg_type}")
    try:
        return parser(connection_id, message)
    except PydanticValidationError as e:
        errors = "; ".join(err["msg"] for err in e.errors())
        raise ValidationError(f"Invalid {msg_type} payload: {errors}") from e
