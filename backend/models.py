"""Wire models for quiz questions and inbound session events.

Questions arrive as loosely shaped JSON from clients, saved quizzes and the AI
provider. They are validated once here into a closed tagged union
(``MultipleChoiceQuestion`` | ``TrueFalseQuestion``) and used as immutable
values from then on.
"""
import re
import uuid
from typing import Annotated, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BeforeValidator,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

import config

MULTIPLE_CHOICE = "multiple-choice"
TRUE_FALSE = "true-false"
TRUE_FALSE_OPTIONS = ("True", "False")

MAX_QUESTION_TEXT_LENGTH = 2000
MAX_OPTION_LENGTH = 500
MAX_TITLE_LENGTH = 500


def sanitize_text(text: str) -> str:
    """Strip HTML tags and control characters from user or LLM supplied text."""
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


def _new_question_id() -> str:
    return uuid.uuid4().hex[:9]


def _bool_to_option(value):
    if isinstance(value, bool):
        return TRUE_FALSE_OPTIONS[0] if value else TRUE_FALSE_OPTIONS[1]
    return value


class _QuestionBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=_new_question_id)
    text: str = Field(validation_alias=AliasChoices("text", "question"))

    @field_validator('id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        if v is None or v == "":
            return _new_question_id()
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        v = sanitize_text(v)[:MAX_QUESTION_TEXT_LENGTH]
        if not v:
            raise ValueError('Question text must not be empty')
        return v

    def public(self) -> dict:
        """Question as shown to players: everything but the correct answer."""
        return self.model_dump(by_alias=True, exclude={"correct_answer"})


class MultipleChoiceQuestion(_QuestionBase):
    type: Literal["multiple-choice"] = MULTIPLE_CHOICE
    options: List[str] = Field(min_length=2)
    correct_answer: str

    @field_validator('options')
    @classmethod
    def validate_options(cls, v: List[str]) -> List[str]:
        v = [sanitize_text(opt)[:MAX_OPTION_LENGTH] for opt in v]
        if any(not opt for opt in v):
            raise ValueError('Options must not be empty')
        if len(set(v)) != len(v):
            raise ValueError('Options must be unique')
        return v

    @field_validator('correct_answer')
    @classmethod
    def validate_correct_answer(cls, v: str) -> str:
        return sanitize_text(v)[:MAX_OPTION_LENGTH]

    @model_validator(mode='after')
    def check_answer_in_options(self):
        if self.correct_answer not in self.options:
            raise ValueError('correctAnswer must be one of the options')
        return self


class TrueFalseQuestion(_QuestionBase):
    type: Literal["true-false"] = TRUE_FALSE
    options: List[str] = Field(default_factory=lambda: list(TRUE_FALSE_OPTIONS))
    correct_answer: str

    @field_validator('options')
    @classmethod
    def validate_options(cls, v: List[str]) -> List[str]:
        if sorted(o.strip().lower() for o in v) != ["false", "true"]:
            raise ValueError('True/false questions must have exactly the options True and False')
        return list(TRUE_FALSE_OPTIONS)

    @field_validator('correct_answer', mode='before')
    @classmethod
    def normalize_correct_answer(cls, v):
        v = _bool_to_option(v)
        if isinstance(v, str):
            for option in TRUE_FALSE_OPTIONS:
                if v.strip().lower() == option.lower():
                    return option
        raise ValueError('correctAnswer must be True or False')


Question = Annotated[Union[MultipleChoiceQuestion, TrueFalseQuestion], Field(discriminator="type")]

_question_list = TypeAdapter(List[Question])


def infer_question_type(raw):
    """Fill in the ``type`` discriminant for payloads that omit it."""
    if not isinstance(raw, dict) or raw.get("type"):
        return raw
    answer = raw.get("correctAnswer", raw.get("correct_answer"))
    options = raw.get("options")
    looks_true_false = isinstance(answer, bool) or (
        isinstance(options, list)
        and sorted(str(o).strip().lower() for o in options) == ["false", "true"]
    ) or (options is None and isinstance(answer, str) and answer.strip().lower() in ("true", "false"))
    return {**raw, "type": TRUE_FALSE if looks_true_false else MULTIPLE_CHOICE}


def _prepare_questions(v):
    if isinstance(v, list):
        return [infer_question_type(q) for q in v]
    return v


def _check_unique_ids(questions):
    ids = [q.id for q in questions]
    if len(set(ids)) != len(ids):
        raise ValueError('Question ids must be unique')
    return questions


def parse_questions(raw: list) -> List[Union[MultipleChoiceQuestion, TrueFalseQuestion]]:
    """Validate a raw question array. Raises ValueError (pydantic.ValidationError included)."""
    return _check_unique_ids(_question_list.validate_python(_prepare_questions(raw)))


# ---------------------------------------------------------------------------
# Inbound session events
# ---------------------------------------------------------------------------

class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _normalize_room_code(v):
    if isinstance(v, str):
        return v.strip().upper()
    return v


RoomCode = Annotated[str, BeforeValidator(_normalize_room_code)]


def _clean_player_name(v: str) -> str:
    v = sanitize_text(v)
    if not v or len(v) > config.MAX_PLAYER_NAME_LENGTH:
        raise ValueError(f'Player name must be 1-{config.MAX_PLAYER_NAME_LENGTH} characters')
    return v


class GameSettings(_Payload):
    time_limit: int = config.DEFAULT_TIME_LIMIT

    @field_validator('time_limit')
    @classmethod
    def validate_time_limit(cls, v: int) -> int:
        if v < config.MIN_TIME_LIMIT or v > config.MAX_TIME_LIMIT:
            raise ValueError(
                f'Time limit must be between {config.MIN_TIME_LIMIT} and {config.MAX_TIME_LIMIT} seconds')
        return v


class _QuestionSetPayload(_Payload):
    @field_validator('questions', mode='before', check_fields=False)
    @classmethod
    def prepare_questions(cls, v):
        return _prepare_questions(v)

    @field_validator('questions', check_fields=False)
    @classmethod
    def validate_questions(cls, v):
        if v is None:
            return v
        if len(v) > config.MAX_QUESTIONS_PER_GAME:
            raise ValueError(f'A game can have at most {config.MAX_QUESTIONS_PER_GAME} questions')
        return _check_unique_ids(v)


class CreateGamePayload(_QuestionSetPayload):
    questions: List[Question] = Field(min_length=1)
    settings: GameSettings = Field(default_factory=GameSettings)
    title: str = ""

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: str) -> str:
        return sanitize_text(v)[:MAX_TITLE_LENGTH]


class JoinGamePayload(_Payload):
    room_code: RoomCode
    player_name: str

    @field_validator('player_name')
    @classmethod
    def validate_player_name(cls, v: str) -> str:
        return _clean_player_name(v)


class JoinSessionPayload(_Payload):
    room_code: RoomCode
    player_name: str = ""
    is_host: bool = False
    host_token: str = ""

    @model_validator(mode='after')
    def check_player_name(self):
        if not self.is_host:
            self.player_name = _clean_player_name(self.player_name)
        return self


class StartGamePayload(_QuestionSetPayload):
    room_code: RoomCode
    questions: Optional[List[Question]] = None
    settings: Optional[GameSettings] = None


class SubmitAnswerPayload(_Payload):
    room_code: RoomCode
    answer: str
    question_id: str
    time_left: float = Field(0, allow_inf_nan=False)
    player_name: str = ""

    @field_validator('answer', mode='before')
    @classmethod
    def normalize_answer(cls, v):
        return _bool_to_option(v)

    @field_validator('question_id', mode='before')
    @classmethod
    def coerce_question_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class RoomPayload(_Payload):
    room_code: RoomCode
