from dataclasses import dataclass, field
from typing import Dict, List, Optional
import asyncio
import logging
import time

import config
from models import GameSettings

logger = logging.getLogger(__name__)

# Game states
WAITING = "waiting"
COUNTDOWN = "countdown"
PLAYING = "playing"
ANSWER_REVEAL = "answer_reveal"
LEADERBOARD = "leaderboard"
FINISHED = "finished"

# Roles returned by Room.join
ROLE_HOST = "host"
ROLE_PLAYER = "player"
ROLE_RECONNECTED = "reconnected"


@dataclass
class Player:
    name: str
    connection_id: str
    score: int = 0
    current_answer: Optional[str] = None

    def to_dict(self) -> dict:
        return {"name": self.name, "score": self.score}


@dataclass
class Submission:
    player_name: str
    question_id: str
    answer: str
    is_correct: bool
    points_awarded: int
    time_taken: float


@dataclass
class Room:
    code: str
    host_id: str
    questions: list
    settings: GameSettings = field(default_factory=GameSettings)
    title: str = ""
    host_token: str = ""
    game_state: str = WAITING
    current_question_index: int = 0
    time_remaining: int = config.DEFAULT_TIME_LIMIT
    countdown: int = config.COUNTDOWN_SECONDS
    players: Dict[str, Player] = field(default_factory=dict)  # name -> Player, join order
    submissions: Dict[str, Submission] = field(default_factory=dict)  # name -> current question submission
    answer_log: List[dict] = field(default_factory=list)
    timer_task: Optional[asyncio.Task] = None
    timer_generation: int = 0
    closed: bool = False
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def __post_init__(self):
        self.time_remaining = self.settings.time_limit

    # --- lifecycle helpers ---

    def touch(self):
        """Update last activity timestamp."""
        self.last_activity = time.time()

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = now if now is not None else time.time()
        if self.game_state == FINISHED and self.finished_at is not None:
            return now - self.finished_at > config.FINISHED_ROOM_TTL_SECONDS
        return now - self.last_activity > config.ROOM_TTL_SECONDS

    @property
    def time_limit(self) -> int:
        return self.settings.time_limit

    @property
    def current_question(self):
        if 0 <= self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None

    @property
    def is_last_question(self) -> bool:
        return self.current_question_index >= len(self.questions) - 1

    def question_by_id(self, question_id: str):
        return next((q for q in self.questions if q.id == question_id), None)

    # --- player registry ---

    def is_host(self, connection_id: Optional[str]) -> bool:
        return connection_id is not None and connection_id == self.host_id

    def player_by_connection(self, connection_id: str) -> Optional[Player]:
        return next((p for p in self.players.values() if p.connection_id == connection_id), None)

    def join(self, name: str, connection_id: str) -> str:
        """Add a player, or rebind the connection of a player already known by name."""
        if self.is_host(connection_id):
            return ROLE_HOST
        existing = self.players.get(name)
        if existing:
            old_connection = existing.connection_id
            existing.connection_id = connection_id
            logger.info("Player '%s' rebound in room %s (%s -> %s)",
                        name, self.code, old_connection, connection_id)
            return ROLE_RECONNECTED
        # A connection holds one seat per room
        previous = self.player_by_connection(connection_id)
        if previous:
            del self.players[previous.name]
        self.players[name] = Player(name=name, connection_id=connection_id)
        logger.info("Player '%s' joined room %s", name, self.code)
        return ROLE_PLAYER

    def leave(self, connection_id: str) -> Optional[Player]:
        player = self.player_by_connection(connection_id)
        if player is None:
            return None
        del self.players[player.name]
        self.submissions.pop(player.name, None)
        logger.info("Player '%s' left room %s", player.name, self.code)
        return player

    def record_answer(self, connection_id: str, answer: str) -> Optional[Player]:
        if self.is_host(connection_id):
            return None
        player = self.player_by_connection(connection_id)
        if player is None:
            return None
        player.current_answer = answer
        return player

    def clear_answers(self):
        for player in self.players.values():
            player.current_answer = None
        self.submissions = {}

    def player_list(self) -> List[dict]:
        return [p.to_dict() for p in self.players.values()]

    def snapshot(self) -> dict:
        """Room state as sent in game-state events."""
        data = {
            "roomCode": self.code,
            "gameState": self.game_state,
            "currentQuestion": self.current_question_index,
            "totalQuestions": len(self.questions),
            "timeRemaining": self.time_remaining,
            "timeLimit": self.time_limit,
            "players": self.player_list(),
            "playerCount": len(self.players),
        }
        question = self.current_question
        if question is not None and self.game_state in (PLAYING, ANSWER_REVEAL, LEADERBOARD):
            data["question"] = question.public()
        return data
