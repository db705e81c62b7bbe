"""Answer scoring, leaderboard ordering and answer distribution."""
from typing import List, Optional
import logging
import math

import config
from errors import DuplicateSubmission, UnauthorizedAction, ValidationError
from room import PLAYING, Room, Submission

logger = logging.getLogger(__name__)


def compute_points(is_correct: bool, time_left: float, time_limit: int) -> int:
    """Base points plus a bonus proportional to the time left on the clock."""
    if not is_correct:
        return 0
    time_left = min(max(time_left, 0), time_limit)
    time_bonus = math.floor((time_left / time_limit) * config.MAX_TIME_BONUS)
    return config.BASE_POINTS + time_bonus


def submit_answer(room: Room, connection_id: str, question_id: str, answer: str,
                  time_left: float) -> Optional[Submission]:
    """Score one answer for the current question.

    Returns None when the submission is silently dropped (game not accepting
    answers, unknown connection, or an answer to a previous question).
    """
    if room.is_host(connection_id):
        raise UnauthorizedAction(f"Host tried to submit an answer in room {room.code}")
    if room.game_state != PLAYING:
        return None
    player = room.player_by_connection(connection_id)
    if player is None:
        return None

    question = room.current_question
    if question is None or question.id != question_id:
        if room.question_by_id(question_id) is None:
            raise ValidationError(f"Unknown question id: {question_id}")
        logger.info("Stale answer from '%s' for question %s in room %s",
                    player.name, question_id, room.code)
        return None

    if not math.isfinite(time_left):
        raise ValidationError("timeLeft must be a finite number")
    if player.name in room.submissions:
        raise DuplicateSubmission(f"'{player.name}' already answered question {question_id}")

    # The server clock bounds how much time a client may claim
    time_left = min(max(time_left, 0), room.time_limit, room.time_remaining)
    is_correct = answer == question.correct_answer
    points = compute_points(is_correct, time_left, room.time_limit)

    room.record_answer(connection_id, answer)
    player.score += points
    submission = Submission(
        player_name=player.name,
        question_id=question.id,
        answer=answer,
        is_correct=is_correct,
        points_awarded=points,
        time_taken=room.time_limit - time_left,
    )
    room.submissions[player.name] = submission
    room.answer_log.append({
        "question_index": room.current_question_index,
        "question_id": question.id,
        "name": player.name,
        "answer": answer,
        "correct": is_correct,
        "points": points,
        "time_taken": round(submission.time_taken, 2),
    })
    logger.info("Answer from '%s' in room %s: correct=%s points=%d score=%d",
                player.name, room.code, is_correct, points, player.score)
    return submission


def get_leaderboard(room: Room) -> List[dict]:
    """Players by descending score, host excluded; ties keep join order."""
    ranked = sorted(
        (p for p in room.players.values() if p.connection_id != room.host_id),
        key=lambda p: p.score,
        reverse=True,
    )
    return [
        {"name": p.name, "score": p.score, "position": i + 1}
        for i, p in enumerate(ranked)
    ]


def get_answer_distribution(room: Room) -> List[dict]:
    question = room.current_question
    if question is None:
        return []
    answers = [
        p.current_answer for p in room.players.values()
        if p.connection_id != room.host_id and p.current_answer is not None
    ]
    total = len(answers)
    distribution = []
    for option in question.options:
        count = sum(1 for a in answers if a == option)
        distribution.append({
            "option": option,
            "count": count,
            "percentage": (count / total) * 100 if total > 0 else 0,
        })
    return distribution
