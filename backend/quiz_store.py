"""In-memory persistence for saved quizzes, credits and dashboard stats."""
from typing import Dict, List, Optional
import logging
import time
import uuid

import config

logger = logging.getLogger(__name__)


class QuizStore:
    def __init__(self):
        self.quizzes: Dict[str, dict] = {}  # quiz_id -> quiz record
        self.credits: Dict[str, dict] = {}  # user_id -> credit balance
        self.stats: Dict[str, dict] = {}  # user_id -> dashboard stats

    # --- quizzes ---

    def save_quiz(self, user_id: str, title: str, questions: List[dict]) -> dict:
        quiz = {
            "id": str(uuid.uuid4()),
            "title": title,
            "questions": questions,
            "user_id": user_id,
            "created_at": time.time(),
            "is_published": False,
        }
        self.quizzes[quiz["id"]] = quiz
        stats = self._stats_for(user_id)
        stats["total_quizzes"] += 1
        stats["updated_at"] = time.time()
        logger.info("Quiz saved: %s ('%s') for user %s", quiz["id"], title, user_id)
        return quiz

    def get_quiz(self, quiz_id: str) -> Optional[dict]:
        return self.quizzes.get(quiz_id)

    def get_quizzes_by_user(self, user_id: str) -> List[dict]:
        # Newest first; dict order is insertion order
        return [q for q in reversed(list(self.quizzes.values())) if q["user_id"] == user_id]

    def delete_quiz(self, quiz_id: str, user_id: str) -> bool:
        """Delete a quiz owned by ``user_id``; returns False when there is nothing to delete."""
        quiz = self.quizzes.get(quiz_id)
        if quiz is None or quiz["user_id"] != user_id:
            return False
        del self.quizzes[quiz_id]
        stats = self._stats_for(user_id)
        stats["total_quizzes"] = max(stats["total_quizzes"] - 1, 0)
        stats["updated_at"] = time.time()
        logger.info("Quiz deleted: %s by user %s", quiz_id, user_id)
        return True

    # --- credits ---

    def get_credits(self, user_id: str) -> dict:
        """Return the user's credits, initialising them on first access."""
        if user_id not in self.credits:
            self.credits[user_id] = {
                "user_id": user_id,
                "normal_quiz_credits": config.DEFAULT_NORMAL_QUIZ_CREDITS,
                "file_quiz_credits": config.DEFAULT_FILE_QUIZ_CREDITS,
                "total_purchased_credits": 0,
            }
            logger.info("Initialised credits for user %s", user_id)
        return self.credits[user_id]

    # --- dashboard ---

    def _stats_for(self, user_id: str) -> dict:
        return self.stats.setdefault(user_id, {"total_quizzes": 0, "total_players": 0})

    def get_dashboard_stats(self, user_id: str, recent: int = 5) -> dict:
        stats = dict(self._stats_for(user_id))
        stats["recent_quizzes"] = [
            {"id": q["id"], "title": q["title"], "created_at": q["created_at"]}
            for q in self.get_quizzes_by_user(user_id)[:recent]
        ]
        return stats

    def clear(self):
        self.quizzes.clear()
        self.credits.clear()
        self.stats.clear()


quiz_store = QuizStore()
