from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional
from collections import defaultdict
import time
from contextlib import asynccontextmanager
import uvicorn
import logging

import config
config.setup_logging()

from auth import SessionUser, get_current_user
from game_engine import game_engine
from models import parse_questions, sanitize_text
from quiz_engine import GenerationError, quiz_engine
from quiz_store import quiz_store
from socket_manager import socket_manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting quiz backend")
    game_engine.start_cleanup_loop()
    yield
    game_engine.stop_cleanup_loop()
    logger.info("Shutting down quiz backend")


app = FastAPI(title="Quiz Platform Backend", lifespan=lifespan)


# In-memory rate limiter
_rate_limit_store: Dict[str, list] = defaultdict(list)


def _check_rate_limit(client_ip: str) -> bool:
    """Return True if the request is allowed, False if rate-limited."""
    now = time.time()
    window = config.RATE_LIMIT_WINDOW
    # Prune old entries
    _rate_limit_store[client_ip] = [
        t for t in _rate_limit_store[client_ip] if now - t < window
    ]
    if len(_rate_limit_store[client_ip]) >= config.RATE_LIMIT_MAX_REQUESTS:
        return False
    _rate_limit_store[client_ip].append(now)
    return True


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuestionGenerationRequest(_Request):
    input: str
    question_type: str = "mixed"
    question_count: int = 5
    difficulty: str = ""
    options_count: Optional[int] = None

    @field_validator('input')
    @classmethod
    def validate_input(cls, v: str) -> str:
        v = sanitize_text(v)
        if not v:
            raise ValueError('Topic must not be empty')
        return v

    @field_validator('question_type')
    @classmethod
    def validate_question_type(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in config.VALID_QUESTION_TYPES:
            raise ValueError(f'questionType must be one of: {", ".join(config.VALID_QUESTION_TYPES)}')
        return v

    @field_validator('question_count')
    @classmethod
    def validate_question_count(cls, v: int) -> int:
        if v < 1 or v > config.MAX_GENERATED_QUESTIONS:
            raise ValueError(f'questionCount must be 1-{config.MAX_GENERATED_QUESTIONS}')
        return v

    @field_validator('options_count')
    @classmethod
    def validate_options_count(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and (v < 2 or v > 6):
            raise ValueError('optionsCount must be 2-6')
        return v


class QuizCreateRequest(_Request):
    questions: list
    title: str = ""

    @field_validator('questions')
    @classmethod
    def validate_questions(cls, v: list) -> list:
        if len(v) == 0:
            raise ValueError('Quiz must have at least 1 question')
        return v


@app.post("/api/generate")
async def generate_questions(request: QuestionGenerationRequest, req: Request):
    client_ip = req.client.host if req.client else "unknown"
    if not _check_rate_limit(client_ip):
        raise HTTPException(status_code=429, detail="Too many requests. Please wait before generating more questions.")
    try:
        questions = await quiz_engine.generate_questions(
            request.input, request.question_type, request.question_count,
            request.difficulty, request.options_count)
    except GenerationError as e:
        logger.error("Question generation failed for '%s': %s", request.input[:100], e)
        raise HTTPException(status_code=500, detail="Failed to generate questions")
    return {"questions": [q.model_dump(by_alias=True) for q in questions]}


@app.post("/api/quiz")
async def create_quiz(request: QuizCreateRequest, user: SessionUser = Depends(get_current_user)):
    try:
        questions = parse_questions(request.questions)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid question structure: {e}")
    # Untitled quizzes are named after their first question
    title = sanitize_text(request.title) or questions[0].text
    quiz = quiz_store.save_quiz(user.id, title, [q.model_dump(by_alias=True) for q in questions])
    return {"message": "Quiz saved successfully", "data": quiz}


@app.get("/api/quiz")
async def list_quizzes(user: SessionUser = Depends(get_current_user)):
    return {"message": "Quizzes fetched successfully", "data": quiz_store.get_quizzes_by_user(user.id)}


@app.get("/api/quiz/{quiz_id}")
async def get_quiz(quiz_id: str, user: SessionUser = Depends(get_current_user)):
    quiz = quiz_store.get_quiz(quiz_id)
    if not quiz:
        raise HTTPException(status_code=404, detail="Quiz not found")
    return {"message": "Quiz fetched successfully", "data": quiz}


@app.delete("/api/quiz/{quiz_id}")
async def delete_quiz(quiz_id: str, user: SessionUser = Depends(get_current_user)):
    if not quiz_store.delete_quiz(quiz_id, user.id):
        raise HTTPException(status_code=404, detail="Quiz not found")
    return {"message": "Quiz deleted successfully"}


@app.get("/api/credits")
async def get_credits(user: SessionUser = Depends(get_current_user)):
    return quiz_store.get_credits(user.id)


@app.get("/api/dashboard-stats")
async def get_dashboard_stats(user: SessionUser = Depends(get_current_user)):
    return quiz_store.get_dashboard_stats(user.id)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await socket_manager.connect(websocket)


# --- Game History ---

@app.get("/history")
async def get_game_history():
    """Get history of completed games."""
    return {"games": game_engine.history}


@app.get("/history/{room_code}")
async def get_game_detail(room_code: str):
    """Get detailed results of a specific game."""
    room_code = room_code.strip().upper()
    game = next((g for g in reversed(game_engine.history) if g["room_code"] == room_code), None)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    return game


# Configure CORS
origins: List[str] = [o.strip() for o in config.ALLOWED_ORIGINS.split(",") if o.strip()]
socket_manager.allowed_origins = origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/")
async def root():
    return {"message": "Quiz platform API is running"}


@app.get("/health")
async def health():
    return {"status": "healthy", "rooms": len(game_engine.store)}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
