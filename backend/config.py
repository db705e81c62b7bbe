"""Centralized configuration: all env vars in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- AI question generation (Gemini) ---
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
GEMINI_TIMEOUT = int(os.getenv("GEMINI_TIMEOUT", "60"))
LLM_MAX_RETRIES = 3
MAX_GENERATED_QUESTIONS = 20
VALID_QUESTION_TYPES = ("multiple-choice", "true-false", "mixed")

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- Rate Limiting ---
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX_REQUESTS = 5  # max question generations per window per IP

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 64 * 1024  # bytes, create-game carries the whole question set

# --- Rooms ---
ROOM_CODE_LENGTH = 6
MAX_ROOM_CODE_ATTEMPTS = 10
MAX_ROOMS = int(os.getenv("MAX_ROOMS", "200"))
MAX_PLAYERS_PER_ROOM = 100
MAX_PLAYER_NAME_LENGTH = 30
MAX_QUESTIONS_PER_GAME = 100
ROOM_TTL_SECONDS = int(os.getenv("ROOM_TTL_SECONDS", "1800"))
FINISHED_ROOM_TTL_SECONDS = 300
CLEANUP_INTERVAL_SECONDS = 60

# --- Game clock ---
COUNTDOWN_SECONDS = 5
DEFAULT_TIME_LIMIT = 30
MIN_TIME_LIMIT = 5
MAX_TIME_LIMIT = 120
TICK_SECONDS = float(os.getenv("TICK_SECONDS", "1.0"))

# --- Scoring ---
BASE_POINTS = 1000
MAX_TIME_BONUS = 1000

# --- History ---
MAX_GAME_HISTORY = 1000

# --- Credits ---
DEFAULT_NORMAL_QUIZ_CREDITS = 10
DEFAULT_FILE_QUIZ_CREDITS = 5

# --- Auth ---
# Comma separated "token=user_id:email" entries for the in-process token verifier
AUTH_TOKENS = os.getenv("AUTH_TOKENS", "")

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
