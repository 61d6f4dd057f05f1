from dotenv import load_dotenv
import os

load_dotenv()

BOT_TOKEN = os.getenv("BOT_TOKEN")

TMDB_API_KEY = os.getenv("TMDB_API_KEY", "")
TMDB_API_URL = os.getenv("TMDB_API_URL", "https://api.themoviedb.org/3")
TMDB_IMAGE_URL = os.getenv("TMDB_IMAGE_URL", "https://image.tmdb.org/t/p")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./movienote.db")
LOCAL_STORAGE_PATH = os.getenv("LOCAL_STORAGE_PATH", "./local_storage")

SESSION_INIT_TIMEOUT = float(os.getenv("SESSION_INIT_TIMEOUT", "5"))
SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "168"))
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10"))

# Unauthenticated users keep a local-only watchlist when enabled
LOCAL_FALLBACK = os.getenv("LOCAL_FALLBACK", "1").lower() not in ("0", "false", "no")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Per-chat states kept in memory; the least recently used are closed
MAX_ACTIVE_CHATS = int(os.getenv("MAX_ACTIVE_CHATS", "1000"))


def require_bot_token():
    if not BOT_TOKEN:
        raise ValueError("BOT_TOKEN is not set. Create a .env file and add BOT_TOKEN=<your token>")
    return BOT_TOKEN
