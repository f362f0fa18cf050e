import time
from datetime import UTC, datetime
from pathlib import Path

from pydantic_settings import BaseSettings


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Keeps datetimes naive so they stay compatible with SQLite (which
    doesn't store tz info).
    """
    return datetime.now(UTC).replace(tzinfo=None)


def now_millis() -> int:
    """Return the current time as epoch milliseconds.

    Flashcard and set timestamps travel over the wire as integers, so the
    client works in millis rather than datetimes.
    """
    return time.time_ns() // 1_000_000


class Settings(BaseSettings):
    app_name: str = "Flashcards"
    database_url: str = f"sqlite+aiosqlite:///{Path(__file__).resolve().parent.parent / 'data' / 'flashcards.db'}"
    api_base_url: str = "https://api.flashcards.solenne.ai"
    web_client_url: str = "https://flashcards.solenne.ai"
    app_scheme: str = "solenne-flashcards"
    oauth_platform: str = "WEB"  # ANDROID, IOS or WEB
    oauth_timeout_seconds: float = 300.0  # 5 minutes
    redirect_wait_seconds: float = 1.0
    http_timeout_seconds: float = 10.0
    http_max_retries: int = 3
    debug: bool = False

    model_config = {"env_prefix": "FLASHCARDS_", "env_file": ".env"}


settings = Settings()
