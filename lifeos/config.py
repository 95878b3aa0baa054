from datetime import UTC, datetime
from pathlib import Path

from pydantic_settings import BaseSettings


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Keeps datetimes naive so they stay compatible with SQLite (which doesn't
    store tz info).
    """
    return datetime.now(UTC).replace(tzinfo=None)


class Settings(BaseSettings):
    database_url: str = f"sqlite+aiosqlite:///{Path(__file__).resolve().parent.parent / 'data' / 'lifeos.db'}"
    review_max_attempts: int = 3  # conflicting writes before giving up
    review_retry_wait_seconds: float = 0.05
    debug: bool = False

    model_config = {"env_prefix": "LIFEOS_", "env_file": ".env"}


settings = Settings()
