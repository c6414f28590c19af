import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        cors_origins: list[str],
        reminder_lookahead_days: int,
        openrouter_api_key: Optional[str],
        advice_model: str,
        advice_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.cors_origins = cors_origins
        self.reminder_lookahead_days = reminder_lookahead_days
        self.openrouter_api_key = openrouter_api_key
        self.advice_model = advice_model
        self.advice_timeout_secs = advice_timeout_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    cors_origins = _split_origins(
        os.getenv("FINANCE_CORS_ORIGINS", "http://localhost:5173")
    )
    reminder_lookahead_days = int(os.getenv("FINANCE_REMINDER_LOOKAHEAD_DAYS", "7"))
    openrouter_api_key = os.getenv("OPENROUTER_API_KEY") or None
    advice_model = os.getenv(
        "FINANCE_ADVICE_MODEL", "mistralai/mistral-7b-instruct:free"
    )
    advice_timeout_secs = float(os.getenv("FINANCE_ADVICE_TIMEOUT_SECS", "30"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        cors_origins=cors_origins,
        reminder_lookahead_days=reminder_lookahead_days,
        openrouter_api_key=openrouter_api_key,
        advice_model=advice_model,
        advice_timeout_secs=advice_timeout_secs,
    )
