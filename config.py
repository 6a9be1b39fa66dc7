import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        log_level: str,
        pace_tolerance_pct: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.log_level = log_level
        self.pace_tolerance_pct = pace_tolerance_pct


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGETS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budgets.db"
    database_url = os.getenv("BUDGETS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGETS_TIMEZONE", "Europe/Berlin")
    csrf_secret = os.getenv(
        "BUDGETS_CSRF_SECRET",
        "4f0d9c2a7e51b36c88a1f04be2d7935c61ea0f7bd2c94a18e3b5f6072c9d1ae4",
    )
    log_level = os.getenv("BUDGETS_LOG_LEVEL", "INFO").upper()
    pace_tolerance_pct = int(os.getenv("BUDGETS_PACE_TOLERANCE_PCT", "5"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        log_level=log_level,
        pace_tolerance_pct=pace_tolerance_pct,
    )
