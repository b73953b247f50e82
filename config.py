import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        batch_size: int,
        db_timeout_secs: float,
        scheduler_enabled: bool,
        backfill_hour: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.batch_size = batch_size
        self.db_timeout_secs = db_timeout_secs
        self.scheduler_enabled = scheduler_enabled
        self.backfill_hour = backfill_hour


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FIXED_EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv(
        "FIXED_EXPENSES_DATABASE_URL", f"sqlite:///{default_db}"
    )
    timezone = os.getenv("FIXED_EXPENSES_TIMEZONE", "America/Sao_Paulo")
    log_level = os.getenv("FIXED_EXPENSES_LOG_LEVEL", "INFO").upper()
    batch_size = int(os.getenv("FIXED_EXPENSES_BATCH_SIZE", "100"))
    db_timeout_secs = float(os.getenv("FIXED_EXPENSES_DB_TIMEOUT_SECS", "10"))
    scheduler_enabled = _env_flag("FIXED_EXPENSES_SCHEDULER_ENABLED", "0")
    backfill_hour = int(os.getenv("FIXED_EXPENSES_BACKFILL_HOUR", "3"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        batch_size=batch_size,
        db_timeout_secs=db_timeout_secs,
        scheduler_enabled=scheduler_enabled,
        backfill_hour=backfill_hour,
    )
