"""Runtime settings read from the environment."""

import os
from dataclasses import dataclass
from typing import Optional

from ledgersync.domain.errors import ValidationError

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_SYNC_MAX_PAGES = 50
DEFAULT_SYNC_TIME_BUDGET = 300.0
DEFAULT_STALE_JOB_AFTER = 900.0
DEFAULT_UPSERT_BATCH_SIZE = 500
DEFAULT_CURRENCY = "USD"


def _read_number(env: dict, name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got '{raw}'")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got '{raw}'")
    return value


@dataclass(frozen=True)
class Settings:
    """Settings for one process. CLI options override these."""

    db_path: Optional[str] = None
    database_url: Optional[str] = None
    log_level: str = DEFAULT_LOG_LEVEL
    sync_max_pages: int = DEFAULT_SYNC_MAX_PAGES
    sync_time_budget: float = DEFAULT_SYNC_TIME_BUDGET
    stale_job_after: float = DEFAULT_STALE_JOB_AFTER
    upsert_batch_size: int = DEFAULT_UPSERT_BATCH_SIZE
    default_currency: str = DEFAULT_CURRENCY

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        """Build settings from LEDGERSYNC_* environment variables.

        Raises:
            ValidationError: If a numeric variable is not a positive number
        """
        env = os.environ if environ is None else environ
        return cls(
            db_path=env.get("LEDGERSYNC_DB_PATH") or None,
            database_url=env.get("LEDGERSYNC_DATABASE_URL") or None,
            log_level=(env.get("LEDGERSYNC_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
            sync_max_pages=_read_number(
                env, "LEDGERSYNC_SYNC_MAX_PAGES", DEFAULT_SYNC_MAX_PAGES, int
            ),
            sync_time_budget=_read_number(
                env, "LEDGERSYNC_SYNC_TIME_BUDGET", DEFAULT_SYNC_TIME_BUDGET, float
            ),
            stale_job_after=_read_number(
                env, "LEDGERSYNC_STALE_JOB_AFTER", DEFAULT_STALE_JOB_AFTER, float
            ),
            upsert_batch_size=_read_number(
                env, "LEDGERSYNC_UPSERT_BATCH_SIZE", DEFAULT_UPSERT_BATCH_SIZE, int
            ),
            default_currency=(env.get("LEDGERSYNC_DEFAULT_CURRENCY") or DEFAULT_CURRENCY).upper(),
        )
