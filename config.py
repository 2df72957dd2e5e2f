import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        identity_secret: str,
        identity_max_age_secs: int,
        gemini_api_key: Optional[str],
        gemini_model: str,
        resend_api_key: Optional[str],
        email_from: str,
        email_timeout_secs: float,
        rate_limit_capacity: int,
        rate_limit_refill_rate: int,
        rate_limit_interval_secs: int,
        blocked_user_ids: frozenset[str],
        budget_alert_threshold_pct: float,
        budget_alert_remind_on_new_month: bool,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.identity_secret = identity_secret
        self.identity_max_age_secs = identity_max_age_secs
        self.gemini_api_key = gemini_api_key
        self.gemini_model = gemini_model
        self.resend_api_key = resend_api_key
        self.email_from = email_from
        self.email_timeout_secs = email_timeout_secs
        self.rate_limit_capacity = rate_limit_capacity
        self.rate_limit_refill_rate = rate_limit_refill_rate
        self.rate_limit_interval_secs = rate_limit_interval_secs
        self.blocked_user_ids = blocked_user_ids
        self.budget_alert_threshold_pct = budget_alert_threshold_pct
        self.budget_alert_remind_on_new_month = budget_alert_remind_on_new_month
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("WELTH_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "welth.db"
    database_url = os.getenv("WELTH_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("WELTH_TIMEZONE", "UTC")
    identity_secret = os.getenv(
        "WELTH_IDENTITY_SECRET",
        "5d0c9a6b1f2e4c8a9b7d3e1f0a2c4b6d8e0f1a3c5b7d9e2f4a6c8b0d1e3f5a7c",
    )
    identity_max_age_secs = int(os.getenv("WELTH_IDENTITY_MAX_AGE_SECS", "3600"))
    blocked_raw = os.getenv("WELTH_BLOCKED_USER_IDS", "")
    blocked_user_ids = frozenset(
        part.strip() for part in blocked_raw.split(",") if part.strip()
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        identity_secret=identity_secret,
        identity_max_age_secs=identity_max_age_secs,
        gemini_api_key=os.getenv("WELTH_GEMINI_API_KEY") or None,
        gemini_model=os.getenv("WELTH_GEMINI_MODEL", "gemini-1.5-flash"),
        resend_api_key=os.getenv("WELTH_RESEND_API_KEY") or None,
        email_from=os.getenv("WELTH_EMAIL_FROM", "Finance App <onboarding@resend.dev>"),
        email_timeout_secs=float(os.getenv("WELTH_EMAIL_TIMEOUT_SECS", "10")),
        rate_limit_capacity=int(os.getenv("WELTH_RATE_LIMIT_CAPACITY", "10")),
        rate_limit_refill_rate=int(os.getenv("WELTH_RATE_LIMIT_REFILL_RATE", "10")),
        rate_limit_interval_secs=int(
            os.getenv("WELTH_RATE_LIMIT_INTERVAL_SECS", "3600")
        ),
        blocked_user_ids=blocked_user_ids,
        budget_alert_threshold_pct=float(
            os.getenv("WELTH_BUDGET_ALERT_THRESHOLD_PCT", "80")
        ),
        budget_alert_remind_on_new_month=_env_flag(
            "WELTH_BUDGET_ALERT_REMIND_ON_NEW_MONTH", "1"
        ),
        scheduler_enabled=_env_flag("WELTH_SCHEDULER_ENABLED", "1"),
    )
