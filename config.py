import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from errors import ConfigurationError

load_dotenv()

DEFAULT_CHECK_INTERVAL_SECONDS = 60
DEFAULT_STALE_AFTER_DAYS = 14


@dataclass
class Settings:
    twilio_sid: Optional[str] = None
    twilio_auth: Optional[str] = None
    twilio_number: Optional[str] = None
    expert_numbers: List[str] = field(default_factory=list)
    google_creds_base64: Optional[str] = None
    google_creds_file: str = "google-creds.json"
    readings_sheet: str = "Pool Chemical Tests"
    readings_tab: str = "Chemical Tests"
    check_interval_seconds: int = DEFAULT_CHECK_INTERVAL_SECONDS
    stale_after_days: int = DEFAULT_STALE_AFTER_DAYS
    notifications_enabled: bool = True
    port: int = 5000
    log_level: str = "INFO"


def _int(env, name, default):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _bool(env, name, default):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings(env=None):
    """Build Settings from the environment (``os.environ`` by default)."""
    env = os.environ if env is None else env
    numbers = [n.strip() for n in env.get("EXPERT_NUMBERS", "").split(",") if n.strip()]
    return Settings(
        twilio_sid=env.get("TWILIO_ACCOUNT_SID"),
        twilio_auth=env.get("TWILIO_AUTH_TOKEN"),
        twilio_number=env.get("TWILIO_PHONE_NUMBER"),
        expert_numbers=numbers,
        google_creds_base64=env.get("GOOGLE_CREDS_BASE64"),
        google_creds_file=env.get("GOOGLE_CREDS_FILE", "google-creds.json"),
        readings_sheet=env.get("READINGS_SHEET", "Pool Chemical Tests"),
        readings_tab=env.get("READINGS_TAB", "Chemical Tests"),
        check_interval_seconds=_int(env, "CHECK_INTERVAL_SECONDS", DEFAULT_CHECK_INTERVAL_SECONDS),
        stale_after_days=_int(env, "STALE_AFTER_DAYS", DEFAULT_STALE_AFTER_DAYS),
        notifications_enabled=_bool(env, "NOTIFICATIONS_ENABLED", True),
        port=_int(env, "PORT", 5000),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )
