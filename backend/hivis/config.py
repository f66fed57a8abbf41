# backend/hivis/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///hivis.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Business day boundary for streaks and monthly seasons
    LOYALTY_TIMEZONE = os.environ.get("LOYALTY_TIMEZONE", "Australia/Sydney")

    # Tier thresholds (lifetime balance)
    TIER_TRADIE_POINTS = _env_int("TIER_TRADIE_POINTS", 500)
    TIER_FOREMAN_POINTS = _env_int("TIER_FOREMAN_POINTS", 1000)

    # Punch card: one punch per purchase, bonus on completion
    PUNCH_CARD_TARGET = _env_int("PUNCH_CARD_TARGET", 10)
    PUNCH_CARD_BONUS_POINTS = _env_int("PUNCH_CARD_BONUS_POINTS", 100)

    # Consecutive purchase days needed for the free-item streak reward
    STREAK_REWARD_DAYS = _env_int("STREAK_REWARD_DAYS", 3)

    REFERRER_BONUS_POINTS = _env_int("REFERRER_BONUS_POINTS", 50)
    REFEREE_BONUS_POINTS = _env_int("REFEREE_BONUS_POINTS", 25)

    REDEMPTION_CODE_PREFIX = os.environ.get("REDEMPTION_CODE_PREFIX", "HIVIS")
    STREAK_CODE_PREFIX = os.environ.get("STREAK_CODE_PREFIX", "STREAK")

    # Shared secrets for machine-to-machine endpoints; None disables the check
    INTAKE_API_KEY = os.environ.get("INTAKE_API_KEY")
    ADMIN_API_KEY = os.environ.get("ADMIN_API_KEY")

    SYNC_POLL_INTERVAL_SECONDS = _env_int("SYNC_POLL_INTERVAL_SECONDS", 30)
