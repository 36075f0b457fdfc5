"""
Runtime configuration for dosewatch.
Daily/weekly triggers and schedule wall-clock times are in TIMEZONE.
Database timestamps are naive UTC.
"""

from __future__ import annotations

import os
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()

# --------------------------------------------------------------------------------------
# Civil time
# --------------------------------------------------------------------------------------
TIMEZONE = os.getenv("DOSEWATCH_TZ", "Africa/Tunis")
TZ = ZoneInfo(TIMEZONE)

# --------------------------------------------------------------------------------------
# Ticks and windows
# --------------------------------------------------------------------------------------
POLL_INTERVAL_S = 60
POLL_TOLERANCE_S = 60  # ~one tick width, absorbs jitter
ESCALATION_INTERVAL_S = 30
ESCALATION_GRACE_MIN = 5
GROUP_WINDOW_MIN = 5
SNOOZE_MIN = 10

# Expansion / cleanup
EXPAND_AT = "06:00"
STARTUP_EXPAND_DAYS = 7
CLEANUP_CRON = {"day_of_week": "sun", "hour": 2, "minute": 0}
RETENTION_DAYS = 30
CLEANUP_MARK_MISSED = False  # False: delete stale rows, True: keep them as 'missed'

# Caregiver roles that receive escalations
ALERTING_ROLES = ("tutor", "doctor")

# --------------------------------------------------------------------------------------
# Verification codes
# --------------------------------------------------------------------------------------
VERIFICATION_TTL_MIN = 10
VERIFICATION_SWEEP_MIN = 10
VERIFICATION_CODE_DIGITS = 6

# --------------------------------------------------------------------------------------
# Database
# --------------------------------------------------------------------------------------
# IMPORTANT: no hardcoded password in repo; provide via env
DATABASE_URL: str | None = None
DB = {
    "host": os.getenv("DB_HOST", "127.0.0.1"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "dosewatch"),
    "password": os.getenv("DB_PASSWORD", ""),
    "db": os.getenv("DB_NAME", "dosewatch"),
}

# --------------------------------------------------------------------------------------
# Notification transports
# --------------------------------------------------------------------------------------
EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"
EXPO_ACCESS_TOKEN: str | None = os.getenv("EXPO_ACCESS_TOKEN")
PUSH_CHANNEL_ID = "medication-reminders"
SMS_GATEWAY_URL: str | None = os.getenv("SMS_GATEWAY_URL")
SMS_PROVIDER = "educanet"
SMS_COUNTRY_CODE = "216"
HTTP_TIMEOUT_S = 10.0
# Service-account JSON for Firebase Admin; native (FCM/APNs) tokens are only
# pushed when this is set, Expo tokens always go through EXPO_PUSH_URL.
FIREBASE_CREDENTIALS_FILE: str | None = os.getenv("DOSEWATCH_FIREBASE_CREDENTIALS")

# --------------------------------------------------------------------------------------
# Messages / logging
# --------------------------------------------------------------------------------------
MESSAGES_FILE: str | None = os.getenv("DOSEWATCH_MESSAGES_FILE")
LOG_FILE: str = os.getenv("DOSEWATCH_LOG_FILE", "dosewatch/logs/dosewatch.log")
LOG_MAX_BYTES = 5_000_000
LOG_BACKUPS = 10
CONSOLE_LOG_LEVEL: str = os.getenv("DOSEWATCH_LOG_LEVEL", "INFO")
# Per-logger levels; the poller logs an empty tick every minute at DEBUG
LOG_LEVELS = {
    "dosewatch.poller": "INFO",
    "apscheduler": "WARNING",
    "httpx": "WARNING",
    "aiomysql": "WARNING",
}


def get_database_url() -> str:
    url = DATABASE_URL or os.getenv("DATABASE_URL")
    if url:
        return url
    if not DB.get("password"):
        raise RuntimeError(
            "Database is not configured. Set env var DATABASE_URL or DB_PASSWORD."
        )
    return (
        f"mysql+aiomysql://{DB['user']}:{DB['password']}"
        f"@{DB['host']}:{DB['port']}/{DB['db']}"
        f"?charset=utf8mb4"
    )
