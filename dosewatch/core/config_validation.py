# dosewatch/core/config_validation.py
from __future__ import annotations

import re
from typing import Any

from dosewatch.core.logging_utils import level_of

_TIME_RE = re.compile(r"^\d{2}:\d{2}$")
_KNOWN_ROLES = {"tutor", "doctor"}


def _is_valid_hhmm(s: str) -> bool:
    if not isinstance(s, str) or not _TIME_RE.match(s):
        return False
    hh, mm = (int(x) for x in s.split(":", 1))
    return 0 <= hh <= 23 and 0 <= mm <= 59


def _positive(cfg: Any, name: str) -> None:
    value = getattr(cfg, name, None)
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        raise ValueError(f"{name} must be a positive number")


def validate_config(cfg: Any) -> None:
    """Validate runtime configuration before starting the scheduler."""
    if getattr(cfg, "TZ", None) is None:
        raise ValueError("TZ must be set")

    for name in (
        "POLL_INTERVAL_S",
        "POLL_TOLERANCE_S",
        "ESCALATION_INTERVAL_S",
        "ESCALATION_GRACE_MIN",
        "GROUP_WINDOW_MIN",
        "SNOOZE_MIN",
        "RETENTION_DAYS",
        "VERIFICATION_TTL_MIN",
        "HTTP_TIMEOUT_S",
    ):
        _positive(cfg, name)

    if getattr(cfg, "POLL_TOLERANCE_S") < getattr(cfg, "POLL_INTERVAL_S"):
        # a tolerance narrower than the tick leaves gaps nobody polls
        raise ValueError("POLL_TOLERANCE_S must be >= POLL_INTERVAL_S")

    if not _is_valid_hhmm(getattr(cfg, "EXPAND_AT", None)):
        raise ValueError(f"invalid EXPAND_AT {getattr(cfg, 'EXPAND_AT', None)!r} (expected HH:MM)")

    cron = getattr(cfg, "CLEANUP_CRON", None)
    if not isinstance(cron, dict) or not cron:
        raise ValueError("CLEANUP_CRON must be a non-empty dict of cron fields")

    roles = getattr(cfg, "ALERTING_ROLES", None)
    if not roles or not set(roles) <= _KNOWN_ROLES:
        raise ValueError(f"ALERTING_ROLES must be a non-empty subset of {sorted(_KNOWN_ROLES)}")

    code = str(getattr(cfg, "SMS_COUNTRY_CODE", ""))
    if not code.isdigit():
        raise ValueError("SMS_COUNTRY_CODE must be digits only")

    digits = getattr(cfg, "VERIFICATION_CODE_DIGITS", 6)
    if not isinstance(digits, int) or not 4 <= digits <= 8:
        raise ValueError("VERIFICATION_CODE_DIGITS must be between 4 and 8")

    if not getattr(cfg, "LOG_FILE", None):
        raise ValueError("LOG_FILE must be set")
    levels = getattr(cfg, "LOG_LEVELS", {}) or {}
    if not isinstance(levels, dict):
        raise ValueError("LOG_LEVELS must be a dict of logger name -> level")
    for name, level in [("CONSOLE_LOG_LEVEL", getattr(cfg, "CONSOLE_LOG_LEVEL", "INFO")), *levels.items()]:
        try:
            level_of(level)
        except ValueError:
            raise ValueError(f"{name}: unknown log level {level!r}") from None
