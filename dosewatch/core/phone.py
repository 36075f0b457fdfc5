# dosewatch/core/phone.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List

_NON_DIGITS = re.compile(r"[^\d]")


@dataclass(frozen=True)
class NormalizedPhone:
    normalized: str  # "+21652536742"
    without_plus: str  # "21652536742"
    local: str  # "52536742"
    is_valid: bool
    formats: List[str] = field(default_factory=list)  # every spelling worth searching for


def normalize_phone(phone: str | None, country_code: str = "216") -> NormalizedPhone:
    """
    Normalize to E.164. National numbers are 8 digits (optionally with a
    leading 0); other international numbers of 10-15 digits keep their prefix.
    """
    if not phone or not isinstance(phone, str):
        return NormalizedPhone("", "", "", False, [])

    digits = _NON_DIGITS.sub("", phone)
    national_len = 8

    if digits.startswith(country_code) and len(digits) == len(country_code) + national_len:
        local = digits[len(country_code):]
        normalized = f"+{digits}"
    elif digits.startswith("0") and len(digits) == national_len + 1:
        local = digits[1:]
        normalized = f"+{country_code}{local}"
    elif len(digits) == national_len and not digits.startswith("0"):
        local = digits
        normalized = f"+{country_code}{digits}"
    elif 10 <= len(digits) <= 15:
        local = digits
        normalized = f"+{digits}"
    else:
        return NormalizedPhone(phone, phone, phone, False, [phone])

    without_plus = normalized[1:]
    formats = list(dict.fromkeys([normalized, without_plus, local, f"0{local}"]))
    return NormalizedPhone(normalized, without_plus, local, True, formats)


def gateway_number(phone: str, country_code: str = "216") -> str:
    """Digits-only number with the country prefix, as SMS gateways expect it."""
    raw = (phone or "").strip()
    digits = _NON_DIGITS.sub("", raw)
    if digits.startswith(country_code) or raw.startswith("+"):
        return digits
    if digits.startswith("00"):
        return digits[2:]
    if digits.startswith("0"):
        digits = digits[1:]
    return f"{country_code}{digits}"
