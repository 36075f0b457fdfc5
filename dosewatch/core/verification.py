# dosewatch/core/verification.py
from __future__ import annotations

import hmac
import logging
import secrets
from datetime import timedelta
from typing import Any

from dosewatch.adapters.notifier import Notifier
from dosewatch.core.i18n import fmt
from dosewatch.core.logging_utils import kv
from dosewatch.core.phone import normalize_phone
from dosewatch.core.ttl_store import KeyedTTLStore


class InvalidPhoneNumber(ValueError): ...


class VerificationCodeService:
    """Phone OTP: issue() stores a code under the normalized number and texts it; verify() consumes it."""

    def __init__(self, config: Any, store: KeyedTTLStore[str], notifier: Notifier):
        self.cfg = config
        self.store = store
        self.notifier = notifier
        self.ttl = timedelta(minutes=config.VERIFICATION_TTL_MIN)
        self.digits = int(getattr(config, "VERIFICATION_CODE_DIGITS", 6))
        self.country_code = str(getattr(config, "SMS_COUNTRY_CODE", "216"))
        self.log = logging.getLogger("dosewatch.verification")

    def _key(self, phone: str) -> str:
        norm = normalize_phone(phone, self.country_code)
        if not norm.is_valid:
            raise InvalidPhoneNumber(f"invalid phone number {phone!r}")
        return f"otp:{norm.normalized}"

    def _new_code(self) -> str:
        return f"{secrets.randbelow(10 ** self.digits):0{self.digits}d}"

    async def issue(self, phone: str) -> bool:
        """Store a fresh code and send it. Returns whether the SMS went out."""
        key = self._key(phone)
        code = self._new_code()
        self.store.put(key, code, self.ttl)
        minutes = int(self.ttl.total_seconds() // 60)
        res = await self.notifier.send_sms(key[4:], fmt("sms.verification", code=code, minutes=minutes))
        if not res.success:
            self.log.warning("otp.sms.failed " + kv(phone=key[4:], error=res.error))
        else:
            self.log.info("otp.issued " + kv(phone=key[4:]))
        return res.success

    def verify(self, phone: str, code: str) -> bool:
        key = self._key(phone)
        expected = self.store.get(key)
        if expected is None or not hmac.compare_digest(expected, str(code).strip()):
            self.log.info("otp.rejected " + kv(phone=key[4:]))
            return False
        self.store.delete(key)
        return True

    def sweep(self) -> int:
        n = self.store.sweep_expired()
        if n:
            self.log.debug("otp.sweep " + kv(expired=n))
        return n
