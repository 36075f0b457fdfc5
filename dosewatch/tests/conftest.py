# dosewatch/tests/conftest.py
import sys
from pathlib import Path

# This file is at <project_root>/dosewatch/tests/conftest.py
# Project root is two levels up from here.
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from datetime import date, datetime, time, timedelta  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import insert  # noqa: E402

from dosewatch import config as cfg  # noqa: E402
from dosewatch.adapters.sms_gateway import SmsResult  # noqa: E402
from dosewatch.core import timez  # noqa: E402
from dosewatch.core.reminder_state import Clock  # noqa: E402
from dosewatch.db import session  # noqa: E402
from dosewatch.db.models import (  # noqa: E402
    medication_reminders,
    medication_schedules,
    medications,
    prescriptions,
    schedule_exceptions,
    user_relationships,
    users,
    voice_messages,
)

# Monday 2 June 2025, 10:00 in Tunis (UTC+1, no DST) == 09:00 UTC
MONDAY = date(2025, 6, 2)
NOW_LOCAL = datetime(2025, 6, 2, 10, 0, tzinfo=cfg.TZ)

EXPO_TOKEN = "ExponentPushToken[abcDEF1234567890xyz]"


def make_cfg(**overrides):
    """Snapshot of dosewatch.config with per-test overrides."""
    values = {k: getattr(cfg, k) for k in dir(cfg) if k.isupper()}
    values.update(overrides)
    return SimpleNamespace(**values)


class FixedClock(Clock):
    def __init__(self, at: datetime, tz=cfg.TZ):
        super().__init__(tz)
        self.at = at

    def now(self) -> datetime:
        return self.at.astimezone(self.tz)

    def advance(self, **kwargs) -> None:
        self.at = self.at + timedelta(**kwargs)


class FakeNotifier:
    push_provider = "expo"
    sms_provider = "educanet"

    def __init__(self, push_ok=True, sms_ok=True, push_error=None, sms_error=None, unroutable=()):
        self.sent = []  # ("push", token, title, body, data) | ("sms", phone, text)
        self.push_ok = push_ok
        self.sms_ok = sms_ok
        self.push_error = push_error
        self.sms_error = sms_error
        self.unroutable = set(unroutable)

    def supports_push(self, token):
        return token not in self.unroutable

    def push_provider_for(self, token):
        return self.push_provider

    async def send_push(self, token, title, body, data=None):
        self.sent.append(("push", token, title, body, dict(data or {})))
        if self.push_error:
            raise self.push_error
        ok = self.push_ok
        return ok(token) if callable(ok) else ok

    async def send_sms(self, phone_number, message):
        self.sent.append(("sms", phone_number, message))
        if self.sms_error:
            raise self.sms_error
        if self.sms_ok:
            return SmsResult(True, provider_id="educanet_1")
        return SmsResult(False, error="gateway down")

    @property
    def pushes(self):
        return [s for s in self.sent if s[0] == "push"]

    @property
    def smses(self):
        return [s for s in self.sent if s[0] == "sms"]


class Seed:
    """Direct inserts for arranging database state."""

    def __init__(self):
        self._n = 0

    def _id(self, prefix):
        self._n += 1
        return f"{prefix}-{self._n}"

    async def _insert(self, table, **values):
        async with session.engine().begin() as conn:
            await conn.execute(insert(table).values(**values))

    async def user(self, user_type="patient", first_name="Amel", last_name="Ben Ali",
                   phone_number=None, push_token=EXPO_TOKEN, notifications_enabled=True):
        uid = self._id(user_type)
        await self._insert(
            users,
            id=uid,
            first_name=first_name,
            last_name=last_name,
            phone_number=phone_number,
            push_token=push_token,
            notifications_enabled=notifications_enabled,
            user_type=user_type,
        )
        return uid

    async def caregiver(self, patient_id, role="tutor", is_active=True, **user_kwargs):
        user_kwargs.setdefault("first_name", role.capitalize())
        cid = await self.user(user_type=role, **user_kwargs)
        await self._insert(
            user_relationships,
            id=self._id("rel"),
            patient_id=patient_id,
            caregiver_id=cid,
            role=role,
            is_active=is_active,
        )
        return cid

    async def prescription(self, patient_id, name="Doliprane", dosage="500mg", custom_dosage=None,
                           instructions=None, start_date=MONDAY - timedelta(days=7), end_date=None,
                           is_active=True, voice_message_id=None):
        mid = self._id("med")
        await self._insert(medications, id=mid, name=name, dosage=dosage)
        pid = self._id("rx")
        await self._insert(
            prescriptions,
            id=pid,
            patient_id=patient_id,
            medication_id=mid,
            custom_dosage=custom_dosage,
            instructions=instructions,
            start_date=start_date,
            end_date=end_date,
            is_active=is_active,
            voice_message_id=voice_message_id,
        )
        return pid

    async def schedule(self, prescription_id, at=time(8, 0), days=(1, 2, 3, 4, 5, 6, 7),
                       kind="daily", interval_hours=None, is_active=True):
        sid = self._id("sch")
        await self._insert(
            medication_schedules,
            id=sid,
            prescription_id=prescription_id,
            time_of_day=at,
            days_of_week=list(days),
            kind=kind,
            interval_hours=interval_hours,
            is_active=is_active,
        )
        return sid

    async def exception(self, schedule_id, day, reason="hospital"):
        await self._insert(
            schedule_exceptions, id=self._id("exc"), schedule_id=schedule_id, exception_date=day, reason=reason
        )

    async def voice(self, patient_id, created_at, is_active=True):
        vid = self._id("voice")
        await self._insert(
            voice_messages,
            id=vid,
            patient_id=patient_id,
            file_url=f"https://cdn.example/{vid}.m4a",
            is_active=is_active,
            created_at=timez.to_db(created_at),
        )
        return vid

    async def reminder(self, prescription_id, patient_id, scheduled_for, status="scheduled",
                       notified=False, notified_at=None, escalated=False, voice_message_id=None):
        rid = self._id("rem")
        await self._insert(
            medication_reminders,
            id=rid,
            prescription_id=prescription_id,
            patient_id=patient_id,
            scheduled_for=timez.to_db(scheduled_for),
            status=status,
            notified=notified,
            notified_at=timez.to_db(notified_at) if notified_at else None,
            escalated=escalated,
            voice_message_id=voice_message_id,
            created_at=timez.to_db(scheduled_for),
        )
        return rid


@pytest_asyncio.fixture
async def db():
    session.configure("sqlite+aiosqlite:///:memory:")
    await session.init_models()
    yield session.engine()
    await session.dispose()


@pytest.fixture
def seed():
    return Seed()


@pytest.fixture
def clock():
    return FixedClock(NOW_LOCAL)


@pytest.fixture
def notifier():
    return FakeNotifier()
