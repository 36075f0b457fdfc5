# dosewatch/db/schedules.py
"""
Schedule store: recurring dosing rules per prescription and their date exceptions.

Rules are replaced wholesale when a prescription's dosing changes (delete + insert,
never diffed) and deactivated when the prescription is cancelled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import and_, delete, exists, insert, or_, select, update

from dosewatch.core import timez
from dosewatch.db.models import medication_schedules, prescriptions, schedule_exceptions
from dosewatch.db.session import engine, new_id

KINDS = ("daily", "interval")


class ScheduleError(Exception): ...


@dataclass(frozen=True)
class ScheduleRule:
    """Input shape for replace_schedules()."""

    time_of_day: time
    days_of_week: Sequence[int] = (1, 2, 3, 4, 5, 6, 7)
    kind: str = "daily"
    interval_hours: Optional[int] = None

    def validate(self) -> None:
        days = list(self.days_of_week)
        if not days:
            raise ScheduleError("days_of_week must be non-empty")
        if any(not isinstance(d, int) or not 1 <= d <= 7 for d in days):
            raise ScheduleError(f"days_of_week must be within 1..7, got {days}")
        if self.kind not in KINDS:
            raise ScheduleError(f"unknown schedule kind {self.kind!r}")
        if self.kind == "interval":
            if not self.interval_hours or not 1 <= self.interval_hours <= 23:
                raise ScheduleError("interval schedules need interval_hours in 1..23")
        elif self.interval_hours is not None:
            raise ScheduleError("interval_hours is only allowed for kind='interval'")


@dataclass
class Schedule:
    """An active rule joined with the prescription fields expansion needs."""

    id: str
    prescription_id: str
    patient_id: str
    time_of_day: time
    days_of_week: List[int]
    kind: str = "daily"
    interval_hours: Optional[int] = None
    voice_message_id: Optional[str] = None  # prescription-level override
    last_generated_at: Optional[datetime] = None

    def runs_on(self, d: date) -> bool:
        return timez.iso_weekday(d) in self.days_of_week


async def active_schedules_for(target: date) -> List[Schedule]:
    """Active schedules of active prescriptions whose validity window covers `target`."""
    s, p = medication_schedules, prescriptions
    stmt = (
        select(
            s.c.id,
            s.c.prescription_id,
            p.c.patient_id,
            s.c.time_of_day,
            s.c.days_of_week,
            s.c.kind,
            s.c.interval_hours,
            p.c.voice_message_id,
            s.c.last_generated_at,
        )
        .select_from(s.join(p, p.c.id == s.c.prescription_id))
        .where(
            and_(
                s.c.is_active.is_(True),
                p.c.is_active.is_(True),
                p.c.start_date <= target,
                or_(p.c.end_date.is_(None), p.c.end_date >= target),
            )
        )
        .order_by(p.c.patient_id, s.c.time_of_day)
    )
    async with engine().begin() as conn:
        rows = (await conn.execute(stmt)).mappings().all()
    return [
        Schedule(
            id=r["id"],
            prescription_id=r["prescription_id"],
            patient_id=r["patient_id"],
            time_of_day=r["time_of_day"],
            days_of_week=[int(x) for x in (r["days_of_week"] or [])],
            kind=r["kind"] or "daily",
            interval_hours=r["interval_hours"],
            voice_message_id=r["voice_message_id"],
            last_generated_at=timez.from_db(r["last_generated_at"]),
        )
        for r in rows
    ]


async def has_exception(schedule_id: str, day: date) -> bool:
    stmt = select(
        exists().where(
            and_(
                schedule_exceptions.c.schedule_id == schedule_id,
                schedule_exceptions.c.exception_date == day,
            )
        )
    )
    async with engine().begin() as conn:
        return bool((await conn.execute(stmt)).scalar())


async def add_exception(schedule_id: str, day: date, reason: str | None = None) -> str:
    eid = new_id()
    async with engine().begin() as conn:
        await conn.execute(
            insert(schedule_exceptions).values(
                id=eid, schedule_id=schedule_id, exception_date=day, reason=reason
            )
        )
    return eid


async def replace_schedules(prescription_id: str, rules: Iterable[ScheduleRule]) -> List[str]:
    """Drop every schedule of the prescription and insert `rules`. Returns new ids."""
    rules = list(rules)
    for r in rules:
        r.validate()

    s = medication_schedules
    old_ids = select(s.c.id).where(s.c.prescription_id == prescription_id)
    new_ids: List[str] = []
    async with engine().begin() as conn:
        await conn.execute(
            delete(schedule_exceptions).where(schedule_exceptions.c.schedule_id.in_(old_ids))
        )
        await conn.execute(delete(s).where(s.c.prescription_id == prescription_id))
        for r in rules:
            sid = new_id()
            await conn.execute(
                insert(s).values(
                    id=sid,
                    prescription_id=prescription_id,
                    time_of_day=r.time_of_day,
                    days_of_week=sorted(set(r.days_of_week)),
                    kind=r.kind,
                    interval_hours=r.interval_hours,
                    is_active=True,
                )
            )
            new_ids.append(sid)
    return new_ids


async def deactivate_for_prescription(prescription_id: str) -> int:
    stmt = (
        update(medication_schedules)
        .where(
            and_(
                medication_schedules.c.prescription_id == prescription_id,
                medication_schedules.c.is_active.is_(True),
            )
        )
        .values(is_active=False)
    )
    async with engine().begin() as conn:
        res = await conn.execute(stmt)
        return res.rowcount


async def touch_last_generated(schedule_ids: Sequence[str], now: datetime) -> None:
    if not schedule_ids:
        return
    stmt = (
        update(medication_schedules)
        .where(medication_schedules.c.id.in_(list(schedule_ids)))
        .values(last_generated_at=timez.to_db(now))
    )
    async with engine().begin() as conn:
        await conn.execute(stmt)


async def first_active_prescription(patient_id: str) -> Optional[str]:
    p = prescriptions
    stmt = (
        select(p.c.id)
        .where(and_(p.c.patient_id == patient_id, p.c.is_active.is_(True)))
        .order_by(p.c.start_date, p.c.id)
        .limit(1)
    )
    async with engine().begin() as conn:
        row = (await conn.execute(stmt)).first()
    return row[0] if row else None
