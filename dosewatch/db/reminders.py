# dosewatch/db/reminders.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, delete, insert, select, update

from dosewatch.core import timez
from dosewatch.core.reminder_state import OPEN_STATUSES, ReminderInstance, Status, Transition
from dosewatch.db.models import (
    medication_reminders,
    medications,
    prescriptions,
    reminder_delivery_logs,
)
from dosewatch.db.session import engine, new_id

r = medication_reminders


@dataclass
class ReminderDetails:
    """What a notification needs to say about one reminder."""

    reminder_id: str
    medication: str
    dosage: Optional[str]
    instructions: Optional[str]


def _db_value(v: Any) -> Any:
    if isinstance(v, Enum):
        return v.value
    if isinstance(v, datetime):
        return timez.to_db(v)
    return v


def _open_values() -> List[str]:
    return [s.value for s in OPEN_STATUSES]


async def exists_at(prescription_id: str, patient_id: str, instant: datetime) -> bool:
    stmt = (
        select(r.c.id)
        .where(
            and_(
                r.c.prescription_id == prescription_id,
                r.c.patient_id == patient_id,
                r.c.scheduled_for == timez.to_db(instant),
                # a cancelled slot may be re-created by a later schedule edit
                r.c.status != Status.CANCELLED.value,
            )
        )
        .limit(1)
    )
    async with engine().begin() as conn:
        return (await conn.execute(stmt)).first() is not None


async def insert_reminder(
    prescription_id: str,
    patient_id: str,
    scheduled_for: datetime,
    now: datetime,
    voice_message_id: Optional[str] = None,
) -> str:
    rid = new_id()
    async with engine().begin() as conn:
        await conn.execute(
            insert(r).values(
                id=rid,
                prescription_id=prescription_id,
                patient_id=patient_id,
                scheduled_for=timez.to_db(scheduled_for),
                status=Status.SCHEDULED.value,
                notified=False,
                escalated=False,
                voice_message_id=voice_message_id,
                created_at=timez.to_db(now),
            )
        )
    return rid


async def get(reminder_id: str) -> Optional[ReminderInstance]:
    async with engine().begin() as conn:
        row = (await conn.execute(select(r).where(r.c.id == reminder_id))).mappings().first()
    return ReminderInstance.from_row(row) if row else None


async def get_many(reminder_ids: Iterable[str]) -> Dict[str, ReminderInstance]:
    ids = list(dict.fromkeys(reminder_ids))
    if not ids:
        return {}
    async with engine().begin() as conn:
        rows = (await conn.execute(select(r).where(r.c.id.in_(ids)))).mappings().all()
    return {row["id"]: ReminderInstance.from_row(row) for row in rows}


async def due(window_start: datetime, window_end: datetime) -> List[ReminderInstance]:
    """scheduled, not notified, scheduled_for within [window_start, window_end]."""
    stmt = (
        select(r)
        .where(
            and_(
                r.c.status == Status.SCHEDULED.value,
                r.c.notified.is_(False),
                r.c.scheduled_for >= timez.to_db(window_start),
                r.c.scheduled_for <= timez.to_db(window_end),
            )
        )
        .order_by(r.c.patient_id, r.c.scheduled_for)
    )
    async with engine().begin() as conn:
        rows = (await conn.execute(stmt)).mappings().all()
    return [ReminderInstance.from_row(row) for row in rows]


async def overdue_for_escalation(notified_before: datetime) -> List[ReminderInstance]:
    """Notified at or before the cutoff, still unanswered, not escalated."""
    stmt = (
        select(r)
        .where(
            and_(
                r.c.notified.is_(True),
                r.c.notified_at.is_not(None),
                r.c.notified_at <= timez.to_db(notified_before),
                r.c.status.in_(_open_values()),
                r.c.escalated.is_(False),
            )
        )
        .order_by(r.c.notified_at)
    )
    async with engine().begin() as conn:
        rows = (await conn.execute(stmt)).mappings().all()
    return [ReminderInstance.from_row(row) for row in rows]


async def apply(t: Transition) -> bool:
    """
    Persist a transition with a conditional UPDATE.
    Returns False when the row moved on (another writer won), True if written.
    """
    conds = [r.c.id == t.reminder_id, r.c.status.in_([s.value for s in t.from_statuses])]
    for col, val in t.guard.items():
        conds.append(r.c[col] == _db_value(val))
    stmt = (
        update(r)
        .where(and_(*conds))
        .values({k: _db_value(v) for k, v in t.changes.items()})
    )
    async with engine().begin() as conn:
        res = await conn.execute(stmt)
        return res.rowcount > 0


async def stale(before: datetime) -> List[ReminderInstance]:
    stmt = select(r).where(
        and_(r.c.scheduled_for < timez.to_db(before), r.c.status.in_(_open_values()))
    )
    async with engine().begin() as conn:
        rows = (await conn.execute(stmt)).mappings().all()
    return [ReminderInstance.from_row(row) for row in rows]


async def delete_stale(before: datetime) -> int:
    """Delete unanswered reminders older than `before`, delivery logs first."""
    ids = select(r.c.id).where(
        and_(r.c.scheduled_for < timez.to_db(before), r.c.status.in_(_open_values()))
    )
    async with engine().begin() as conn:
        stale_ids = [row[0] for row in (await conn.execute(ids)).all()]
        if not stale_ids:
            return 0
        await conn.execute(
            delete(reminder_delivery_logs).where(reminder_delivery_logs.c.reminder_id.in_(stale_ids))
        )
        res = await conn.execute(
            delete(r).where(and_(r.c.id.in_(stale_ids), r.c.status.in_(_open_values())))
        )
        return res.rowcount


async def open_for_prescription(prescription_id: str) -> List[ReminderInstance]:
    stmt = select(r).where(
        and_(r.c.prescription_id == prescription_id, r.c.status.in_(_open_values()))
    )
    async with engine().begin() as conn:
        rows = (await conn.execute(stmt)).mappings().all()
    return [ReminderInstance.from_row(row) for row in rows]


async def upcoming_unnotified(prescription_id: str, after: datetime) -> List[ReminderInstance]:
    """Scheduled, not yet notified, due strictly after `after`."""
    stmt = select(r).where(
        and_(
            r.c.prescription_id == prescription_id,
            r.c.status == Status.SCHEDULED.value,
            r.c.notified.is_(False),
            r.c.scheduled_for > timez.to_db(after),
        )
    )
    async with engine().begin() as conn:
        rows = (await conn.execute(stmt)).mappings().all()
    return [ReminderInstance.from_row(row) for row in rows]


async def pending_without_voice(from_time: datetime) -> List[ReminderInstance]:
    stmt = select(r).where(
        and_(
            r.c.status == Status.SCHEDULED.value,
            r.c.voice_message_id.is_(None),
            r.c.scheduled_for >= timez.to_db(from_time),
        )
    )
    async with engine().begin() as conn:
        rows = (await conn.execute(stmt)).mappings().all()
    return [ReminderInstance.from_row(row) for row in rows]


async def set_voice(reminder_id: str, voice_message_id: str) -> bool:
    stmt = (
        update(r)
        .where(and_(r.c.id == reminder_id, r.c.voice_message_id.is_(None)))
        .values(voice_message_id=voice_message_id)
    )
    async with engine().begin() as conn:
        res = await conn.execute(stmt)
        return res.rowcount > 0


async def details(reminder_ids: Sequence[str]) -> Dict[str, ReminderDetails]:
    """Medication name, effective dosage (prescription over medication) and instructions."""
    if not reminder_ids:
        return {}
    p, m = prescriptions, medications
    stmt = (
        select(r.c.id, m.c.name, m.c.dosage, p.c.custom_dosage, p.c.instructions)
        .select_from(r.join(p, p.c.id == r.c.prescription_id).join(m, m.c.id == p.c.medication_id))
        .where(r.c.id.in_(list(reminder_ids)))
    )
    async with engine().begin() as conn:
        rows = (await conn.execute(stmt)).all()
    return {
        rid: ReminderDetails(
            reminder_id=rid,
            medication=name,
            dosage=custom_dosage or dosage,
            instructions=instructions,
        )
        for rid, name, dosage, custom_dosage, instructions in rows
    }
