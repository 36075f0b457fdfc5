# dosewatch/db/confirmations.py
from __future__ import annotations

from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import func, insert, select

from dosewatch.core import timez
from dosewatch.db.models import medication_confirmations
from dosewatch.db.session import engine, new_id

PATIENT = "patient"
CAREGIVER_MANUAL = "caregiver_manual"


async def record(reminder_id: str, confirmed_by: str, kind: str, now: datetime) -> bool:
    """Insert the audit record unless the reminder already has one. Returns True if inserted."""
    t = medication_confirmations
    async with engine().begin() as conn:
        row = (await conn.execute(select(t.c.id).where(t.c.reminder_id == reminder_id))).first()
        if row:
            return False
        await conn.execute(
            insert(t).values(
                id=new_id(),
                reminder_id=reminder_id,
                confirmed_by=confirmed_by,
                confirmation_type=kind,
                confirmed_at=timez.to_db(now),
            )
        )
        return True


async def get(reminder_id: str) -> Optional[Tuple[str, str]]:
    """(confirmed_by, confirmation_type) or None."""
    t = medication_confirmations
    stmt = select(t.c.confirmed_by, t.c.confirmation_type).where(t.c.reminder_id == reminder_id)
    async with engine().begin() as conn:
        row = (await conn.execute(stmt)).first()
    return tuple(row) if row else None


async def count(reminder_id: str) -> int:
    t = medication_confirmations
    stmt = select(func.count()).select_from(t).where(t.c.reminder_id == reminder_id)
    async with engine().begin() as conn:
        return int((await conn.execute(stmt)).scalar() or 0)
