# dosewatch/db/alerts.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import and_, insert, select, update

from dosewatch.core import timez
from dosewatch.db.models import alerts
from dosewatch.db.session import engine, new_id

MISSED_MEDICATION = "missed_medication"


@dataclass
class Alert:
    id: str
    patient_id: str
    caregiver_id: str
    reminder_id: Optional[str]
    alert_type: str
    title: str
    message: str
    is_read: bool
    read_at: Optional[datetime]
    status: str


def _alert(row) -> Alert:
    return Alert(
        id=row["id"],
        patient_id=row["patient_id"],
        caregiver_id=row["caregiver_id"],
        reminder_id=row["reminder_id"],
        alert_type=row["alert_type"],
        title=row["title"],
        message=row["message"],
        is_read=bool(row["is_read"]),
        read_at=timez.from_db(row["read_at"]),
        status=row["status"],
    )


async def create_missed(
    patient_id: str,
    reminder_id: str,
    caregiver_ids: Iterable[str],
    title: str,
    message: str,
    now: datetime,
) -> int:
    rows = [
        {
            "id": new_id(),
            "patient_id": patient_id,
            "caregiver_id": cid,
            "reminder_id": reminder_id,
            "alert_type": MISSED_MEDICATION,
            "title": title,
            "message": message,
            "is_read": False,
            "status": "open",
            "created_at": timez.to_db(now),
        }
        for cid in caregiver_ids
    ]
    if not rows:
        return 0
    async with engine().begin() as conn:
        await conn.execute(insert(alerts), rows)
    return len(rows)


async def acknowledge(reminder_id: str, caregiver_id: str, now: datetime) -> int:
    """Mark the caregiver's unread alerts for this reminder as read + acknowledged."""
    stmt = (
        update(alerts)
        .where(
            and_(
                alerts.c.reminder_id == reminder_id,
                alerts.c.caregiver_id == caregiver_id,
                alerts.c.is_read.is_(False),
            )
        )
        .values(is_read=True, read_at=timez.to_db(now), status="acknowledged")
    )
    async with engine().begin() as conn:
        res = await conn.execute(stmt)
        return res.rowcount


async def for_reminder(reminder_id: str) -> List[Alert]:
    stmt = select(alerts).where(alerts.c.reminder_id == reminder_id).order_by(alerts.c.caregiver_id)
    async with engine().begin() as conn:
        rows = (await conn.execute(stmt)).mappings().all()
    return [_alert(row) for row in rows]
