# dosewatch/db/delivery_log.py
"""Append-only audit of delivery attempts, one row per reminder per channel."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import insert, select

from dosewatch.core import timez
from dosewatch.db.models import reminder_delivery_logs
from dosewatch.db.session import engine, new_id


@dataclass(frozen=True)
class DeliveryLogEntry:
    reminder_id: str
    channel: str  # 'push' | 'sms'
    provider: str
    status: str  # 'sent' | 'failed'
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


async def append(entries: Iterable[DeliveryLogEntry], now: datetime) -> int:
    rows = [
        {
            "id": new_id(),
            "reminder_id": e.reminder_id,
            "channel": e.channel,
            "provider": e.provider,
            "status": e.status,
            "provider_message_id": e.provider_message_id,
            "error": e.error,
            "created_at": timez.to_db(now),
        }
        for e in entries
    ]
    if not rows:
        return 0
    async with engine().begin() as conn:
        await conn.execute(insert(reminder_delivery_logs), rows)
    return len(rows)


async def for_reminder(reminder_id: str) -> List[DeliveryLogEntry]:
    t = reminder_delivery_logs
    stmt = select(t).where(t.c.reminder_id == reminder_id).order_by(t.c.created_at, t.c.channel)
    async with engine().begin() as conn:
        rows = (await conn.execute(stmt)).mappings().all()
    return [
        DeliveryLogEntry(
            reminder_id=row["reminder_id"],
            channel=row["channel"],
            provider=row["provider"],
            status=row["status"],
            provider_message_id=row["provider_message_id"],
            error=row["error"],
        )
        for row in rows
    ]
