# dosewatch/db/voice.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import and_, desc, select

from dosewatch.db.models import voice_messages
from dosewatch.db.session import engine


async def latest_active_for(patient_id: str) -> Optional[str]:
    """Id of the patient's most recently created active voice message."""
    v = voice_messages
    stmt = (
        select(v.c.id)
        .where(and_(v.c.patient_id == patient_id, v.c.is_active.is_(True)))
        .order_by(desc(v.c.created_at))
        .limit(1)
    )
    async with engine().begin() as conn:
        row = (await conn.execute(stmt)).first()
    return row[0] if row else None
