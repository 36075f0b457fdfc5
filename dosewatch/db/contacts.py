# dosewatch/db/contacts.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from sqlalchemy import and_, select

from dosewatch.db.models import user_relationships, users
from dosewatch.db.session import engine


@dataclass
class Contact:
    id: str
    first_name: str
    last_name: str
    phone_number: Optional[str]
    push_token: Optional[str]
    notifications_enabled: bool


@dataclass
class Caregiver:
    relationship_id: str
    role: str
    contact: Contact


def _contact(row) -> Contact:
    return Contact(
        id=row["id"],
        first_name=row["first_name"] or "",
        last_name=row["last_name"] or "",
        phone_number=row["phone_number"],
        push_token=row["push_token"],
        notifications_enabled=bool(row["notifications_enabled"]),
    )


async def get_contact(user_id: str) -> Optional[Contact]:
    stmt = select(
        users.c.id,
        users.c.first_name,
        users.c.last_name,
        users.c.phone_number,
        users.c.push_token,
        users.c.notifications_enabled,
    ).where(users.c.id == user_id)
    async with engine().begin() as conn:
        row = (await conn.execute(stmt)).mappings().first()
    return _contact(row) if row else None


async def caregivers_for(patient_id: str, roles: Sequence[str]) -> List[Caregiver]:
    """Active relationships of the patient whose role carries alerting capability."""
    rel, u = user_relationships, users
    stmt = (
        select(
            rel.c.id.label("relationship_id"),
            rel.c.role,
            u.c.id,
            u.c.first_name,
            u.c.last_name,
            u.c.phone_number,
            u.c.push_token,
            u.c.notifications_enabled,
        )
        .select_from(rel.join(u, u.c.id == rel.c.caregiver_id))
        .where(
            and_(
                rel.c.patient_id == patient_id,
                rel.c.is_active.is_(True),
                rel.c.role.in_(list(roles)),
            )
        )
        .order_by(rel.c.role, u.c.id)
    )
    async with engine().begin() as conn:
        rows = (await conn.execute(stmt)).mappings().all()
    return [Caregiver(row["relationship_id"], row["role"], _contact(row)) for row in rows]


async def is_caregiver_of(caregiver_id: str, patient_id: str, roles: Sequence[str]) -> bool:
    rel = user_relationships
    stmt = (
        select(rel.c.id)
        .where(
            and_(
                rel.c.caregiver_id == caregiver_id,
                rel.c.patient_id == patient_id,
                rel.c.is_active.is_(True),
                rel.c.role.in_(list(roles)),
            )
        )
        .limit(1)
    )
    async with engine().begin() as conn:
        return (await conn.execute(stmt)).first() is not None
