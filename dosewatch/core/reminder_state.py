# dosewatch/core/reminder_state.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo

from dosewatch.core import timez


class Status(str, Enum):
    SCHEDULED = "scheduled"
    SENT = "sent"
    CONFIRMED = "confirmed"
    MANUAL_CONFIRM = "manual_confirm"
    MISSED = "missed"
    CANCELLED = "cancelled"


# Not yet answered; `sent` is the legacy spelling of "scheduled + notified".
OPEN_STATUSES: Tuple[Status, ...] = (Status.SCHEDULED, Status.SENT)
CONFIRMED_STATUSES: Tuple[Status, ...] = (Status.CONFIRMED, Status.MANUAL_CONFIRM)


class Phase(str, Enum):
    """Lifecycle as seen by the pipeline, derived from the persisted fields."""

    PENDING = "pending"  # waiting for its time, poller will pick it up
    AWAITING = "awaiting"  # notified, waiting for the patient
    DONE = "done"  # confirmed by patient or caregiver
    CLOSED = "closed"  # missed or cancelled


class InvalidTransition(Exception):
    def __init__(self, reminder_id: str, action: str, status: Status):
        super().__init__(f"cannot {action} reminder {reminder_id} in status {status.value}")
        self.reminder_id = reminder_id
        self.action = action
        self.status = status


@dataclass
class ReminderInstance:
    """Runtime view of one medication_reminders row. Datetimes are aware UTC."""

    id: str
    prescription_id: str
    patient_id: str
    scheduled_for: datetime
    status: Status = Status.SCHEDULED
    notified: bool = False
    notified_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[str] = None
    snoozed_until: Optional[datetime] = None
    escalated: bool = False
    escalated_at: Optional[datetime] = None
    voice_message_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ReminderInstance":
        return cls(
            id=row["id"],
            prescription_id=row["prescription_id"],
            patient_id=row["patient_id"],
            scheduled_for=timez.from_db(row["scheduled_for"]),
            status=Status(row["status"]),
            notified=bool(row["notified"]),
            notified_at=timez.from_db(row["notified_at"]),
            confirmed_at=timez.from_db(row["confirmed_at"]),
            confirmed_by=row["confirmed_by"],
            snoozed_until=timez.from_db(row["snoozed_until"]),
            escalated=bool(row["escalated"]),
            escalated_at=timez.from_db(row["escalated_at"]),
            voice_message_id=row["voice_message_id"],
        )

    @property
    def phase(self) -> Phase:
        if self.status in CONFIRMED_STATUSES:
            return Phase.DONE
        if self.status in (Status.MISSED, Status.CANCELLED):
            return Phase.CLOSED
        if self.notified or self.status == Status.SENT:
            return Phase.AWAITING
        return Phase.PENDING


@dataclass(frozen=True)
class Transition:
    """
    A computed state change: the row must still be in one of `from_statuses`
    (and match `guard`) when written, otherwise another writer got there first.
    """

    action: str
    reminder_id: str
    from_statuses: Tuple[Status, ...]
    changes: Dict[str, Any]
    guard: Dict[str, Any] = field(default_factory=dict)


def _apply(inst: ReminderInstance, t: Transition) -> Transition:
    for k, v in t.changes.items():
        setattr(inst, k, v)
    return t


def _require(inst: ReminderInstance, action: str, allowed: Tuple[Status, ...]) -> None:
    if inst.status not in allowed:
        raise InvalidTransition(inst.id, action, inst.status)


# -- transitions ------------------------------------------------------------------------
def notify(inst: ReminderInstance, now: datetime) -> Transition:
    _require(inst, "notify", (Status.SCHEDULED,))
    if inst.notified:
        raise InvalidTransition(inst.id, "notify", inst.status)
    return _apply(
        inst,
        Transition(
            "notify",
            inst.id,
            (Status.SCHEDULED,),
            {"notified": True, "notified_at": now},
            guard={"notified": False},
        ),
    )


def snooze(inst: ReminderInstance, now: datetime, minutes: int) -> Transition:
    _require(inst, "snooze", OPEN_STATUSES)
    until = now + timedelta(minutes=minutes)
    return _apply(
        inst,
        Transition(
            "snooze",
            inst.id,
            OPEN_STATUSES,
            {
                "scheduled_for": until,
                "snoozed_until": until,
                "notified": False,
                "notified_at": None,
                # `sent` implies notified; back to pollable
                "status": Status.SCHEDULED,
            },
        ),
    )


def confirm(inst: ReminderInstance, actor_id: str, now: datetime, *, manual: bool = False) -> Transition:
    action = "confirm_manual" if manual else "confirm"
    _require(inst, action, OPEN_STATUSES)
    return _apply(
        inst,
        Transition(
            action,
            inst.id,
            OPEN_STATUSES,
            {
                "status": Status.MANUAL_CONFIRM if manual else Status.CONFIRMED,
                "confirmed_at": now,
                "confirmed_by": actor_id,
            },
        ),
    )


def escalate(inst: ReminderInstance, now: datetime) -> Transition:
    _require(inst, "escalate", OPEN_STATUSES)
    if inst.escalated:
        raise InvalidTransition(inst.id, "escalate", inst.status)
    return _apply(
        inst,
        Transition(
            "escalate",
            inst.id,
            OPEN_STATUSES,
            {"escalated": True, "escalated_at": now},
            guard={"escalated": False},
        ),
    )


def expire(inst: ReminderInstance) -> Transition:
    _require(inst, "expire", OPEN_STATUSES)
    return _apply(inst, Transition("expire", inst.id, OPEN_STATUSES, {"status": Status.MISSED}))


def cancel(inst: ReminderInstance) -> Transition:
    _require(inst, "cancel", OPEN_STATUSES)
    return _apply(inst, Transition("cancel", inst.id, OPEN_STATUSES, {"status": Status.CANCELLED}))


class Clock:
    """Injectable, testable clock bound to a timezone."""

    def __init__(self, tz: ZoneInfo):
        self.tz = tz

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def utcnow(self) -> datetime:
        return self.now().astimezone(timez.UTC)

    def today(self) -> date:
        return self.now().date()
