from datetime import datetime, timedelta

import pytest

from dosewatch.core import reminder_state as rs
from dosewatch.core import timez
from dosewatch.core.reminder_state import InvalidTransition, Phase, ReminderInstance, Status

NOW = datetime(2025, 6, 2, 9, 0, tzinfo=timez.UTC)


def make(status=Status.SCHEDULED, **kw):
    return ReminderInstance(
        id="r1",
        prescription_id="rx1",
        patient_id="p1",
        scheduled_for=NOW - timedelta(minutes=1),
        status=status,
        **kw,
    )


def test_notify_sets_flag_and_keeps_status():
    inst = make()
    t = rs.notify(inst, NOW)
    assert inst.notified is True and inst.notified_at == NOW
    assert inst.status == Status.SCHEDULED
    assert inst.phase == Phase.AWAITING
    assert t.from_statuses == (Status.SCHEDULED,)
    assert t.guard == {"notified": False}


def test_notify_twice_is_rejected():
    inst = make()
    rs.notify(inst, NOW)
    with pytest.raises(InvalidTransition):
        rs.notify(inst, NOW)


def test_snooze_resets_notification_and_moves_time():
    inst = make(notified=True, notified_at=NOW - timedelta(minutes=2))
    rs.snooze(inst, NOW, 10)
    assert inst.scheduled_for == NOW + timedelta(minutes=10)
    assert inst.snoozed_until == inst.scheduled_for
    assert inst.notified is False and inst.notified_at is None
    assert inst.status == Status.SCHEDULED
    assert inst.phase == Phase.PENDING


def test_snooze_of_sent_returns_to_scheduled():
    inst = make(status=Status.SENT, notified=True)
    t = rs.snooze(inst, NOW, 10)
    assert inst.status == Status.SCHEDULED
    assert Status.SENT in t.from_statuses


@pytest.mark.parametrize("manual,expected", [(False, Status.CONFIRMED), (True, Status.MANUAL_CONFIRM)])
def test_confirm(manual, expected):
    inst = make(status=Status.SENT)
    rs.confirm(inst, "actor", NOW, manual=manual)
    assert inst.status == expected
    assert inst.confirmed_by == "actor" and inst.confirmed_at == NOW
    assert inst.phase == Phase.DONE


@pytest.mark.parametrize("status", [Status.CONFIRMED, Status.MISSED, Status.CANCELLED])
def test_closed_reminders_reject_snooze_and_confirm(status):
    inst = make(status=status)
    with pytest.raises(InvalidTransition):
        rs.snooze(inst, NOW, 10)
    with pytest.raises(InvalidTransition):
        rs.confirm(inst, "actor", NOW)


def test_escalate_only_once_and_status_untouched():
    inst = make(notified=True, notified_at=NOW)
    rs.escalate(inst, NOW)
    assert inst.escalated and inst.escalated_at == NOW
    assert inst.status == Status.SCHEDULED
    with pytest.raises(InvalidTransition):
        rs.escalate(inst, NOW)


def test_expire_and_cancel_are_terminal():
    a, b = make(), make(status=Status.SENT)
    rs.expire(a)
    rs.cancel(b)
    assert a.status == Status.MISSED and a.phase == Phase.CLOSED
    assert b.status == Status.CANCELLED and b.phase == Phase.CLOSED


def test_from_row_converts_naive_utc():
    row = {
        "id": "r1",
        "prescription_id": "rx1",
        "patient_id": "p1",
        "scheduled_for": datetime(2025, 6, 2, 7, 0),
        "status": "sent",
        "notified": 1,
        "notified_at": datetime(2025, 6, 2, 7, 0, 5),
        "confirmed_at": None,
        "confirmed_by": None,
        "snoozed_until": None,
        "escalated": 0,
        "escalated_at": None,
        "voice_message_id": None,
    }
    inst = ReminderInstance.from_row(row)
    assert inst.status == Status.SENT
    assert inst.scheduled_for == datetime(2025, 6, 2, 7, 0, tzinfo=timez.UTC)
    assert inst.notified is True and inst.escalated is False
