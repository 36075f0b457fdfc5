from datetime import timedelta

import pytest

from conftest import EXPO_TOKEN, FakeNotifier
from dosewatch import config as cfg
from dosewatch.core.escalation import EscalationMonitor
from dosewatch.db import alerts, reminders


async def notified_reminder(seed, clock, minutes_ago=6, **kw):
    pid = await seed.user(first_name="Amel", last_name="Ben Ali")
    rx = await seed.prescription(pid, name="Doliprane")
    at = clock.utcnow() - timedelta(minutes=minutes_ago)
    rid = await seed.reminder(rx, pid, at, notified=True, notified_at=at, **kw)
    return pid, rid


@pytest.mark.asyncio
async def test_two_caregivers_get_alerts_and_reminder_is_flagged(db, seed, clock, notifier):
    pid, rid = await notified_reminder(seed, clock)
    tutor = await seed.caregiver(pid, "tutor", push_token="ExponentPushToken[tutorTOKEN123456789]")
    doctor = await seed.caregiver(pid, "doctor", push_token="ExponentPushToken[doctorTOKEN12345678]")

    report = await EscalationMonitor(cfg, notifier, clock).sweep()

    assert report.escalated == 1 and report.alerts == 2
    assert len(notifier.pushes) == 2
    _, _, title, body, data = notifier.pushes[0]
    assert title == "⚠️ Médicament non pris"
    assert body == "Amel Ben Ali n'a pas confirmé la prise de Doliprane"
    assert data["type"] == "tutor_alert" and data["reminderId"] == rid
    assert data["reminderTime"] == (await reminders.get(rid)).scheduled_for.isoformat()

    inst = await reminders.get(rid)
    assert inst.escalated is True and inst.escalated_at == clock.utcnow()
    assert inst.status.value == "scheduled"
    stored = await alerts.for_reminder(rid)
    assert sorted(a.caregiver_id for a in stored) == sorted([tutor, doctor])
    assert all(a.alert_type == "missed_medication" and not a.is_read for a in stored)


@pytest.mark.asyncio
async def test_rerun_creates_no_new_alerts(db, seed, clock, notifier):
    pid, rid = await notified_reminder(seed, clock)
    await seed.caregiver(pid, "tutor")
    monitor = EscalationMonitor(cfg, notifier, clock)

    await monitor.sweep()
    clock.advance(seconds=30)
    second = await monitor.sweep()

    assert second.checked == 0
    assert len(await alerts.for_reminder(rid)) == 1
    assert len(notifier.pushes) == 1


@pytest.mark.asyncio
async def test_no_successful_push_keeps_reminder_pending(db, seed, clock):
    pid, rid = await notified_reminder(seed, clock)
    await seed.caregiver(pid, "tutor")
    failing = FakeNotifier(push_ok=False)

    report = await EscalationMonitor(cfg, failing, clock).sweep()

    assert report.pending == 1 and report.escalated == 0
    assert (await reminders.get(rid)).escalated is False
    assert await alerts.for_reminder(rid) == []

    # the next tick tries again and succeeds
    ok = FakeNotifier()
    clock.advance(seconds=30)
    assert (await EscalationMonitor(cfg, ok, clock).sweep()).escalated == 1


@pytest.mark.asyncio
async def test_grace_period_not_elapsed(db, seed, clock, notifier):
    pid, rid = await notified_reminder(seed, clock, minutes_ago=4)
    await seed.caregiver(pid, "tutor")

    report = await EscalationMonitor(cfg, notifier, clock).sweep()

    assert report.checked == 0 and notifier.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["confirmed", "manual_confirm", "missed", "cancelled"])
async def test_answered_or_closed_reminders_are_ignored(db, seed, clock, notifier, status):
    pid, rid = await notified_reminder(seed, clock, status=status)
    await seed.caregiver(pid, "tutor")

    report = await EscalationMonitor(cfg, notifier, clock).sweep()

    assert report.checked == 0
    assert await alerts.for_reminder(rid) == []


@pytest.mark.asyncio
async def test_legacy_sent_status_is_escalated(db, seed, clock, notifier):
    pid, rid = await notified_reminder(seed, clock, status="sent")
    await seed.caregiver(pid, "tutor")

    assert (await EscalationMonitor(cfg, notifier, clock).sweep()).escalated == 1
    assert (await reminders.get(rid)).status.value == "sent"


@pytest.mark.asyncio
async def test_inactive_relationship_is_excluded(db, seed, clock, notifier):
    pid, rid = await notified_reminder(seed, clock)
    active = await seed.caregiver(pid, "doctor")
    await seed.caregiver(pid, "tutor", is_active=False, push_token="ExponentPushToken[inactiveTOKEN123456]")

    report = await EscalationMonitor(cfg, notifier, clock).sweep()

    assert report.alerts == 1
    assert [a.caregiver_id for a in await alerts.for_reminder(rid)] == [active]
    assert [p[1] for p in notifier.pushes] == [EXPO_TOKEN]


@pytest.mark.asyncio
async def test_no_caregivers_means_nothing_to_do(db, seed, clock, notifier):
    _, rid = await notified_reminder(seed, clock)

    report = await EscalationMonitor(cfg, notifier, clock).sweep()

    assert report.pending == 1
    assert (await reminders.get(rid)).escalated is False


@pytest.mark.asyncio
async def test_alert_for_every_relationship_even_if_one_push_skipped(db, seed, clock, notifier):
    pid, rid = await notified_reminder(seed, clock)
    reachable = await seed.caregiver(pid, "tutor")
    silent = await seed.caregiver(pid, "doctor", push_token=None)

    report = await EscalationMonitor(cfg, notifier, clock).sweep()

    assert len(notifier.pushes) == 1
    assert report.alerts == 2
    assert sorted(a.caregiver_id for a in await alerts.for_reminder(rid)) == sorted([reachable, silent])


@pytest.mark.asyncio
async def test_push_exception_for_one_caregiver_does_not_block_others(db, seed, clock):
    pid, rid = await notified_reminder(seed, clock)
    bad_token = "ExponentPushToken[brokenTOKEN12345678]"
    await seed.caregiver(pid, "tutor", push_token=bad_token)
    await seed.caregiver(pid, "doctor")

    class Flaky(FakeNotifier):
        async def send_push(self, token, title, body, data=None):
            if token == bad_token:
                raise RuntimeError("expo down")
            return await super().send_push(token, title, body, data)

    report = await EscalationMonitor(cfg, Flaky(), clock).sweep()

    assert report.escalated == 1 and report.alerts == 2


@pytest.mark.asyncio
async def test_caregiver_with_unroutable_token_is_skipped(db, seed, clock):
    pid, rid = await notified_reminder(seed, clock)
    native = "b2" * 32
    await seed.caregiver(pid, "tutor", push_token=native)
    notifier = FakeNotifier(unroutable={native})

    report = await EscalationMonitor(cfg, notifier, clock).sweep()

    assert notifier.pushes == [] and report.pending == 1
    assert (await reminders.get(rid)).escalated is False
