# dosewatch/core/expander.py
"""
Reminder expander.

Turns active schedules into dated medication_reminders rows:
  - one row per (prescription, instant), re-checked before every insert,
  - days-of-week filter (ISO, 1=Monday),
  - schedule exceptions suppress the whole calendar date,
  - voice message: prescription override, else the patient's latest active one.

A failing schedule is logged and skipped; only the initial schedule query may raise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, List, Optional

from dosewatch.core import reminder_state as rs
from dosewatch.core import timez
from dosewatch.core.logging_utils import kv
from dosewatch.core.reminder_state import Clock
from dosewatch.db import reminders, schedules, voice
from dosewatch.db.schedules import Schedule


@dataclass
class ExpansionResult:
    created: int = 0
    skipped: int = 0
    failed: int = 0

    def __iadd__(self, other: "ExpansionResult") -> "ExpansionResult":
        self.created += other.created
        self.skipped += other.skipped
        self.failed += other.failed
        return self


class ReminderExpander:
    def __init__(self, config: Any, clock: Optional[Clock] = None):
        self.cfg = config
        self.tz = config.TZ
        self.clock = clock or Clock(self.tz)
        self.log = logging.getLogger("dosewatch.expander")

    async def expand(self, target: date) -> ExpansionResult:
        result = ExpansionResult()
        active = await schedules.active_schedules_for(target)
        self.log.debug("expand.start " + kv(date=target.isoformat(), schedules=len(active)))

        processed: List[str] = []
        for sch in active:
            if not sch.runs_on(target):
                continue
            try:
                created, skipped = await self._expand_one(sch, target)
                result.created += created
                result.skipped += skipped
                processed.append(sch.id)
            except Exception as e:
                result.failed += 1
                self.log.error(
                    "expand.schedule.failed "
                    + kv(schedule_id=sch.id, prescription_id=sch.prescription_id, date=target.isoformat(), error=str(e))
                )

        try:
            await schedules.touch_last_generated(processed, self.clock.utcnow())
        except Exception as e:
            self.log.error("expand.touch.failed " + kv(count=len(processed), error=str(e)))

        self.log.info(
            "expand.done "
            + kv(date=target.isoformat(), created=result.created, skipped=result.skipped, failed=result.failed)
        )
        return result

    async def _expand_one(self, sch: Schedule, target: date) -> tuple[int, int]:
        if await schedules.has_exception(sch.id, target):
            self.log.debug("expand.skip.exception " + kv(schedule_id=sch.id, date=target.isoformat()))
            return 0, 1

        interval = sch.interval_hours if sch.kind == "interval" else None
        created = skipped = 0
        voice_id: Optional[str] = None
        voice_resolved = False
        for instant in timez.day_instants(target, sch.time_of_day, self.tz, interval):
            if await reminders.exists_at(sch.prescription_id, sch.patient_id, instant):
                skipped += 1
                continue
            if not voice_resolved:
                voice_id = sch.voice_message_id or await voice.latest_active_for(sch.patient_id)
                voice_resolved = True
            rid = await reminders.insert_reminder(
                sch.prescription_id,
                sch.patient_id,
                instant,
                now=self.clock.utcnow(),
                voice_message_id=voice_id,
            )
            created += 1
            self.log.debug(
                "expand.created "
                + kv(reminder_id=rid, prescription_id=sch.prescription_id, at=instant.isoformat(), voice=voice_id)
            )
        return created, skipped

    async def expand_range(self, start: date, days: int) -> ExpansionResult:
        total = ExpansionResult()
        for i in range(days):
            total += await self.expand(start + timedelta(days=i))
        return total

    async def cleanup_stale(self) -> int:
        """Drop (or mark missed) unanswered reminders older than the retention window."""
        cutoff = self.clock.utcnow() - timedelta(days=self.cfg.RETENTION_DAYS)
        if not getattr(self.cfg, "CLEANUP_MARK_MISSED", False):
            n = await reminders.delete_stale(cutoff)
            self.log.info("cleanup.deleted " + kv(count=n, before=cutoff.isoformat()))
            return n

        n = 0
        for inst in await reminders.stale(cutoff):
            if await reminders.apply(rs.expire(inst)):
                n += 1
        self.log.info("cleanup.missed " + kv(count=n, before=cutoff.isoformat()))
        return n

    async def relink_voice_messages(self) -> int:
        """Attach a voice message to upcoming reminders created before the patient recorded one."""
        linked = 0
        for inst in await reminders.pending_without_voice(self.clock.utcnow()):
            try:
                voice_id = await voice.latest_active_for(inst.patient_id)
                if voice_id and await reminders.set_voice(inst.id, voice_id):
                    linked += 1
            except Exception as e:
                self.log.error("voice.relink.failed " + kv(reminder_id=inst.id, error=str(e)))
        self.log.info("voice.relink.done " + kv(linked=linked))
        return linked
