# dosewatch/core/pipeline.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Iterable, Optional

from dosewatch.adapters.notifier import Notifier
from dosewatch.core import reminder_state as rs
from dosewatch.core.confirmation import ConfirmationHandler
from dosewatch.core.dispatcher import DeliveryDispatcher, DispatchReport
from dosewatch.core.escalation import EscalationMonitor, EscalationReport
from dosewatch.core.expander import ExpansionResult, ReminderExpander
from dosewatch.core.logging_utils import kv
from dosewatch.core.poller import DuePoller
from dosewatch.core.reminder_state import Clock
from dosewatch.core.ttl_store import InMemoryTTLStore, KeyedTTLStore
from dosewatch.core.verification import VerificationCodeService
from dosewatch.db import reminders, schedules
from dosewatch.db.schedules import ScheduleRule


class ReminderPipeline:
    """
    Wires expander, poller, dispatcher, escalation and confirmations around one
    notifier and one clock. Every trigger here is safe to re-run.
    """

    def __init__(
        self,
        config: Any,
        notifier: Notifier,
        clock: Optional[Clock] = None,
        code_store: Optional[KeyedTTLStore[str]] = None,
    ):
        self.cfg = config
        self.notifier = notifier
        self.clock = clock or Clock(config.TZ)
        self.log = logging.getLogger("dosewatch.pipeline")

        self.expander = ReminderExpander(config, self.clock)
        self.dispatcher = DeliveryDispatcher(config, notifier, self.clock)
        self.poller = DuePoller(config, self.dispatcher, self.clock)
        self.escalation = EscalationMonitor(config, notifier, self.clock)
        self.confirmations = ConfirmationHandler(config, self.clock)
        self.verification = VerificationCodeService(
            config, code_store or InMemoryTTLStore(self.clock), notifier
        )

    # -- trigger operations ------------------------------------------------------------
    async def generate_today(self) -> ExpansionResult:
        return await self.expander.expand(self.clock.today())

    async def generate_next_days(self, days: Optional[int] = None) -> ExpansionResult:
        days = days or self.cfg.STARTUP_EXPAND_DAYS
        return await self.expander.expand_range(self.clock.today(), days)

    async def generate_ahead(self) -> ExpansionResult:
        """
        Daily job: tomorrow and the following days. Doses before EXPAND_AT exist
        before they fall due; today was covered by the previous runs or startup.
        """
        start = self.clock.today() + timedelta(days=1)
        return await self.expander.expand_range(start, self.cfg.STARTUP_EXPAND_DAYS)

    async def cleanup_stale(self) -> int:
        return await self.expander.cleanup_stale()

    # -- ticks -------------------------------------------------------------------------
    async def poll_tick(self) -> Optional[DispatchReport]:
        return await self.poller.poll()

    async def escalation_tick(self) -> EscalationReport:
        return await self.escalation.sweep()

    async def verification_sweep(self) -> int:
        return self.verification.sweep()

    # -- schedule lifecycle ------------------------------------------------------------
    async def on_schedules_changed(self, prescription_id: str, rules: Iterable[ScheduleRule]) -> ExpansionResult:
        """
        Replace the prescription's rules, cancel the upcoming reminders built
        from the old ones and expand today plus the next days from the new rules.
        Snoozed and already-notified reminders are left alone.
        """
        rules = list(rules)
        for rule in rules:
            rule.validate()

        cancelled = 0
        for inst in await reminders.upcoming_unnotified(prescription_id, self.clock.utcnow()):
            if inst.snoozed_until is not None:
                continue
            if await reminders.apply(rs.cancel(inst)):
                cancelled += 1

        ids = await schedules.replace_schedules(prescription_id, rules)
        self.log.info(
            "schedules.replaced " + kv(prescription_id=prescription_id, rules=len(ids), cancelled=cancelled)
        )
        return await self.generate_next_days()

    async def cancel_prescription(self, prescription_id: str) -> int:
        """Deactivate the schedules and cancel every unanswered reminder. Returns cancelled count."""
        await schedules.deactivate_for_prescription(prescription_id)
        cancelled = 0
        for inst in await reminders.open_for_prescription(prescription_id):
            if await reminders.apply(rs.cancel(inst)):
                cancelled += 1
        self.log.info("prescription.cancelled " + kv(prescription_id=prescription_id, reminders=cancelled))
        return cancelled

    async def create_test_reminder(self, patient_id: str, delay_seconds: int = 10) -> str:
        """One-off reminder on the patient's first active prescription, due in `delay_seconds`."""
        prescription_id = await schedules.first_active_prescription(patient_id)
        if prescription_id is None:
            raise LookupError(f"patient {patient_id} has no active prescription")
        now = self.clock.utcnow()
        rid = await reminders.insert_reminder(
            prescription_id, patient_id, now + timedelta(seconds=delay_seconds), now=now
        )
        self.log.info("test_reminder.created " + kv(reminder_id=rid, patient_id=patient_id, delay_s=delay_seconds))
        return rid
