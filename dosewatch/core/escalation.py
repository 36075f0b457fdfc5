# dosewatch/core/escalation.py
"""
Escalation monitor.

Picks reminders notified more than ESCALATION_GRACE_MIN ago that are still
unanswered and not yet escalated, and pushes a missed-dose notice to every
caregiver with alerting capability. Once any caregiver push succeeds the
reminder is flagged escalated (status unchanged) and one Alert is stored per
caregiver relationship. If nobody could be reached nothing changes and the
next tick tries again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from dosewatch.adapters.notifier import Notifier
from dosewatch.core import reminder_state as rs
from dosewatch.core.i18n import fmt
from dosewatch.core.logging_utils import kv
from dosewatch.core.push_tokens import is_valid_push_token
from dosewatch.core.reminder_state import Clock, ReminderInstance
from dosewatch.db import alerts, contacts, reminders


@dataclass
class EscalationReport:
    checked: int = 0
    escalated: int = 0
    alerts: int = 0
    pending: int = 0
    failed: int = 0


class EscalationMonitor:
    def __init__(self, config: Any, notifier: Notifier, clock: Optional[Clock] = None):
        self.cfg = config
        self.notifier = notifier
        self.clock = clock or Clock(config.TZ)
        self.roles = tuple(config.ALERTING_ROLES)
        self.log = logging.getLogger("dosewatch.escalation")

    async def sweep(self) -> EscalationReport:
        report = EscalationReport()
        cutoff = self.clock.utcnow() - timedelta(minutes=self.cfg.ESCALATION_GRACE_MIN)
        rows = await reminders.overdue_for_escalation(cutoff)
        report.checked = len(rows)
        for inst in rows:
            try:
                created = await self._escalate(inst)
            except Exception:
                report.failed += 1
                self.log.exception("escalation.failed " + kv(reminder_id=inst.id, patient_id=inst.patient_id))
                continue
            if created is None:
                report.pending += 1
            else:
                report.escalated += 1
                report.alerts += created
        if rows:
            self.log.info(
                "escalation.sweep "
                + kv(
                    checked=report.checked,
                    escalated=report.escalated,
                    alerts=report.alerts,
                    pending=report.pending,
                    failed=report.failed,
                )
            )
        return report

    async def _escalate(self, inst: ReminderInstance) -> Optional[int]:
        """Number of alerts created, or None when the reminder stays pending."""
        caregivers = await contacts.caregivers_for(inst.patient_id, self.roles)
        if not caregivers:
            self.log.debug("escalation.skip.no_caregivers " + kv(reminder_id=inst.id, patient_id=inst.patient_id))
            return None

        patient = await contacts.get_contact(inst.patient_id)
        if patient is None:
            self.log.error("escalation.skip.no_patient " + kv(reminder_id=inst.id, patient_id=inst.patient_id))
            return None

        det = (await reminders.details([inst.id])).get(inst.id)
        medication = det.medication if det else fmt("medication.unknown")
        names = {"first_name": patient.first_name, "last_name": patient.last_name}
        title = fmt("alert.push.title")
        body = fmt("alert.push.body", medication=medication, **names)
        data = {
            "type": "tutor_alert",
            "reminderId": inst.id,
            "patientId": inst.patient_id,
            "patientName": f"{patient.first_name} {patient.last_name}".strip(),
            "medicationName": medication,
            "reminderTime": inst.scheduled_for.isoformat(),
        }

        reached = 0
        for cg in caregivers:
            c = cg.contact
            if not (
                c.notifications_enabled
                and is_valid_push_token(c.push_token)
                and self.notifier.supports_push(c.push_token)
            ):
                self.log.debug("escalation.push.skip " + kv(caregiver_id=c.id, role=cg.role))
                continue
            try:
                ok = await self.notifier.send_push(c.push_token, title, body, data)
            except Exception as e:
                ok = False
                self.log.error("escalation.push.error " + kv(caregiver_id=c.id, error=str(e)))
            if ok:
                reached += 1

        if not reached:
            self.log.warning("escalation.pending " + kv(reminder_id=inst.id, caregivers=len(caregivers)))
            return None

        now = self.clock.utcnow()
        if not await reminders.apply(rs.escalate(inst, now)):
            self.log.debug("escalation.raced " + kv(reminder_id=inst.id))
            return None

        created = await alerts.create_missed(
            inst.patient_id,
            inst.id,
            [cg.contact.id for cg in caregivers],
            fmt("alert.title"),
            fmt("alert.message", **names),
            now,
        )
        self.log.info(
            "escalation.done " + kv(reminder_id=inst.id, patient_id=inst.patient_id, reached=reached, alerts=created)
        )
        return created
