# dosewatch/core/dispatcher.py
"""
Delivery dispatcher.

Due reminders are grouped per patient (co-scheduled pills within GROUP_WINDOW_MIN
become one notification), then each group goes out by push and, independently,
by SMS. Every attempt is appended to the delivery log, one row per reminder per
channel. A reminder is marked notified only if some channel succeeded; failed
channels are not retried in the same pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dosewatch.adapters.notifier import Notifier, SmsResult
from dosewatch.core import reminder_state as rs
from dosewatch.core.i18n import MESSAGES, fmt
from dosewatch.core.logging_utils import kv
from dosewatch.core.push_tokens import is_valid_push_token
from dosewatch.core.reminder_state import Clock, InvalidTransition, ReminderInstance
from dosewatch.db import contacts, delivery_log, reminders
from dosewatch.db.contacts import Contact
from dosewatch.db.delivery_log import DeliveryLogEntry
from dosewatch.db.reminders import ReminderDetails


@dataclass
class ReminderGroup:
    patient_id: str
    reminders: List[ReminderInstance] = field(default_factory=list)

    @property
    def ids(self) -> List[str]:
        return [r.id for r in self.reminders]


@dataclass
class DispatchReport:
    groups: int = 0
    notified: int = 0
    undelivered: int = 0
    skipped: int = 0
    failed_groups: int = 0
    push_sent: int = 0
    push_failed: int = 0
    sms_sent: int = 0
    sms_failed: int = 0


def group_reminders(items: Sequence[ReminderInstance], window_min: int) -> List[ReminderGroup]:
    """
    Per patient, in time order: a reminder joins the current group when it is
    within `window_min` of the group's first reminder, otherwise starts a new one.
    """
    window = timedelta(minutes=window_min)
    by_patient: Dict[str, List[ReminderInstance]] = {}
    for r in items:
        by_patient.setdefault(r.patient_id, []).append(r)

    groups: List[ReminderGroup] = []
    for pid, rows in by_patient.items():
        rows.sort(key=lambda r: r.scheduled_for)
        current: Optional[ReminderGroup] = None
        for r in rows:
            if current is None or r.scheduled_for - current.reminders[0].scheduled_for > window:
                current = ReminderGroup(pid)
                groups.append(current)
            current.reminders.append(r)
    return groups


def _dosage(d: ReminderDetails) -> str:
    return d.dosage or fmt("dosage.unknown")


def build_push(group: ReminderGroup, details: Dict[str, ReminderDetails]) -> Tuple[str, str, Dict[str, Any]]:
    """(title, body, data) for the patient push."""
    items = [details[rid] for rid in group.ids]
    if len(items) == 1:
        d = items[0]
        inst = group.reminders[0]
        data = {
            "type": "medication_reminder",
            "reminderId": inst.id,
            "reminderIds": group.ids,
            "medicationName": d.medication,
            "dosage": _dosage(d),
            "scheduledFor": inst.scheduled_for.isoformat(),
        }
        if inst.voice_message_id:
            data["voiceMessageId"] = inst.voice_message_id
        return (
            fmt("push.single.title", medication=d.medication),
            fmt("push.single.body", dosage=_dosage(d)),
            data,
        )

    listed = MESSAGES["push.item_sep"].join(
        fmt("push.item", medication=d.medication, dosage=_dosage(d)) for d in items
    )
    data = {
        "type": "medication_reminder",
        "reminderIds": group.ids,
        "count": len(items),
        "medications": [{"name": d.medication, "dosage": _dosage(d)} for d in items],
        "scheduledFor": group.reminders[0].scheduled_for.isoformat(),
    }
    return (
        fmt("push.multi.title", count=len(items)),
        fmt("push.multi.body", items=listed),
        data,
    )


def build_sms(contact: Contact, group: ReminderGroup, details: Dict[str, ReminderDetails]) -> str:
    items = [details[rid] for rid in group.ids]
    first_name = contact.first_name or fmt("patient.unknown")
    if len(items) == 1:
        d = items[0]
        extra = fmt("sms.single.instructions", instructions=d.instructions) if d.instructions else ""
        return fmt(
            "sms.single",
            first_name=first_name,
            medication=d.medication,
            dosage=_dosage(d),
            instructions=extra,
        )
    listed = MESSAGES["sms.item_sep"].join(
        fmt("sms.item", medication=d.medication, dosage=d.dosage) if d.dosage else d.medication
        for d in items
    )
    return fmt("sms.multi", first_name=first_name, items=listed)


class DeliveryDispatcher:
    def __init__(self, config: Any, notifier: Notifier, clock: Optional[Clock] = None):
        self.cfg = config
        self.notifier = notifier
        self.clock = clock or Clock(config.TZ)
        self.log = logging.getLogger("dosewatch.dispatcher")

    async def dispatch(self, due: Sequence[ReminderInstance]) -> DispatchReport:
        report = DispatchReport()
        if not due:
            return report
        groups = group_reminders(due, self.cfg.GROUP_WINDOW_MIN)
        report.groups = len(groups)
        for group in groups:
            try:
                await self._deliver(group, report)
            except Exception:
                report.failed_groups += 1
                self.log.exception(
                    "dispatch.group.failed " + kv(patient_id=group.patient_id, reminder_ids=group.ids)
                )
        self.log.info(
            "dispatch.done "
            + kv(
                groups=report.groups,
                notified=report.notified,
                undelivered=report.undelivered,
                skipped=report.skipped,
                failed_groups=report.failed_groups,
            )
        )
        return report

    async def _deliver(self, group: ReminderGroup, report: DispatchReport) -> None:
        contact = await contacts.get_contact(group.patient_id)
        if contact is None:
            report.skipped += len(group.reminders)
            self.log.error("dispatch.skip.no_patient " + kv(patient_id=group.patient_id, reminder_ids=group.ids))
            return

        details = await reminders.details(group.ids)
        missing = [rid for rid in group.ids if rid not in details]
        if missing:
            report.skipped += len(missing)
            self.log.error("dispatch.skip.no_prescription " + kv(reminder_ids=missing))
            group = ReminderGroup(group.patient_id, [r for r in group.reminders if r.id in details])
            if not group.reminders:
                return

        entries: List[DeliveryLogEntry] = []
        delivered = False

        if not contact.notifications_enabled:
            self.log.debug("dispatch.push.skip " + kv(patient_id=contact.id, reason="notifications disabled"))
        elif not is_valid_push_token(contact.push_token):
            self.log.debug("dispatch.push.skip " + kv(patient_id=contact.id, reason="invalid token"))
        elif not self.notifier.supports_push(contact.push_token):
            self.log.debug("dispatch.push.skip " + kv(patient_id=contact.id, reason="no transport for token"))
        else:
            ok, error = await self._push(contact, group, details)
            status = "sent" if ok else "failed"
            provider = self.notifier.push_provider_for(contact.push_token)
            entries += [
                DeliveryLogEntry(rid, "push", provider, status, error=error)
                for rid in group.ids
            ]
            delivered |= ok
            if ok:
                report.push_sent += 1
            else:
                report.push_failed += 1

        if contact.phone_number:
            res = await self._sms(contact, group, details)
            status = "sent" if res.success else "failed"
            entries += [
                DeliveryLogEntry(
                    rid,
                    "sms",
                    self.notifier.sms_provider,
                    status,
                    provider_message_id=res.provider_id,
                    error=res.error,
                )
                for rid in group.ids
            ]
            delivered |= res.success
            if res.success:
                report.sms_sent += 1
            else:
                report.sms_failed += 1

        now = self.clock.utcnow()
        await delivery_log.append(entries, now)

        if not delivered:
            report.undelivered += len(group.reminders)
            self.log.warning(
                "dispatch.undelivered " + kv(patient_id=group.patient_id, reminder_ids=group.ids, attempts=len(entries))
            )
            return

        for inst in group.reminders:
            try:
                written = await reminders.apply(rs.notify(inst, now))
            except InvalidTransition as e:
                self.log.debug("dispatch.notify.skip " + kv(reminder_id=inst.id, reason=str(e)))
                continue
            if written:
                report.notified += 1
            else:
                # confirmed or snoozed while we were sending
                self.log.debug("dispatch.notify.raced " + kv(reminder_id=inst.id))

    async def _push(
        self, contact: Contact, group: ReminderGroup, details: Dict[str, ReminderDetails]
    ) -> Tuple[bool, Optional[str]]:
        title, body, data = build_push(group, details)
        try:
            ok = await self.notifier.send_push(contact.push_token, title, body, data)
        except Exception as e:
            self.log.error("dispatch.push.error " + kv(patient_id=contact.id, error=str(e)))
            return False, str(e) or type(e).__name__
        if not ok:
            self.log.warning("dispatch.push.failed " + kv(patient_id=contact.id, reminder_ids=group.ids))
            return False, "push rejected by provider"
        self.log.info("dispatch.push.sent " + kv(patient_id=contact.id, reminder_ids=group.ids))
        return True, None

    async def _sms(
        self, contact: Contact, group: ReminderGroup, details: Dict[str, ReminderDetails]
    ) -> SmsResult:
        text = build_sms(contact, group, details)
        try:
            res = await self.notifier.send_sms(contact.phone_number, text)
        except Exception as e:
            self.log.error("dispatch.sms.error " + kv(patient_id=contact.id, error=str(e)))
            return SmsResult(False, error=str(e) or type(e).__name__)
        if res.success:
            self.log.info("dispatch.sms.sent " + kv(patient_id=contact.id, reminder_ids=group.ids))
        else:
            self.log.warning("dispatch.sms.failed " + kv(patient_id=contact.id, error=res.error))
        return res
