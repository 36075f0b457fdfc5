# dosewatch/core/confirmation.py
"""
Patient and caregiver actions on reminders.

Authorization and transition checks run for the whole batch before anything
is written. Confirming an already-confirmed reminder is a no-op success.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence

from dosewatch.core import reminder_state as rs
from dosewatch.core.logging_utils import kv
from dosewatch.core.reminder_state import (
    CONFIRMED_STATUSES,
    OPEN_STATUSES,
    Clock,
    InvalidTransition,
    ReminderInstance,
    Status,
)
from dosewatch.db import alerts, confirmations, contacts, reminders


class AuthorizationError(Exception):
    def __init__(self, actor_id: str, reminder_id: str, reason: str):
        super().__init__(f"{actor_id} may not act on reminder {reminder_id}: {reason}")
        self.actor_id = actor_id
        self.reminder_id = reminder_id


class ReminderNotFound(LookupError):
    def __init__(self, reminder_id: str):
        super().__init__(f"reminder {reminder_id} not found")
        self.reminder_id = reminder_id


@dataclass(frozen=True)
class ConfirmOutcome:
    reminder_id: str
    status: Status
    confirmed_by: Optional[str]
    confirmed_at: Optional[datetime]
    changed: bool


@dataclass(frozen=True)
class SnoozeOutcome:
    reminder_id: str
    snoozed_until: datetime


@dataclass(frozen=True)
class OfflineAction:
    """An action queued by a client while it had no connection."""

    kind: str  # 'confirm' | 'snooze'
    reminder_ids: Sequence[str]
    client_ref: Optional[str] = None


@dataclass
class ActionResult:
    action: OfflineAction
    ok: bool
    error: Optional[str] = None
    outcomes: List[Any] = field(default_factory=list)


def _outcome(inst: ReminderInstance, changed: bool) -> ConfirmOutcome:
    return ConfirmOutcome(inst.id, inst.status, inst.confirmed_by, inst.confirmed_at, changed)


class ConfirmationHandler:
    def __init__(self, config: Any, clock: Optional[Clock] = None):
        self.cfg = config
        self.clock = clock or Clock(config.TZ)
        self.roles = tuple(config.ALERTING_ROLES)
        self.log = logging.getLogger("dosewatch.confirm")

    # -- loading / checks --------------------------------------------------------------
    async def _load_owned(self, reminder_ids: Iterable[str], patient_id: str) -> List[ReminderInstance]:
        ids = list(dict.fromkeys(reminder_ids))
        found = await reminders.get_many(ids)
        out = []
        for rid in ids:
            inst = found.get(rid)
            if inst is None:
                raise ReminderNotFound(rid)
            if inst.patient_id != patient_id:
                self.log.warning("confirm.denied " + kv(actor_id=patient_id, reminder_id=rid, reason="not owner"))
                raise AuthorizationError(patient_id, rid, "not the reminder's patient")
            out.append(inst)
        return out

    # -- confirm -----------------------------------------------------------------------
    async def _confirm_one(self, inst: ReminderInstance, actor_id: str, manual: bool) -> ConfirmOutcome:
        if inst.status in CONFIRMED_STATUSES:
            return _outcome(inst, changed=False)

        now = self.clock.utcnow()
        t = rs.confirm(inst, actor_id, now, manual=manual)
        if not await reminders.apply(t):
            fresh = await reminders.get(inst.id)
            if fresh is not None and fresh.status in CONFIRMED_STATUSES:
                return _outcome(fresh, changed=False)
            raise InvalidTransition(inst.id, t.action, fresh.status if fresh else inst.status)

        kind = confirmations.CAREGIVER_MANUAL if manual else confirmations.PATIENT
        await confirmations.record(inst.id, actor_id, kind, now)
        self.log.info("confirm.done " + kv(reminder_id=inst.id, actor_id=actor_id, kind=kind))
        return _outcome(inst, changed=True)

    async def confirm(self, reminder_ids: Iterable[str], patient_id: str) -> List[ConfirmOutcome]:
        insts = await self._load_owned(reminder_ids, patient_id)
        for inst in insts:
            if inst.status not in OPEN_STATUSES and inst.status not in CONFIRMED_STATUSES:
                raise InvalidTransition(inst.id, "confirm", inst.status)
        return [await self._confirm_one(inst, patient_id, manual=False) for inst in insts]

    async def confirm_manual(self, reminder_id: str, caregiver_id: str) -> ConfirmOutcome:
        inst = await reminders.get(reminder_id)
        if inst is None:
            raise ReminderNotFound(reminder_id)
        if not await contacts.is_caregiver_of(caregiver_id, inst.patient_id, self.roles):
            self.log.warning(
                "confirm.denied " + kv(actor_id=caregiver_id, reminder_id=reminder_id, reason="no relationship")
            )
            raise AuthorizationError(caregiver_id, reminder_id, "no active caregiver relationship")
        if inst.status in CONFIRMED_STATUSES:
            return _outcome(inst, changed=False)

        outcome = await self._confirm_one(inst, caregiver_id, manual=True)
        acked = await alerts.acknowledge(reminder_id, caregiver_id, self.clock.utcnow())
        self.log.info("confirm.alerts.acknowledged " + kv(reminder_id=reminder_id, caregiver_id=caregiver_id, count=acked))
        return outcome

    # -- snooze ------------------------------------------------------------------------
    async def snooze(self, reminder_ids: Iterable[str], patient_id: str) -> List[SnoozeOutcome]:
        insts = await self._load_owned(reminder_ids, patient_id)
        for inst in insts:
            if inst.status not in OPEN_STATUSES:
                raise InvalidTransition(inst.id, "snooze", inst.status)

        out = []
        for inst in insts:
            current = inst.status
            t = rs.snooze(inst, self.clock.utcnow(), self.cfg.SNOOZE_MIN)
            if not await reminders.apply(t):
                fresh = await reminders.get(inst.id)
                raise InvalidTransition(inst.id, "snooze", fresh.status if fresh else current)
            self.log.info("snooze.done " + kv(reminder_id=inst.id, until=inst.snoozed_until.isoformat()))
            out.append(SnoozeOutcome(inst.id, inst.snoozed_until))
        return out

    # -- offline replay ----------------------------------------------------------------
    async def sync_offline(self, patient_id: str, actions: Iterable[OfflineAction]) -> List[ActionResult]:
        results = []
        for action in actions:
            try:
                if action.kind == "confirm":
                    outcomes = await self.confirm(action.reminder_ids, patient_id)
                elif action.kind == "snooze":
                    outcomes = await self.snooze(action.reminder_ids, patient_id)
                else:
                    raise ValueError(f"unknown action {action.kind!r}")
                results.append(ActionResult(action, True, outcomes=list(outcomes)))
            except (AuthorizationError, ReminderNotFound, InvalidTransition, ValueError) as e:
                self.log.warning("sync.action.rejected " + kv(patient_id=patient_id, kind=action.kind, error=str(e)))
                results.append(ActionResult(action, False, error=str(e)))
        self.log.info(
            "sync.done " + kv(patient_id=patient_id, total=len(results), ok=sum(1 for r in results if r.ok))
        )
        return results
