# dosewatch/core/poller.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

from dosewatch.core.dispatcher import DeliveryDispatcher, DispatchReport
from dosewatch.core.logging_utils import kv
from dosewatch.core.reminder_state import Clock
from dosewatch.db import reminders


class DuePoller:
    """
    One tick: reminders due in [now - tolerance, now], still scheduled and not
    notified, handed to the dispatcher. The poller itself never writes; the
    dispatcher sets `notified`, so a crash in between means redelivery.
    """

    def __init__(self, config: Any, dispatcher: DeliveryDispatcher, clock: Optional[Clock] = None):
        self.cfg = config
        self.dispatcher = dispatcher
        self.clock = clock or Clock(config.TZ)
        self.log = logging.getLogger("dosewatch.poller")

    async def poll(self) -> Optional[DispatchReport]:
        now = self.clock.utcnow()
        since = now - timedelta(seconds=self.cfg.POLL_TOLERANCE_S)
        due = await reminders.due(since, now)
        if not due:
            self.log.debug("poll.empty " + kv(since=since.isoformat(), until=now.isoformat()))
            return None
        self.log.info("poll.due " + kv(count=len(due), since=since.isoformat(), until=now.isoformat()))
        return await self.dispatcher.dispatch(due)
