# dosewatch/app.py
from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from dosewatch import config as cfg
from dosewatch.adapters.notifier import build_notifier
from dosewatch.core import timez
from dosewatch.core.config_validation import validate_config
from dosewatch.core.i18n import load_overrides
from dosewatch.core.logging_utils import kv, setup_logging
from dosewatch.core.pipeline import ReminderPipeline
from dosewatch.db import session

log = logging.getLogger("dosewatch.app")


class InflightTicks:
    """Tracks running job coroutines so shutdown can let them finish."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def wrap(self, name: str, fn: Callable[[], Awaitable[Any]]) -> Callable[[], Awaitable[None]]:
        async def _run() -> None:
            task = asyncio.current_task()
            if task is not None:
                self._tasks.add(task)
            try:
                await fn()
            except Exception:
                # a failed tick must not kill the job; the next tick retries
                log.exception("job.failed " + kv(job=name))
            finally:
                if task is not None:
                    self._tasks.discard(task)

        _run.__name__ = f"tick_{name.replace('.', '_')}"
        return _run

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 30.0) -> None:
        pending = [t for t in self._tasks if not t.done() and t is not asyncio.current_task()]
        if not pending:
            return
        log.info("shutdown.drain " + kv(inflight=len(pending)))
        _, still = await asyncio.wait(pending, timeout=timeout)
        if still:
            log.warning("shutdown.drain.timeout " + kv(abandoned=len(still)))


def schedule_jobs(pipeline: ReminderPipeline, config: Any, ticks: InflightTicks) -> AsyncIOScheduler:
    """
    Register the periodic jobs. The scheduler is created and configured here, but NOT started.

      poll          every POLL_INTERVAL_S
      escalation    every ESCALATION_INTERVAL_S
      expand.daily  cron at EXPAND_AT (config.TZ), expands the STARTUP_EXPAND_DAYS after today
      cleanup       cron CLEANUP_CRON (config.TZ)
      otp.sweep     every VERIFICATION_SWEEP_MIN
    """
    sched = AsyncIOScheduler(timezone=config.TZ)
    common = dict(replace_existing=True, coalesce=True, max_instances=1)

    sched.add_job(
        ticks.wrap("poll", pipeline.poll_tick),
        trigger="interval",
        seconds=config.POLL_INTERVAL_S,
        id="poll",
        misfire_grace_time=config.POLL_INTERVAL_S,
        **common,
    )
    sched.add_job(
        ticks.wrap("escalation", pipeline.escalation_tick),
        trigger="interval",
        seconds=config.ESCALATION_INTERVAL_S,
        id="escalation",
        misfire_grace_time=config.ESCALATION_INTERVAL_S,
        **common,
    )
    at = timez.parse_hhmm(config.EXPAND_AT)
    sched.add_job(
        ticks.wrap("expand.daily", pipeline.generate_ahead),
        trigger="cron",
        hour=at.hour,
        minute=at.minute,
        id="expand.daily",
        misfire_grace_time=3600,
        **common,
    )
    sched.add_job(
        ticks.wrap("cleanup", pipeline.cleanup_stale),
        trigger="cron",
        id="cleanup",
        misfire_grace_time=3600,
        **config.CLEANUP_CRON,
        **common,
    )
    sched.add_job(
        ticks.wrap("otp.sweep", pipeline.verification_sweep),
        trigger="interval",
        minutes=getattr(config, "VERIFICATION_SWEEP_MIN", 10),
        id="otp.sweep",
        **common,
    )
    return sched


def jobs_status(sched: AsyncIOScheduler) -> List[Dict[str, Any]]:
    out = []
    for job in sched.get_jobs():
        nxt = getattr(job, "next_run_time", None)
        out.append({"id": job.id, "trigger": str(job.trigger), "next_run": nxt.isoformat() if nxt else None})
    return out


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dosewatch", description="Medication reminder pipeline")
    p.add_argument("--database-url", help="overrides DATABASE_URL / DB settings")
    p.add_argument("--init-db", action="store_true", help="create missing tables first")
    sub = p.add_subparsers(dest="command")
    sub.add_parser("run", help="run the scheduler (default)")
    sub.add_parser("generate-today", help="expand schedules for today")
    days = sub.add_parser("generate-days", help="expand schedules for the next N days")
    days.add_argument("days", type=int, nargs="?", default=cfg.STARTUP_EXPAND_DAYS)
    sub.add_parser("cleanup", help="remove stale unanswered reminders")
    sub.add_parser("relink-voice", help="attach voice messages to upcoming reminders")
    test = sub.add_parser("test-reminder", help="create a reminder due in a few seconds")
    test.add_argument("patient_id")
    test.add_argument("--delay", type=int, default=10)
    return p


async def _serve(pipeline: ReminderPipeline) -> None:
    ticks = InflightTicks()
    sched = schedule_jobs(pipeline, cfg, ticks)

    # Catch up on the coming days before the first poll
    res = await pipeline.generate_next_days()
    log.info("startup.expanded " + kv(created=res.created, skipped=res.skipped, failed=res.failed))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    sched.start()
    log.info("startup.ready " + kv(jobs=[j["id"] for j in jobs_status(sched)], tz=cfg.TIMEZONE))
    try:
        await stop.wait()
    finally:
        # stop future ticks, let the running ones finish
        sched.shutdown(wait=False)
        await ticks.drain()
        log.info("shutdown.done")


async def main(argv: Optional[List[str]] = None) -> None:
    args = _parser().parse_args(argv)
    setup_logging(cfg)
    validate_config(cfg)
    if cfg.MESSAGES_FILE:
        n = load_overrides(cfg.MESSAGES_FILE)
        log.info("messages.overrides " + kv(path=cfg.MESSAGES_FILE, keys=n))
    if args.database_url:
        session.configure(args.database_url)
    if args.init_db:
        await session.init_models()

    notifier = build_notifier(cfg)
    pipeline = ReminderPipeline(cfg, notifier)
    command = args.command or "run"
    try:
        if command == "run":
            await _serve(pipeline)
        elif command == "generate-today":
            res = await pipeline.generate_today()
            log.info("trigger.generate_today " + kv(created=res.created, skipped=res.skipped, failed=res.failed))
        elif command == "generate-days":
            res = await pipeline.generate_next_days(args.days)
            log.info("trigger.generate_days " + kv(days=args.days, created=res.created, skipped=res.skipped))
        elif command == "cleanup":
            n = await pipeline.cleanup_stale()
            log.info("trigger.cleanup " + kv(affected=n))
        elif command == "relink-voice":
            await pipeline.expander.relink_voice_messages()
        elif command == "test-reminder":
            rid = await pipeline.create_test_reminder(args.patient_id, args.delay)
            log.info("trigger.test_reminder " + kv(reminder_id=rid))
    finally:
        await notifier.aclose()
        await session.dispose()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
