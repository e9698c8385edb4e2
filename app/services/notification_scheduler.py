# file: app/services/notification_scheduler.py

"""
Server sweep scheduler.

One sweep scans every non-dismissed reminder of every user, picks the due
ones and fans them out as independent tasks. Each task pushes to the owner's
devices and then writes back the recurrence-engine result. Delivery is
at-least-once: a crash between the push and the write-back fires the same
occurrence again on the next sweep.

A failed or timed-out push still advances the reminder. The write-back is
conditional on the occurrence the sweep observed, so a client poller that
handled the same occurrence first is never advanced twice.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import PUSH_TIMEOUT_SECONDS, REMINDER_TASK_TIMEOUT_SECONDS, SWEEP_INTERVAL_SECONDS
from app.database.connection import AsyncSessionLocal
from app.models.schedule import ScheduleResponse
from app.services.notification_dispatcher import DeliveryOutcome, PushChannel, build_message
from app.services.recurrence import is_due, next_state
from app.services.schedule_store import (
    ScheduleFeed,
    apply_write_back,
    get_user_tokens,
    scan_undismissed,
    schedule_feed,
)

logger = logging.getLogger(__name__)


@dataclass
class ReminderResult:
    reminder_id: int
    delivery: Optional[DeliveryOutcome] = None
    delivery_failed: bool = False
    advanced: bool = False


@dataclass
class SweepReport:
    started_at: datetime
    scanned: int = 0
    due: int = 0
    results: List[ReminderResult] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    @property
    def advanced(self) -> int:
        return sum(1 for r in self.results if r.advanced)

    @property
    def delivery_failures(self) -> int:
        return sum(1 for r in self.results if r.delivery_failed)


def _select_due(reminders: List[ScheduleResponse], now: datetime) -> List[ScheduleResponse]:
    due = []
    for reminder in reminders:
        try:
            if is_due(reminder, now):
                due.append(reminder)
        except ValueError:
            logger.error("Reminder %s has an unreadable time %r; skipping", reminder.id, reminder.time)
    return due


async def process_reminder(reminder: ScheduleResponse, session_factory, push_channel: PushChannel,
                           feed: ScheduleFeed = schedule_feed,
                           push_timeout: float = PUSH_TIMEOUT_SECONDS) -> ReminderResult:
    result = ReminderResult(reminder_id=reminder.id)
    async with session_factory() as session:
        tokens = await get_user_tokens(session, reminder.user_id)
        if not tokens:
            logger.info("No tokens for user %s; reminder %s not pushed", reminder.user_id, reminder.id)
        else:
            title, body = build_message(reminder.title, reminder.time)
            try:
                result.delivery = await asyncio.wait_for(
                    push_channel.deliver(tokens, title, body, data={"scheduleId": str(reminder.id)}),
                    timeout=push_timeout,
                )
                result.delivery_failed = result.delivery.success_count == 0
            except asyncio.TimeoutError:
                logger.warning("Push for reminder %s timed out after %ss", reminder.id, push_timeout)
                result.delivery_failed = True
            except Exception:
                logger.exception("Push for reminder %s failed", reminder.id)
                result.delivery_failed = True

        write_back = next_state(reminder.time, reminder.recurrence)
        result.advanced = await apply_write_back(session, reminder.id, reminder.time, write_back, feed=feed)
    return result


async def run_sweep(session_factory=AsyncSessionLocal, push_channel: Optional[PushChannel] = None,
                    now: Optional[datetime] = None, feed: ScheduleFeed = schedule_feed,
                    task_timeout: float = REMINDER_TASK_TIMEOUT_SECONDS,
                    push_timeout: float = PUSH_TIMEOUT_SECONDS) -> SweepReport:
    now = now or datetime.now(timezone.utc)
    push_channel = push_channel or PushChannel()
    report = SweepReport(started_at=now)
    logger.info("[%s] Running reminder sweep...", now.isoformat())

    async with session_factory() as session:
        reminders = await scan_undismissed(session)
    report.scanned = len(reminders)

    due = _select_due(reminders, now)
    report.due = len(due)
    if not due:
        logger.info(" -> No due reminders among %d scanned.", report.scanned)
        return report

    logger.info(" -> Found %d due reminders among %d scanned.", report.due, report.scanned)
    outcomes = await asyncio.gather(
        *(
            asyncio.wait_for(
                process_reminder(reminder, session_factory, push_channel, feed=feed, push_timeout=push_timeout),
                timeout=task_timeout,
            )
            for reminder in due
        ),
        return_exceptions=True,
    )

    for reminder, outcome in zip(due, outcomes):
        if isinstance(outcome, BaseException):
            logger.error("Error processing reminder %s: %r", reminder.id, outcome)
            report.failed.append(reminder.id)
        else:
            report.results.append(outcome)

    logger.info(" -> Sweep finished: %d advanced, %d delivery failures, %d errors.",
                report.advanced, report.delivery_failures, len(report.failed))
    return report


class SweepScheduler:
    """Owns the periodic sweep job. Started at process init, shut down at exit."""

    job_id = "reminder_sweep"

    def __init__(self, interval_seconds: int = SWEEP_INTERVAL_SECONDS, session_factory=None,
                 push_channel: Optional[PushChannel] = None, feed: ScheduleFeed = schedule_feed):
        self.interval_seconds = interval_seconds
        self.session_factory = session_factory or AsyncSessionLocal
        self.push_channel = push_channel or PushChannel()
        self.feed = feed
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.last_report: Optional[SweepReport] = None

    @property
    def running(self) -> bool:
        return self.scheduler.running

    async def tick(self) -> Optional[SweepReport]:
        try:
            self.last_report = await run_sweep(self.session_factory, self.push_channel, feed=self.feed)
        except Exception:
            # Swallowed here so the next interval still fires
            logger.exception("Reminder sweep tick failed")
            return None
        return self.last_report

    def start(self):
        if self.scheduler.running:
            return
        self.scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self.interval_seconds),
            id=self.job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self.scheduler.start()
        logger.info("Reminder sweep scheduled every %ss", self.interval_seconds)

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Reminder sweep stopped")
