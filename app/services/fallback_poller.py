# file: app/services/fallback_poller.py

"""
Client fallback poller.

Runs for as long as one user's session is open. It keeps a local copy of that
user's reminders, kept current by the ScheduleFeed subscription, and every
interval raises a local alert for each due reminder before writing back the
recurrence-engine result.

It can race with the server sweep on the same occurrence. Both may alert,
but the conditional write-back lets only one advancement land; the loser
refreshes its cached copy from the store.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from app.config import CLIENT_POLL_INTERVAL_SECONDS
from app.database.connection import AsyncSessionLocal
from app.models.schedule import ScheduleResponse
from app.services.notification_dispatcher import LocalAlertChannel, build_message
from app.services.recurrence import is_due, next_state
from app.services.schedule_store import (
    ScheduleFeed,
    apply_write_back,
    get_reminder,
    list_for_user,
    schedule_feed,
)

logger = logging.getLogger(__name__)


class ClientFallbackPoller:

    def __init__(self, user_id: int, local_channel: LocalAlertChannel, session_factory=None,
                 feed: ScheduleFeed = schedule_feed, interval_seconds: float = CLIENT_POLL_INTERVAL_SECONDS):
        self.user_id = user_id
        self.local_channel = local_channel
        self.session_factory = session_factory or AsyncSessionLocal
        self.feed = feed
        self.interval_seconds = interval_seconds
        self._cache: Dict[int, ScheduleResponse] = {}
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def reminders(self) -> list[ScheduleResponse]:
        return sorted(self._cache.values(), key=lambda r: (r.time, r.id))

    def pending_count(self, now: Optional[datetime] = None) -> int:
        return sum(1 for r in self._cache.values() if is_due(r, now))

    def _on_change(self, change: str, reminder: ScheduleResponse):
        if change == "removed":
            self._cache.pop(reminder.id, None)
        else:
            self._cache[reminder.id] = reminder

    async def load(self):
        """Subscribes to the user's reminder feed and loads the initial snapshot."""
        if self._unsubscribe is not None:
            return
        # Subscribe before loading so no delta is lost; deltas that arrive during the load are newer than the snapshot
        self._unsubscribe = self.feed.subscribe(self.user_id, self._on_change)
        try:
            async with self.session_factory() as session:
                for reminder in await list_for_user(session, self.user_id):
                    self._cache.setdefault(reminder.id, reminder)
        except Exception:
            self._unsubscribe()
            self._unsubscribe = None
            self._cache.clear()
            raise

    async def start(self):
        if self._task is not None:
            return
        await self.load()
        self._task = asyncio.create_task(self._run())
        logger.info("Fallback poller started for user %s with %d reminders", self.user_id, len(self._cache))

    async def stop(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Fallback poller stopped for user %s", self.user_id)
        self._cache.clear()

    async def _run(self):
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Fallback poll tick failed for user %s", self.user_id)
            await asyncio.sleep(self.interval_seconds)

    async def tick(self, now: Optional[datetime] = None) -> int:
        """Handles every cached due reminder once. Returns how many were handled."""
        now = now or datetime.now(timezone.utc)
        handled = 0
        for reminder in list(self._cache.values()):
            try:
                if not is_due(reminder, now):
                    continue
                await self._handle(reminder)
                handled += 1
            except Exception:
                logger.exception("Error handling reminder %s for user %s", reminder.id, self.user_id)
        return handled

    async def _handle(self, reminder: ScheduleResponse):
        title, body = build_message(reminder.title, reminder.time)
        try:
            await self.local_channel.deliver(reminder.id, title, body)
        except Exception:
            logger.exception("Local alert for reminder %s failed", reminder.id)

        write_back = next_state(reminder.time, reminder.recurrence)
        async with self.session_factory() as session:
            applied = await apply_write_back(session, reminder.id, reminder.time, write_back, feed=self.feed)
            if applied:
                return
            current = await get_reminder(session, reminder.id, user_id=self.user_id)
            if current is None:
                self._cache.pop(reminder.id, None)
            else:
                self._cache[reminder.id] = ScheduleResponse.model_validate(current)
