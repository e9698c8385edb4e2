# file: app/services/schedule_store.py

"""
Schedule Store and Push Token Registry access.

Every write that goes through this module is published on the ScheduleFeed so
that live per-user subscribers (the client fallback poller) see add/update/remove
deltas without re-reading the table.
"""

import logging
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.models import Schedule, User
from app.models.schedule import ScheduleCreate, ScheduleResponse
from app.services.recurrence import WriteBack, format_time

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, ScheduleResponse], None]


class ScheduleFeed:
    """In-process change feed keyed by owning user."""

    def __init__(self):
        self._listeners: Dict[int, List[ChangeListener]] = defaultdict(list)

    def subscribe(self, user_id: int, listener: ChangeListener) -> Callable[[], None]:
        self._listeners[user_id].append(listener)

        def unsubscribe():
            listeners = self._listeners.get(user_id)
            if listeners and listener in listeners:
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[user_id]

        return unsubscribe

    def subscriber_count(self, user_id: int) -> int:
        return len(self._listeners.get(user_id, []))

    def publish(self, change: str, reminder: ScheduleResponse):
        for listener in list(self._listeners.get(reminder.user_id, [])):
            try:
                listener(change, reminder)
            except Exception:
                logger.exception("Schedule feed listener failed for user %s", reminder.user_id)


schedule_feed = ScheduleFeed()


# --- Reminders ---

def _snapshots(rows) -> List[ScheduleResponse]:
    """Validates rows one at a time; a malformed row is logged and left out so it cannot sink the rest."""
    snapshots = []
    for row in rows:
        try:
            snapshots.append(ScheduleResponse.model_validate(row))
        except ValidationError as e:
            logger.error("Skipping malformed reminder %s (recurrence=%r): %s", row.id, row.recurrence, e)
    return snapshots


async def scan_undismissed(session: AsyncSession) -> List[ScheduleResponse]:
    """Cross-user scan: every reminder of every user whose dismissed flag is not set."""
    stmt = select(Schedule).where(Schedule.dismissed == False)  # noqa: E712
    result = await session.execute(stmt)
    return _snapshots(result.scalars().all())


async def get_reminder(session: AsyncSession, reminder_id: int, user_id: Optional[int] = None) -> Optional[Schedule]:
    stmt = select(Schedule).where(Schedule.id == reminder_id).execution_options(populate_existing=True)
    if user_id is not None:
        stmt = stmt.where(Schedule.user_id == user_id)
    result = await session.execute(stmt)
    return result.scalars().first()


async def list_for_user(session: AsyncSession, user_id: int) -> List[ScheduleResponse]:
    stmt = select(Schedule).where(Schedule.user_id == user_id).order_by(Schedule.time, Schedule.id)
    result = await session.execute(stmt)
    return _snapshots(result.scalars().all())


async def create_reminder(session: AsyncSession, user_id: int, data: ScheduleCreate,
                          feed: ScheduleFeed = schedule_feed) -> ScheduleResponse:
    db_schedule = Schedule(
        user_id=user_id,
        title=data.title,
        time=format_time(data.time),
        recurrence=data.recurrence,
        notified=False,
        dismissed=False,
    )
    session.add(db_schedule)
    await session.commit()
    await session.refresh(db_schedule)
    snapshot = ScheduleResponse.model_validate(db_schedule)
    feed.publish("added", snapshot)
    return snapshot


async def _set_flags(session: AsyncSession, user_id: int, reminder_id: int, feed: ScheduleFeed,
                     **values) -> Optional[ScheduleResponse]:
    db_schedule = await get_reminder(session, reminder_id, user_id=user_id)
    if db_schedule is None:
        return None
    for field, value in values.items():
        setattr(db_schedule, field, value)
    await session.commit()
    await session.refresh(db_schedule)
    snapshot = ScheduleResponse.model_validate(db_schedule)
    feed.publish("modified", snapshot)
    return snapshot


async def mark_unread(session: AsyncSession, user_id: int, reminder_id: int,
                      feed: ScheduleFeed = schedule_feed) -> Optional[ScheduleResponse]:
    return await _set_flags(session, user_id, reminder_id, feed, notified=False)


async def dismiss(session: AsyncSession, user_id: int, reminder_id: int,
                  feed: ScheduleFeed = schedule_feed) -> Optional[ScheduleResponse]:
    return await _set_flags(session, user_id, reminder_id, feed, dismissed=True)


async def apply_write_back(session: AsyncSession, reminder_id: int, observed_time: str, write_back: WriteBack,
                           feed: ScheduleFeed = schedule_feed) -> bool:
    """
    Conditional single-row update. Applies only while the row still holds the
    occurrence the caller observed and has not been dismissed in the meantime.
    Returns False when another writer got there first.
    """
    stmt = (
        update(Schedule)
        .where(
            Schedule.id == reminder_id,
            Schedule.time == observed_time,
            Schedule.dismissed == False,  # noqa: E712
        )
        .values(**write_back.as_values())
    )
    result = await session.execute(stmt)
    await session.commit()
    if result.rowcount != 1:
        logger.info("Write-back for reminder %s skipped; occurrence %s already handled", reminder_id, observed_time)
        return False

    db_schedule = await get_reminder(session, reminder_id)
    if db_schedule is not None:
        feed.publish("modified", ScheduleResponse.model_validate(db_schedule))
    return True


# --- Users / Push Token Registry ---

async def get_or_create_user(session: AsyncSession, firebase_uid: str, email: Optional[str] = None) -> User:
    result = await session.execute(select(User).where(User.firebase_uid == firebase_uid))
    user = result.scalars().first()
    if user is None:
        user = User(firebase_uid=firebase_uid, email=email, fcm_tokens=[])
        session.add(user)
        await session.commit()
        await session.refresh(user)
        logger.info("Created profile for firebase uid %s", firebase_uid)
    return user


async def get_user_tokens(session: AsyncSession, user_id: int) -> List[str]:
    user = await session.get(User, user_id)
    if user is None:
        return []
    return list(user.fcm_tokens or [])


async def add_token(session: AsyncSession, user_id: int, token: str) -> List[str]:
    """Set-union append to the user's token registry. Never overwrites existing tokens."""
    stmt = select(User).where(User.id == user_id).with_for_update()
    result = await session.execute(stmt)
    user = result.scalars().first()
    if user is None:
        raise LookupError(f"User {user_id} not found")

    tokens = list(user.fcm_tokens or [])
    if token not in tokens:
        tokens.append(token)
        # Reassign so the JSON column is flagged dirty
        user.fcm_tokens = tokens
        await session.commit()
        logger.info("Registered push token for user %s (%d total)", user_id, len(tokens))
    return tokens
