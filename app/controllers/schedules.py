# file: controllers/schedules.py

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.database.connection import get_db
from app.database.models import User
from app.models.schedule import PendingCount, ScheduleCreate, ScheduleResponse
from app.services import schedule_store
from app.services.firebase_auth import get_current_user
from app.services.recurrence import is_due

router = APIRouter()


@router.get("/", response_model=List[ScheduleResponse])
async def get_user_schedules(
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """
    Retrieves all reminders of the current user, earliest first.
    """
    return await schedule_store.list_for_user(db, current_user.id)


@router.post("/", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule(
        schedule: ScheduleCreate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    return await schedule_store.create_reminder(db, current_user.id, schedule)


@router.get("/pending", response_model=PendingCount)
async def get_pending_count(
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """
    Number of reminders that are due and not yet notified (the bell badge).
    """
    schedules = await schedule_store.list_for_user(db, current_user.id)
    return PendingCount(pending=sum(1 for s in schedules if is_due(s)))


@router.put("/{schedule_id}/unread", response_model=ScheduleResponse)
async def mark_schedule_unread(
        schedule_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    updated = await schedule_store.mark_unread(db, current_user.id, schedule_id)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found")
    return updated


@router.put("/{schedule_id}/dismiss", response_model=ScheduleResponse)
async def dismiss_schedule(
        schedule_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """
    Permanently suppresses a reminder. Dismissed reminders are skipped by every scheduler.
    """
    updated = await schedule_store.dismiss(db, current_user.id, schedule_id)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found")
    return updated
