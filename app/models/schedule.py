# file: app/models/schedule.py

from pydantic import BaseModel, ConfigDict, field_validator
from typing import Literal
from datetime import datetime

Recurrence = Literal["none", "daily", "weekly"]


class ScheduleCreate(BaseModel):
    title: str
    time: datetime
    recurrence: Recurrence = "none"

    @field_validator('title')
    def validate_title(cls, v):
        if not v.strip():
            raise ValueError('Title cannot be empty')
        return v.strip()


class ScheduleResponse(BaseModel):
    id: int
    user_id: int
    title: str
    time: str
    recurrence: Recurrence = "none"
    notified: bool = False
    dismissed: bool = False

    model_config = ConfigDict(from_attributes=True)


class PendingCount(BaseModel):
    pending: int


class TokenRegistration(BaseModel):
    token: str

    @field_validator('token')
    def validate_token(cls, v):
        if not v.strip():
            raise ValueError('Token cannot be empty')
        return v.strip()


class TokenRegistryResponse(BaseModel):
    tokens: list[str]
