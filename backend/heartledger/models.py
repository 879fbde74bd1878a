from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class RepeatType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    CUSTOM = "CUSTOM"


class UserStats(BaseModel):
    user_id: str
    heart_points: int = Field(default=0, ge=0)
    total_tasks_completed: int = Field(default=0, ge=0)
    daily_streak: int = Field(default=0, ge=0)
    last_daily_task_date: Optional[date] = None
    last_updated: Optional[datetime] = None
    version: int = 0
    model_config = {"extra": "ignore"}

    @field_validator("heart_points", "total_tasks_completed", "daily_streak", mode="before")
    @classmethod
    def null_counter_is_zero(cls, v):
        # rows written before a column existed come back as null
        return 0 if v is None else v

    @field_validator("last_daily_task_date", mode="before")
    @classmethod
    def date_only(cls, v):
        # older rows stored a full ISO timestamp
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v

    @classmethod
    def zeroed(cls, user_id: str, now: datetime) -> "UserStats":
        return cls(user_id=user_id, last_updated=now)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class Task(BaseModel):
    id: str
    user_id: str
    title: str = ""
    completed: bool = False
    repeat_type: RepeatType = RepeatType.CUSTOM
    last_completed_date: Optional[datetime] = None
    model_config = {"extra": "ignore"}


class LedgerState(BaseModel):
    heart_points: int
    total_tasks_completed: int
    daily_streak: int
    loading: bool


class AddPoints(BaseModel):
    points: int
    is_daily_task: bool = False


class SpendPoints(BaseModel):
    points: int = Field(ge=0)


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    username: str
    score: int
