"""
Repeat-task reset rules: pure functions, no DB access.
"""
from datetime import datetime

from ..models import RepeatType, Task

WEEKLY_RESET_DAYS = 7


def should_reset(task: Task, now: datetime) -> bool:
    """
    A completed DAILY task reopens once its completion is not from today;
    a completed WEEKLY one after 7 full days. CUSTOM tasks never reopen.
    """
    if not task.completed or task.last_completed_date is None:
        return False

    last = task.last_completed_date
    if last.tzinfo is not None and now.tzinfo is None:
        last = last.replace(tzinfo=None)
    elif last.tzinfo is None and now.tzinfo is not None:
        last = last.replace(tzinfo=now.tzinfo)
    elif last.tzinfo is not None:
        last = last.astimezone(now.tzinfo)

    if task.repeat_type == RepeatType.DAILY:
        return last.date() != now.date()
    if task.repeat_type == RepeatType.WEEKLY:
        return (now - last).days >= WEEKLY_RESET_DAYS
    return False


def tasks_to_reset(tasks: list[Task], now: datetime) -> list[Task]:
    return [t for t in tasks if should_reset(t, now)]
