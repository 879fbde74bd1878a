"""
Point rules: pure functions, no DB access.
"""
from datetime import date
from typing import NamedTuple

from .streak import evaluate_streak

POINTS_PER_TASK = 20
DAILY_TASK_BASE_POINTS = 10
STREAK_BONUS_MULTIPLIER = 2


class TaskAward(NamedTuple):
    amount: int
    streak: int
    bonus_granted: bool


def calculate_daily_task_points(streak_after_increment: int) -> int:
    """base + streak * multiplier"""
    return DAILY_TASK_BASE_POINTS + streak_after_increment * STREAK_BONUS_MULTIPLIER


def apply_delta(balance: int, delta: int) -> int:
    """Balance after delta, never below zero."""
    return max(0, balance + delta)


def resolve_task_award(
    points: int,
    is_daily_task: bool,
    current_streak: int,
    last_daily_task_date: date | None,
    today: date,
) -> TaskAward:
    """
    Returns (amount, new_streak, bonus_granted) for one award call.

    Non-daily awards (and daily ones with points <= 0) pass `points` through.
    The first daily award of a calendar day extends the streak and pays the
    streak bonus; later ones that day pay the flat base only.
    """
    if not is_daily_task or points <= 0:
        return TaskAward(points, current_streak, False)

    if last_daily_task_date is not None and last_daily_task_date >= today:
        return TaskAward(DAILY_TASK_BASE_POINTS, current_streak, False)

    surviving, _ = evaluate_streak(current_streak, last_daily_task_date, today)
    new_streak = surviving + 1
    return TaskAward(calculate_daily_task_points(new_streak), new_streak, True)
