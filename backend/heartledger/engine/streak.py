"""
Streak tracking: pure functions, no DB access.
"""
from datetime import date
from typing import NamedTuple


class StreakEvaluation(NamedTuple):
    streak: int
    reset_occurred: bool


def days_between(last_date: date, today: date) -> int:
    """Calendar-day difference; negative when last_date is in the future."""
    return (today - last_date).days


def evaluate_streak(
    current_streak: int,
    last_date: date | None,
    today: date,
) -> StreakEvaluation:
    """
    Decide whether a stored streak survived until today.
    Never advances the streak; only a granted daily bonus does that.
    Caller must persist the reset when reset_occurred is True.
    """
    if last_date is None:
        return StreakEvaluation(current_streak, False)

    # clock skew (last_date > today) gives a negative gap and keeps the streak
    if days_between(last_date, today) > 1:
        return StreakEvaluation(0, True)

    return StreakEvaluation(current_streak, False)
