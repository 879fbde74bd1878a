from datetime import date, timedelta
from heartledger.engine.rewards import (
    DAILY_TASK_BASE_POINTS, POINTS_PER_TASK, STREAK_BONUS_MULTIPLIER,
    apply_delta, calculate_daily_task_points, resolve_task_award,
)

TODAY = date(2026, 2, 27)
YESTERDAY = TODAY - timedelta(days=1)


class TestConstants:
    def test_values(self):
        assert POINTS_PER_TASK == 20
        assert DAILY_TASK_BASE_POINTS == 10
        assert STREAK_BONUS_MULTIPLIER == 2


class TestCalculateDailyTaskPoints:
    def test_first_day(self):
        assert calculate_daily_task_points(1) == 12

    def test_scales_with_streak(self):
        assert calculate_daily_task_points(2) == 14
        assert calculate_daily_task_points(30) == 70

    def test_zero_streak_is_base(self):
        assert calculate_daily_task_points(0) == DAILY_TASK_BASE_POINTS


class TestApplyDelta:
    def test_adds(self):
        assert apply_delta(10, 5) == 15

    def test_clamps_at_zero(self):
        assert apply_delta(10, -20) == 0

    def test_zero_balance_negative_delta(self):
        assert apply_delta(0, -20) == 0


class TestResolveTaskAward:
    def test_regular_task_passes_points_through(self):
        award = resolve_task_award(20, False, 4, YESTERDAY, TODAY)
        assert award == (20, 4, False)

    def test_undo_passes_negative_points_through(self):
        award = resolve_task_award(-20, True, 4, YESTERDAY, TODAY)
        assert award == (-20, 4, False)

    def test_first_daily_ever(self):
        award = resolve_task_award(20, True, 0, None, TODAY)
        assert award == (12, 1, True)

    def test_daily_after_yesterday_extends_streak(self):
        award = resolve_task_award(20, True, 4, YESTERDAY, TODAY)
        assert award.streak == 5
        assert award.amount == 10 + 5 * 2
        assert award.bonus_granted

    def test_second_daily_same_day_is_flat_base(self):
        award = resolve_task_award(20, True, 5, TODAY, TODAY)
        assert award == (DAILY_TASK_BASE_POINTS, 5, False)

    def test_broken_chain_restarts_at_one(self):
        award = resolve_task_award(20, True, 9, TODAY - timedelta(days=3), TODAY)
        assert award == (12, 1, True)

    def test_future_last_date_treated_as_already_granted(self):
        award = resolve_task_award(20, True, 3, TODAY + timedelta(days=1), TODAY)
        assert award == (DAILY_TASK_BASE_POINTS, 3, False)

    def test_caller_points_ignored_for_daily(self):
        assert resolve_task_award(500, True, 0, None, TODAY).amount == 12
