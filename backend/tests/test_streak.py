from datetime import date, timedelta
from heartledger.engine.streak import evaluate_streak, days_between

TODAY = date(2026, 2, 27)
YESTERDAY = TODAY - timedelta(days=1)
TWO_DAYS_AGO = TODAY - timedelta(days=2)
TOMORROW = TODAY + timedelta(days=1)


class TestEvaluateStreak:
    def test_new_user_keeps_streak(self):
        streak, reset = evaluate_streak(0, None, TODAY)
        assert streak == 0
        assert reset is False

    def test_same_day_keeps_streak(self):
        assert evaluate_streak(5, TODAY, TODAY) == (5, False)

    def test_yesterday_keeps_streak_without_advancing(self):
        assert evaluate_streak(5, YESTERDAY, TODAY) == (5, False)

    def test_missed_day_resets_to_zero(self):
        assert evaluate_streak(10, TWO_DAYS_AGO, TODAY) == (0, True)

    def test_long_gap_resets(self):
        assert evaluate_streak(3, TODAY - timedelta(days=40), TODAY) == (0, True)

    def test_reset_reported_even_when_already_zero(self):
        assert evaluate_streak(0, TWO_DAYS_AGO, TODAY) == (0, True)

    def test_clock_skew_does_not_break_streak(self):
        assert evaluate_streak(7, TOMORROW, TODAY) == (7, False)


class TestDaysBetween:
    def test_calendar_days(self):
        assert days_between(date(2026, 2, 28), date(2026, 3, 1)) == 1

    def test_future_date_is_negative(self):
        assert days_between(TOMORROW, TODAY) == -1
