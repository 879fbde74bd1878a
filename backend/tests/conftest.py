"""
In-memory stand-ins for the Supabase stores, with failure injection.
"""
from datetime import date, timedelta

import pytest

from heartledger.errors import (
    AlreadyExistsError, NotFoundError, StoreUnavailableError,
    VersionConflictError, WriteFailedError,
)
from heartledger.ledger import LedgerSession
from heartledger.models import UserStats

USER = "5b1e7c2a-9d3f-4e8a-b6c1-2f0a9e8d7c6b"
DAY_1 = date(2026, 3, 2)


class FakeStatStore:
    def __init__(self):
        self.rows: dict[str, UserStats] = {}
        self.fail_updates = 0
        self.fail_with = WriteFailedError
        self.fail_gets = False
        self.before_update = None
        self.update_calls = 0

    def seed(self, user_id: str = USER, **fields) -> UserStats:
        stats = UserStats(user_id=user_id, **fields)
        self.rows[user_id] = stats
        return stats

    def row(self, user_id: str = USER) -> UserStats:
        return self.rows[user_id]

    def get(self, user_id):
        if self.fail_gets:
            raise StoreUnavailableError("injected read failure")
        stats = self.rows.get(user_id)
        return stats.model_copy() if stats else None

    def create(self, stats):
        if stats.user_id in self.rows:
            raise AlreadyExistsError(stats.user_id)
        self.rows[stats.user_id] = stats.model_copy()
        return stats.model_copy()

    def update(self, user_id, fields, expected_version):
        self.update_calls += 1
        if self.before_update:
            hook, self.before_update = self.before_update, None
            hook()
        if self.fail_updates:
            self.fail_updates -= 1
            raise self.fail_with("injected write failure")
        current = self.rows.get(user_id)
        if current is None:
            raise NotFoundError(user_id)
        if current.version != expected_version:
            raise VersionConflictError(user_id)
        updated = UserStats.model_validate(
            {**current.model_dump(), **fields, "version": expected_version + 1}
        )
        self.rows[user_id] = updated
        return updated.model_copy()


class FakeLeaderboard:
    def __init__(self, *user_ids: str):
        self.profiles = set(user_ids) or {USER}
        self.scores: dict[str, int] = {}
        self.fail = False
        self.calls = 0

    def set_score(self, user_id, score):
        self.calls += 1
        if self.fail:
            raise StoreUnavailableError("injected leaderboard failure")
        if user_id not in self.profiles:
            return False
        self.scores[user_id] = score
        return True


class Clock:
    def __init__(self, today: date = DAY_1):
        self.today = today

    def __call__(self) -> date:
        return self.today

    def advance(self, days: int = 1) -> None:
        self.today += timedelta(days=days)


@pytest.fixture
def store():
    return FakeStatStore()


@pytest.fixture
def board():
    return FakeLeaderboard()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def session(store, board, clock):
    return LedgerSession(USER, store, board, today=clock)
