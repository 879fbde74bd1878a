"""
Ledger controller: the session-scoped owner of a user's heart points,
daily streak and lifetime task counter.

Every mutation runs in the same order: read the stored record, compute the
new values, write them conditionally on the version that was read, mirror
the balance to the leaderboard, then commit to the local cache. A failed
write never reaches the cache.
"""
import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Protocol

from .engine.rewards import apply_delta, resolve_task_award
from .engine.streak import evaluate_streak
from .errors import (
    AlreadyExistsError, ErrorKind, LedgerResult, LedgerStoreError, VersionConflictError,
)
from .models import LedgerState, UserStats

logger = logging.getLogger(__name__)

MAX_CONFLICT_RETRIES = 3


class StatStore(Protocol):
    def get(self, user_id: str) -> UserStats | None: ...
    def create(self, stats: UserStats) -> UserStats: ...
    def update(self, user_id: str, fields: dict[str, Any], expected_version: int) -> UserStats: ...


class LeaderboardStore(Protocol):
    def set_score(self, user_id: str, score: int) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerSession:
    def __init__(
        self,
        user_id: str | None,
        stats: StatStore,
        leaderboard: LeaderboardStore,
        today: Callable[[], date] = date.today,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.user_id = user_id
        self.stats = stats
        self.leaderboard = leaderboard
        self._today = today
        self._now = now
        self.heart_points = 0
        self.total_tasks_completed = 0
        self.daily_streak = 0
        self.loading = False
        self._version = -1

    @property
    def state(self) -> LedgerState:
        return LedgerState(
            heart_points=self.heart_points,
            total_tasks_completed=self.total_tasks_completed,
            daily_streak=self.daily_streak,
            loading=self.loading,
        )

    def clear(self) -> None:
        """Zero the cache on sign-out."""
        self.heart_points = 0
        self.total_tasks_completed = 0
        self.daily_streak = 0
        self.loading = False
        self._version = -1

    # ── Operations ────────────────────────────────────────────────────────────

    def load(self) -> LedgerResult:
        if not self.user_id:
            return LedgerResult.failure(ErrorKind.NOT_AUTHENTICATED)

        self.loading = True
        try:
            for _ in range(MAX_CONFLICT_RETRIES):
                stats = self._read()
                _, reset = evaluate_streak(stats.daily_streak, stats.last_daily_task_date, self._today())
                if reset and stats.daily_streak:
                    try:
                        stats = self.stats.update(
                            self.user_id, {"daily_streak": 0, "last_updated": self._now().isoformat()}, stats.version
                        )
                    except VersionConflictError:
                        continue
                    logger.info("Streak reset for %s... (last daily bonus %s)",
                                self.user_id[:8], stats.last_daily_task_date)
                self._commit(stats, force=True)
                return LedgerResult.success()
            return LedgerResult.failure(ErrorKind.CONFLICT)
        except LedgerStoreError as e:
            logger.error("Error loading stats for %s...: %s", self.user_id[:8], e)
            return LedgerResult.failure(e.kind)
        finally:
            self.loading = False

    def refresh(self) -> LedgerResult:
        return self.load()

    def award(self, points: int, is_daily_task: bool = False) -> LedgerResult:
        """
        Add points (negative to take back a completion). A daily-task award
        replaces `points` with the streak bonus on the first grant of the day
        and with the flat base afterwards. The balance never drops below 0.
        """
        if not self.user_id:
            return LedgerResult.failure(ErrorKind.NOT_AUTHENTICATED)

        today = self._today()
        planned: dict[str, Any] = {}

        def plan(stats: UserStats) -> dict[str, Any]:
            award = resolve_task_award(
                points, is_daily_task, stats.daily_streak, stats.last_daily_task_date, today
            )
            new_balance = apply_delta(stats.heart_points, award.amount)
            planned.update(award=award, applied=new_balance - stats.heart_points)
            fields: dict[str, Any] = {"heart_points": new_balance}
            if award.bonus_granted:
                fields["daily_streak"] = award.streak
                fields["last_daily_task_date"] = today.isoformat()
            return fields

        written = self._guarded_write("award", plan)
        if isinstance(written, LedgerResult):
            return written

        if planned["award"].bonus_granted:
            logger.info("Daily bonus for %s...: streak %d, +%d",
                        self.user_id[:8], written.daily_streak, planned["award"].amount)
        synced = self._sync_leaderboard(written.heart_points)
        self._commit(written)
        return LedgerResult.success(amount=planned["applied"], leaderboard_synced=synced)

    def subtract(self, points: int) -> LedgerResult:
        """Spend points. Refused (falsy result, nothing written) when it would go into debt."""
        if points < 0:
            raise ValueError("points must be non-negative")
        if not self.user_id:
            return LedgerResult.failure(ErrorKind.NOT_AUTHENTICATED)

        def plan(stats: UserStats) -> dict[str, Any] | LedgerResult:
            if points > stats.heart_points:
                logger.info("Refused spend of %d for %s...: balance is %d",
                            points, self.user_id[:8], stats.heart_points)
                return LedgerResult.failure(ErrorKind.INSUFFICIENT_BALANCE)
            return {"heart_points": stats.heart_points - points}

        written = self._guarded_write("subtract", plan)
        if isinstance(written, LedgerResult):
            return written

        synced = self._sync_leaderboard(written.heart_points)
        self._commit(written)
        return LedgerResult.success(amount=-points, leaderboard_synced=synced)

    def increment_tasks_completed(self) -> LedgerResult:
        if not self.user_id:
            return LedgerResult.failure(ErrorKind.NOT_AUTHENTICATED)

        written = self._guarded_write(
            "increment_tasks_completed",
            lambda stats: {"total_tasks_completed": stats.total_tasks_completed + 1},
        )
        if isinstance(written, LedgerResult):
            return written

        self._commit(written)
        return LedgerResult.success(amount=1)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _read(self) -> UserStats:
        stats = self.stats.get(self.user_id)
        if stats is not None:
            return stats
        # a recreated record restarts at version 0
        self._version = -1
        try:
            stats = self.stats.create(UserStats.zeroed(self.user_id, self._now()))
            logger.info("Created stats record for %s...", self.user_id[:8])
        except AlreadyExistsError:
            # created by another session between our get and create
            stats = self.stats.get(self.user_id)
            if stats is None:
                raise
        return stats

    def _guarded_write(
        self,
        operation: str,
        plan: Callable[[UserStats], dict[str, Any] | LedgerResult],
    ) -> UserStats | LedgerResult:
        """
        Read, plan and conditionally write, retrying on stale reads.
        Returns the written record, or a LedgerResult when the plan refused
        or the store failed.
        """
        try:
            for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
                stats = self._read()
                fields = plan(stats)
                if isinstance(fields, LedgerResult):
                    return fields
                try:
                    return self.stats.update(
                        self.user_id, {**fields, "last_updated": self._now().isoformat()}, stats.version
                    )
                except VersionConflictError:
                    logger.warning("%s for %s... lost a concurrent write (attempt %d/%d)",
                                   operation, self.user_id[:8], attempt, MAX_CONFLICT_RETRIES)
        except LedgerStoreError as e:
            logger.error("Error in %s for %s...: %s", operation, self.user_id[:8], e)
            return LedgerResult.failure(e.kind)
        return LedgerResult.failure(ErrorKind.CONFLICT)

    def _sync_leaderboard(self, balance: int) -> bool:
        try:
            return self.leaderboard.set_score(self.user_id, balance)
        except LedgerStoreError as e:
            logger.warning("Leaderboard sync failed for %s...: %s", self.user_id[:8], e)
            return False

    def _commit(self, stats: UserStats, force: bool = False) -> None:
        # a slower concurrent call must not overwrite a newer cached record
        if not force and stats.version < self._version:
            return
        self.heart_points = stats.heart_points
        self.total_tasks_completed = stats.total_tasks_completed
        self.daily_streak = stats.daily_streak
        self._version = stats.version


SESSION_IDLE_TIMEOUT = 12 * 60 * 60  # seconds


class SessionRegistry:
    """
    One LedgerSession per signed-in user; created on sign-in, zeroed and
    dropped on sign-out or after SESSION_IDLE_TIMEOUT without use.
    """

    def __init__(
        self,
        store_factory: Callable[[], tuple[StatStore, LeaderboardStore]],
        today: Callable[[], date] = date.today,
        idle_timeout: float = SESSION_IDLE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store_factory = store_factory
        self._today = today
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: dict[str, LedgerSession] = {}
        self._last_seen: dict[str, float] = {}

    def sign_in(self, user_id: str) -> tuple[LedgerSession, LedgerResult]:
        self.evict_idle()
        session = self._sessions.get(user_id)
        if session is None:
            stats, leaderboard = self._store_factory()
            session = LedgerSession(user_id, stats, leaderboard, today=self._today)
            self._sessions[user_id] = session
        self._last_seen[user_id] = self._clock()
        return session, session.load()

    def sign_out(self, user_id: str) -> bool:
        session = self._sessions.pop(user_id, None)
        self._last_seen.pop(user_id, None)
        if session is None:
            return False
        session.clear()
        return True

    def get(self, user_id: str) -> LedgerSession | None:
        self.evict_idle()
        session = self._sessions.get(user_id)
        if session is not None:
            self._last_seen[user_id] = self._clock()
        return session

    def evict_idle(self) -> int:
        cutoff = self._clock() - self._idle_timeout
        idle = [uid for uid, seen in list(self._last_seen.items()) if seen < cutoff]
        for uid in idle:
            self.sign_out(uid)
        if idle:
            logger.info("Evicted %d idle sessions", len(idle))
        return len(idle)
