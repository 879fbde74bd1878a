import os
import time
import random
import logging
import functools
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

import httpx
from postgrest.exceptions import APIError
from supabase import create_client, Client

from .errors import (
    AlreadyExistsError, NotFoundError, StoreUnavailableError,
    VersionConflictError, WriteFailedError,
)
from .models import Task, UserStats

logger = logging.getLogger(__name__)

STORE_RETRY_ATTEMPTS = 3
STORE_RETRY_BASE_DELAY = 0.2  # seconds, doubled per attempt plus jitter


@lru_cache(maxsize=1)
def get_client() -> Client:
    url = os.environ["SUPABASE_URL"]
    key = os.environ["SUPABASE_SERVICE_KEY"]
    return create_client(url, key)


def _is_unique_violation(e: Exception) -> bool:
    if getattr(e, "code", None) == "23505":
        return True
    err_str = str(e).lower()
    return "duplicate" in err_str or "unique" in err_str or "23505" in err_str


def store_call(attempts: int = STORE_RETRY_ATTEMPTS, base_delay: float = STORE_RETRY_BASE_DELAY):
    """
    Retry transport failures with backoff + jitter, then give up with
    StoreUnavailableError. PostgREST errors are not retried.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except httpx.TransportError as e:
                    if attempt == attempts:
                        logger.error("%s gave up after %d attempts: %s", func.__name__, attempts, e)
                        raise StoreUnavailableError(f"{func.__name__}: {e}") from e
                    delay = base_delay * (2 ** (attempt - 1)) + random.uniform(0, base_delay)
                    logger.warning("%s attempt %d/%d failed: %s (retry in %.2fs)",
                                   func.__name__, attempt, attempts, e, delay)
                    time.sleep(delay)
                except APIError as e:
                    if _is_unique_violation(e):
                        raise AlreadyExistsError(str(e)) from e
                    raise WriteFailedError(f"{func.__name__}: {e}") from e
        return wrapper
    return decorator


# ── user_stats ────────────────────────────────────────────────────────────────

@store_call()
def get_stats_row(db: Client, user_id: str) -> dict | None:
    res = db.table("user_stats").select("*").eq("user_id", user_id).execute()
    return res.data[0] if res.data else None


@store_call()
def insert_stats(db: Client, row: dict) -> dict:
    res = db.table("user_stats").insert(row).execute()
    return res.data[0] if res.data else row


@store_call()
def update_stats_row(db: Client, user_id: str, fields: dict, expected_version: int | None = None) -> list[dict]:
    query = db.table("user_stats").update(fields).eq("user_id", user_id)
    if expected_version is not None:
        query = query.eq("version", expected_version)
    return query.execute().data or []


def reset_stats(db: Client, user_id: str) -> None:
    """Administrative zeroing, conditional on the version it read."""
    current = get_stats_row(db, user_id)
    if current is None:
        return
    version = current.get("version") or 0
    rows = update_stats_row(db, user_id, {
        "heart_points": 0,
        "total_tasks_completed": 0,
        "daily_streak": 0,
        "last_daily_task_date": None,
        "last_updated": datetime.now(timezone.utc).isoformat(),
        "version": version + 1,
    }, version)
    if not rows:
        raise VersionConflictError(f"user_stats for {user_id[:8]}... changed during reset")


# ── profiles / leaderboard ────────────────────────────────────────────────────

@store_call()
def get_profile(db: Client, user_id: str) -> dict | None:
    res = db.table("profiles").select("*").eq("user_id", user_id).execute()
    return res.data[0] if res.data else None


@store_call()
def update_profile_score(db: Client, user_id: str, score: int) -> None:
    db.table("profiles").update({"score": score}).eq("user_id", user_id).execute()


@store_call()
def get_leaderboard_rows(db: Client, limit: int) -> list[dict]:
    res = (
        db.table("profiles")
        .select("user_id, username, score, show_on_leaderboard")
        .order("score", desc=True)
        .limit(limit)
        .execute()
    )
    return res.data or []


# ── tasks ─────────────────────────────────────────────────────────────────────

@store_call()
def list_tasks(db: Client, user_id: str) -> list[Task]:
    res = db.table("tasks").select("*").eq("user_id", user_id).execute()
    return [Task.model_validate(row) for row in (res.data or [])]


@store_call()
def get_task(db: Client, task_id: str) -> Task | None:
    res = db.table("tasks").select("*").eq("id", task_id).execute()
    return Task.model_validate(res.data[0]) if res.data else None


@store_call()
def set_task_completion(db: Client, task_id: str, completed: bool, completed_at: datetime | None) -> None:
    db.table("tasks").update({
        "completed": completed,
        "last_completed_date": completed_at.isoformat() if completed_at else None,
    }).eq("id", task_id).execute()


@store_call()
def delete_user_tasks(db: Client, user_id: str) -> None:
    db.table("tasks").delete().eq("user_id", user_id).execute()


# ── Store adapters consumed by the ledger ─────────────────────────────────────

class SupabaseStatStore:
    def __init__(self, db: Client):
        self.db = db

    def get(self, user_id: str) -> UserStats | None:
        row = get_stats_row(self.db, user_id)
        return UserStats.model_validate(row) if row else None

    def create(self, stats: UserStats) -> UserStats:
        return UserStats.model_validate(insert_stats(self.db, stats.to_row()))

    def update(self, user_id: str, fields: dict[str, Any], expected_version: int) -> UserStats:
        """Conditional merge update; bumps version."""
        rows = update_stats_row(
            self.db, user_id, {**fields, "version": expected_version + 1}, expected_version
        )
        if rows:
            return UserStats.model_validate(rows[0])
        if get_stats_row(self.db, user_id) is None:
            raise NotFoundError(f"user_stats for {user_id[:8]}... no longer exists")
        raise VersionConflictError(f"user_stats for {user_id[:8]}... changed since version {expected_version}")


class SupabaseLeaderboard:
    def __init__(self, db: Client):
        self.db = db

    def set_score(self, user_id: str, score: int) -> bool:
        if get_profile(self.db, user_id) is None:
            logger.warning("No profile for %s..., leaderboard score not synced", user_id[:8])
            return False
        update_profile_score(self.db, user_id, score)
        return True


def make_stores() -> tuple[SupabaseStatStore, SupabaseLeaderboard]:
    db = get_client()
    return SupabaseStatStore(db), SupabaseLeaderboard(db)
