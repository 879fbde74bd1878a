"""
Task-side callers of the ledger: repeat-task reset reconciliation and the
complete/uncomplete toggle.
"""
import logging
from datetime import datetime

from supabase import Client

from .db import list_tasks, set_task_completion
from .engine.rewards import POINTS_PER_TASK
from .engine.task_reset import tasks_to_reset
from .errors import LedgerResult
from .ledger import LedgerSession
from .models import RepeatType, Task

logger = logging.getLogger(__name__)


def reconcile_tasks(db: Client, user_id: str, now: datetime) -> list[str]:
    """Reopen completed repeat tasks whose period rolled over. Points are left alone."""
    reset_ids: list[str] = []
    for task in tasks_to_reset(list_tasks(db, user_id), now):
        set_task_completion(db, task.id, False, None)
        reset_ids.append(task.id)
    if reset_ids:
        logger.info("Reopened %d repeat tasks for %s...", len(reset_ids), user_id[:8])
    return reset_ids


def toggle_task(db: Client, session: LedgerSession, task: Task, now: datetime) -> tuple[Task, LedgerResult]:
    completed = not task.completed
    completed_at = now if completed else None
    set_task_completion(db, task.id, completed, completed_at)

    if completed:
        result = session.award(POINTS_PER_TASK, is_daily_task=task.repeat_type == RepeatType.DAILY)
    else:
        result = session.award(-POINTS_PER_TASK)

    if not result:
        # points did not move, so neither may the task
        set_task_completion(db, task.id, task.completed, task.last_completed_date)
        logger.warning("Toggle of task %s rolled back: %s", task.id, result.error.value)
        return task, result

    updated = task.model_copy(update={"completed": completed, "last_completed_date": completed_at})
    if completed:
        counted = session.increment_tasks_completed()
        if not counted:
            result = counted
    return updated, result
