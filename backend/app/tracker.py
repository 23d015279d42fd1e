"""
Completion history + daily streak bookkeeping.

Both steps are best-effort: they run after the task update has been written
and never raise. Failures are logged and counted so /health can report them.
"""
import enum
import logging
import os
import threading
from collections import Counter
from datetime import date, datetime

from .db import (
    get_streak_state, set_streak_state, count_completions,
    insert_completion_if_absent,
)
from .engine.streak import compute_next_streak, to_calendar_date

logger = logging.getLogger(__name__)


class StreakOutcome(str, enum.Enum):
    STARTED = "started"
    ADVANCED = "advanced"
    RESET = "reset"
    ALREADY_COUNTED = "already_counted"
    NO_HISTORY = "no_history"
    SAME_DAY = "same_day"
    BACKDATED = "backdated"
    USER_MISSING = "user_missing"
    CONFLICT = "conflict"
    FAILED = "failed"


class FailureCounter:
    """Thread-safe tally of swallowed failures per subsystem."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Counter[str] = Counter()

    def incr(self, subsystem: str) -> None:
        with self._lock:
            self._counts[subsystem] += 1

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()


failures = FailureCounter()


def _cas_retries() -> int:
    return max(1, int(os.environ.get("STREAK_CAS_RETRIES", "3")))


def record_completion(db, user_id: int, task_id: int, completed_date: date | datetime | str, task_title: str) -> bool:
    """Insert-if-absent into task_history. Returns False if the insert failed."""
    try:
        day = to_calendar_date(completed_date)
        insert_completion_if_absent(db, user_id, task_id, day, task_title)
        return True
    except Exception as e:
        failures.incr("history_insert")
        logger.error("History insert failed for user=%s task=%s day=%s: %s", user_id, task_id, completed_date, e)
        return False


def update_streak(db, user_id: int, completion_date: date | datetime | str) -> StreakOutcome:
    """
    Advance the user's streak for the first completion of `completion_date`.
    Must run after the completion has been recorded in task_history.
    """
    try:
        today = to_calendar_date(completion_date)
        for _ in range(_cas_retries()):
            outcome = _try_update_streak(db, user_id, today)
            if outcome is not StreakOutcome.CONFLICT:
                return outcome
    except Exception as e:
        failures.incr("streak_update")
        logger.error("Streak update failed for user=%s day=%s: %s", user_id, completion_date, e)
        return StreakOutcome.FAILED

    failures.incr("streak_update")
    logger.error("Streak update for user=%s gave up after repeated CAS conflicts", user_id)
    return StreakOutcome.CONFLICT


def _try_update_streak(db, user_id: int, today: date) -> StreakOutcome:
    completions_today = count_completions(db, user_id, today)
    if completions_today > 1:
        return StreakOutcome.ALREADY_COUNTED
    if completions_today == 0:
        logger.warning("No history row for user=%s on %s; streak left unchanged", user_id, today)
        return StreakOutcome.NO_HISTORY

    state = get_streak_state(db, user_id)
    if state is None:
        logger.warning("Streak update skipped: user=%s not found", user_id)
        return StreakOutcome.USER_MISSING

    current = state.get("current_streak") or 0
    last_raw = state.get("last_activity_date")
    last = to_calendar_date(last_raw) if last_raw else None

    new_streak = compute_next_streak(last, current, today)
    if new_streak is None:
        if last is not None and last > today:
            logger.info("Backdated completion for user=%s (%s < %s) ignored", user_id, today, last)
            return StreakOutcome.BACKDATED
        return StreakOutcome.SAME_DAY

    if not set_streak_state(db, user_id, new_streak, today, expected=state):
        return StreakOutcome.CONFLICT

    if last is None:
        outcome = StreakOutcome.STARTED
    elif (today - last).days == 1:
        outcome = StreakOutcome.ADVANCED
    else:
        outcome = StreakOutcome.RESET
    logger.info("Streak %s for user=%s: %d -> %d", outcome.value, user_id, current, new_streak)
    return outcome


def on_task_completed(db, user_id: int, task_id: int, task_title: str, completion_date: date | datetime | str) -> StreakOutcome:
    """Dedup-guarded history insert, then the streak update. Never raises."""
    record_completion(db, user_id, task_id, completion_date, task_title)
    return update_streak(db, user_id, completion_date)
