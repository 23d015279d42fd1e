"""
Streak tracking — pure functions, no DB access.
"""
from datetime import date, datetime, timedelta


def to_calendar_date(value: date | datetime | str) -> date:
    """Drop any time component. Accepts a date, a datetime or an ISO string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def compute_next_streak(
    last_activity_date: date | None,
    current_streak: int,
    today: date,
) -> int | None:
    """
    Returns the new streak value, or None when the streak must not change.
    Call once per first-completion-of-the-day; caller deduplicates via history count.
    """
    if last_activity_date is None:
        return 1

    days_diff = (today - last_activity_date).days

    if days_diff == 1:
        return current_streak + 1
    if days_diff > 1:
        return 1
    # Same day, or a completion dated before the last recorded activity.
    return None


def effective_streak(
    last_activity_date: date | None,
    current_streak: int,
    today: date,
) -> int:
    """Stored streaks decay lazily; report 0 once a full day has been missed."""
    if last_activity_date is None:
        return 0
    if last_activity_date < today - timedelta(days=1):
        return 0
    return current_streak


def replay_streak(completion_dates: list[date]) -> tuple[int, date | None]:
    """Rebuild (current_streak, last_activity_date) from a full completion history."""
    streak, last = 0, None
    for day in sorted(set(completion_dates)):
        new_streak = compute_next_streak(last, streak, day)
        if new_streak is not None:
            streak, last = new_streak, day
    return streak, last
