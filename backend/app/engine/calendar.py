"""
Streak calendar — groups completion history into a day-by-day activity view.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta

from .streak import to_calendar_date

CALENDAR_DAYS = 7


@dataclass
class CalendarDay:
    day: date
    tasks: list[dict] = field(default_factory=list)

    @property
    def has_activity(self) -> bool:
        return bool(self.tasks)

    def to_dict(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "has_activity": self.has_activity,
            "tasks": self.tasks,
        }


def calendar_window(today: date, days: int = CALENDAR_DAYS) -> tuple[date, date]:
    return today - timedelta(days=days - 1), today


def build_calendar(rows: list[dict], today: date, days: int = CALENDAR_DAYS) -> list[CalendarDay]:
    """
    rows are task_history records as returned by query_completions (already
    ordered). Rows outside the window are ignored.
    """
    start, _ = calendar_window(today, days)
    calendar = [CalendarDay(start + timedelta(days=i)) for i in range(days)]
    by_day = {entry.day: entry for entry in calendar}

    for row in rows:
        entry = by_day.get(to_calendar_date(row["completed_date"]))
        if entry is None:
            continue
        entry.tasks.append({"id": row.get("task_id"), "title": row.get("task_title")})

    return calendar
