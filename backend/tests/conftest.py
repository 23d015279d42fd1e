"""
In-memory stand-in for the Supabase client, covering the query-builder calls
made by app.db. Lets tracker tests exercise real read/write sequences.
"""
import itertools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import pytest


@dataclass
class FakeResponse:
    data: list[dict]
    count: Optional[int] = None


class StorageDown(Exception):
    pass


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.filters: list[Callable[[dict], bool]] = []
        self.orders: list[tuple[str, bool]] = []
        self.want_count = False
        self.window: Optional[tuple[int, int]] = None
        self.on_conflict = ""
        self.ignore_duplicates = False

    # operations
    def select(self, columns="*", count=None):
        self.op = "select"
        self.want_count = count == "exact"
        return self

    def insert(self, row):
        self.op, self.payload = "insert", row
        return self

    def upsert(self, row, on_conflict="", ignore_duplicates=False):
        self.op, self.payload = "upsert", row
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def delete(self):
        self.op = "delete"
        return self

    # filters / modifiers
    def eq(self, col, value):
        self.filters.append(lambda r: r.get(col) == value)
        return self

    def is_(self, col, value):
        assert value == "null"
        self.filters.append(lambda r: r.get(col) is None)
        return self

    def gte(self, col, value):
        self.filters.append(lambda r: r.get(col) is not None and r[col] >= value)
        return self

    def lte(self, col, value):
        self.filters.append(lambda r: r.get(col) is not None and r[col] <= value)
        return self

    def lt(self, col, value):
        self.filters.append(lambda r: r.get(col) is not None and r[col] < value)
        return self

    def order(self, col, desc=False):
        self.orders.append((col, desc))
        return self

    def limit(self, n):
        self.window = (0, n - 1)
        return self

    def range(self, start, end):
        self.window = (start, end)
        return self

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table, self.op))
        if self.db.before_execute:
            self.db.before_execute(self)
        if (self.table, self.op) in self.db.failing:
            raise StorageDown(f"{self.op} on {self.table} failed")
        return getattr(self, f"_run_{self.op}")()

    # execution
    def _matching(self) -> list[dict]:
        return [r for r in self.db.rows(self.table) if all(f(r) for f in self.filters)]

    def _run_select(self):
        rows = self._matching()
        for col, desc in reversed(self.orders):
            rows = sorted(rows, key=lambda r: r.get(col) or "", reverse=desc)
        total = len(rows)
        if self.window:
            rows = rows[self.window[0]:self.window[1] + 1]
        return FakeResponse([dict(r) for r in rows], total if self.want_count else None)

    def _run_insert(self):
        return FakeResponse([dict(self.db.add(self.table, self.payload))])

    def _run_upsert(self):
        keys = [k for k in self.on_conflict.split(",") if k]
        for row in self.db.rows(self.table):
            if keys and all(row.get(k) == self.payload.get(k) for k in keys):
                if self.ignore_duplicates:
                    return FakeResponse([])
                row.update(self.payload)
                return FakeResponse([dict(row)])
        return self._run_insert()

    def _run_update(self):
        rows = self._matching()
        for r in rows:
            r.update(self.payload)
        return FakeResponse([dict(r) for r in rows])

    def _run_delete(self):
        rows = self._matching()
        self.db.tables[self.table] = [r for r in self.db.rows(self.table) if r not in rows]
        return FakeResponse([dict(r) for r in rows])


class FakeSupabase:
    DEFAULTS = {
        "users": {"current_streak": 0, "last_activity_date": None},
        "assignments": {"is_completed": False, "description": None, "subject": None},
    }

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []
        self.failing: set[tuple[str, str]] = set()
        self.before_execute: Optional[Callable[[FakeQuery], None]] = None
        self._ids = itertools.count(1)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list[dict]:
        return self.tables.setdefault(name, [])

    def add(self, name: str, row: dict) -> dict:
        stored = {**self.DEFAULTS.get(name, {}), "id": next(self._ids), **row}
        if name == "task_history":
            stored.setdefault("completed_at", datetime.now(timezone.utc).isoformat())
        self.rows(name).append(stored)
        return stored

    # helpers for tests
    def add_user(self, current_streak=0, last_activity_date=None, **extra) -> dict:
        return self.add("users", {
            "name": "Student", "email": f"s{len(self.rows('users'))}@example.com", "password": "x",
            "current_streak": current_streak, "last_activity_date": last_activity_date, **extra,
        })

    def user(self, user_id: int) -> dict:
        return next(r for r in self.rows("users") if r["id"] == user_id)

    def history(self, user_id: int) -> list[dict]:
        return [r for r in self.rows("task_history") if r["user_id"] == user_id]


@pytest.fixture
def fake_db():
    return FakeSupabase()
