import os
import logging
from datetime import date, datetime, timezone
from functools import lru_cache
from supabase import create_client, Client

logger = logging.getLogger(__name__)

HISTORY_KEY = "user_id,task_id,completed_date"


@lru_cache(maxsize=1)
def get_client() -> Client:
    url = os.environ["SUPABASE_URL"]
    key = os.environ["SUPABASE_SERVICE_KEY"]
    return create_client(url, key)


def ping(db: Client) -> None:
    db.table("users").select("id").limit(1).execute()


# ── Users ─────────────────────────────────────────────────────────────────────

def list_users(db: Client) -> list[dict]:
    res = db.table("users").select("name, created_at").order("id").execute()
    return res.data or []


def get_user(db: Client, user_id: int) -> dict | None:
    res = db.table("users").select("*").eq("id", user_id).execute()
    return res.data[0] if res.data else None


def get_user_by_email(db: Client, email: str) -> dict | None:
    res = db.table("users").select("*").eq("email", email).execute()
    return res.data[0] if res.data else None


def create_user(db: Client, name: str, email: str, password_hash: str) -> dict:
    res = db.table("users").insert({"name": name, "email": email, "password": password_hash}).execute()
    return _public_user(res.data[0])


def update_user(db: Client, user_id: int, name: str, password_hash: str) -> dict | None:
    res = db.table("users").update({"name": name, "password": password_hash}).eq("id", user_id).execute()
    return _public_user(res.data[0]) if res.data else None


def delete_user(db: Client, user_id: int) -> dict | None:
    # task_history and assignments go with it via ON DELETE CASCADE.
    res = db.table("users").delete().eq("id", user_id).execute()
    return _public_user(res.data[0]) if res.data else None


def _public_user(row: dict) -> dict:
    return {k: row.get(k) for k in ("id", "name", "email")}


# ── Assignments ───────────────────────────────────────────────────────────────

def list_assignments(db: Client, user_id: int) -> list[dict]:
    res = db.table("assignments").select("*").eq("user_id", user_id).order("due_date").execute()
    return res.data or []


def get_assignment(db: Client, user_id: int, task_id: int) -> dict | None:
    res = db.table("assignments").select("*").eq("id", task_id).eq("user_id", user_id).execute()
    return res.data[0] if res.data else None


def create_assignment(db: Client, user_id: int, fields: dict) -> dict:
    res = db.table("assignments").insert({"user_id": user_id, **fields}).execute()
    return res.data[0]


def update_assignment(db: Client, user_id: int, task_id: int, updates: dict) -> dict | None:
    updates = {**updates, "updated_at": datetime.now(timezone.utc).isoformat()}
    res = db.table("assignments").update(updates).eq("id", task_id).eq("user_id", user_id).execute()
    return res.data[0] if res.data else None


def delete_assignment(db: Client, user_id: int, task_id: int) -> dict | None:
    res = db.table("assignments").delete().eq("id", task_id).eq("user_id", user_id).execute()
    return res.data[0] if res.data else None


def list_overdue(db: Client, user_id: int, now: datetime) -> list[dict]:
    res = (
        db.table("assignments")
        .select("*")
        .eq("user_id", user_id)
        .eq("is_completed", False)
        .lt("due_date", now.isoformat())
        .order("due_date")
        .execute()
    )
    return res.data or []


def count_assignments(db: Client, user_id: int, is_completed: bool | None = None) -> int:
    query = db.table("assignments").select("id", count="exact").eq("user_id", user_id)
    if is_completed is not None:
        query = query.eq("is_completed", is_completed)
    return query.execute().count or 0


def count_overdue(db: Client, user_id: int, now: datetime) -> int:
    res = (
        db.table("assignments")
        .select("id", count="exact")
        .eq("user_id", user_id)
        .eq("is_completed", False)
        .lt("due_date", now.isoformat())
        .execute()
    )
    return res.count or 0


# ── Streak state ──────────────────────────────────────────────────────────────

def get_streak_state(db: Client, user_id: int) -> dict | None:
    res = db.table("users").select("current_streak, last_activity_date").eq("id", user_id).execute()
    return res.data[0] if res.data else None


def set_streak_state(
    db: Client,
    user_id: int,
    current_streak: int,
    last_activity_date: date,
    *,
    expected: dict,
) -> bool:
    """
    Compare-and-swap on the user's streak columns. Only applies if the row still
    holds `expected` (as read by get_streak_state). Returns False on a lost race.
    """
    query = (
        db.table("users")
        .update({"current_streak": current_streak, "last_activity_date": last_activity_date.isoformat()})
        .eq("id", user_id)
        .eq("current_streak", expected.get("current_streak") or 0)
    )
    if expected.get("last_activity_date") is None:
        query = query.is_("last_activity_date", "null")
    else:
        query = query.eq("last_activity_date", expected["last_activity_date"])
    res = query.execute()
    if not res.data:
        logger.debug("Streak CAS missed for user=%s (expected %s)", user_id, expected)
        return False
    return True


# ── Completion history ────────────────────────────────────────────────────────

def insert_completion_if_absent(db: Client, user_id: int, task_id: int, day: date, title: str) -> None:
    row = {"user_id": user_id, "task_id": task_id, "completed_date": day.isoformat(), "task_title": title}
    db.table("task_history").upsert(row, on_conflict=HISTORY_KEY, ignore_duplicates=True).execute()


def count_completions(db: Client, user_id: int, day: date) -> int:
    res = (
        db.table("task_history")
        .select("id", count="exact")
        .eq("user_id", user_id)
        .eq("completed_date", day.isoformat())
        .execute()
    )
    return res.count or 0


def query_completions(db: Client, user_id: int, start: date, end: date) -> list[dict]:
    res = (
        db.table("task_history")
        .select("task_id, task_title, completed_date, completed_at")
        .eq("user_id", user_id)
        .gte("completed_date", start.isoformat())
        .lte("completed_date", end.isoformat())
        .order("completed_date")
        .order("completed_at")
        .execute()
    )
    return res.data or []
