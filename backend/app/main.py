"""
Study Streak — FastAPI backend
"""
import logging
import os
from datetime import date, datetime, timezone

from fastapi import FastAPI, Header, HTTPException, Depends, Request, BackgroundTasks
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .auth import hash_password, verify_password, issue_token, decode_token, InvalidToken
from .db import (
    get_client, ping, list_users, get_user, get_user_by_email, create_user,
    update_user, delete_user, list_assignments, get_assignment,
    create_assignment, update_assignment, delete_assignment, list_overdue,
    count_assignments, count_overdue, get_streak_state, query_completions,
)
from .engine.calendar import build_calendar, calendar_window
from .engine.streak import effective_streak, to_calendar_date
from .models import Signup, Signin, UserUpdate, UserDelete, AssignmentCreate, AssignmentUpdate
from .tracker import on_task_completed, failures

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title="Study Streak API")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

DEFAULT_ORIGINS = "http://localhost:3000,http://localhost:5173"
ALLOWED_ORIGINS = [o.strip() for o in os.environ.get("ALLOWED_ORIGINS", DEFAULT_ORIGINS).split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)


def _today() -> date:
    return date.today()


def _now() -> datetime:
    return datetime.now(timezone.utc)


@app.get("/health")
def health():
    try:
        ping(get_client())
    except Exception as e:
        logger.error("Health check DB failure: %s", e)
        raise HTTPException(status_code=503, detail="DB unavailable")
    return {"status": "ok", "db": "ok", "best_effort_failures": failures.snapshot()}


# ── Auth ──────────────────────────────────────────────────────────────────────

def get_current_user(authorization: str = Header(...)) -> dict:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    token = authorization.removeprefix("Bearer ").strip()
    try:
        return decode_token(token)
    except InvalidToken as e:
        logger.info("Rejected bearer token: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")


# ── Users ─────────────────────────────────────────────────────────────────────

@app.get("/api/user/bulk")
def get_all_users():
    return list_users(get_client())


@app.post("/api/user/signup", status_code=201)
@limiter.limit("10/minute")
def signup(request: Request, body: Signup):
    db = get_client()
    if get_user_by_email(db, body.email):
        raise HTTPException(status_code=409, detail="User is already registered")
    user = create_user(db, body.name, body.email, hash_password(body.password))
    logger.info("User registered: id=%s", user["id"])
    return {"msg": "User created successfully", "token": issue_token(user), "user": user}


@app.post("/api/user/signin")
@limiter.limit("10/minute")
def signin(request: Request, body: Signin):
    db = get_client()
    user = get_user_by_email(db, body.email)
    if not user:
        raise HTTPException(status_code=400, detail="Email is not registered")
    if not verify_password(body.password, user["password"]):
        raise HTTPException(status_code=401, detail="Invalid password")
    return {"msg": "User logged in", "token": issue_token(user)}


@app.get("/api/user/me")
def get_me(current: dict = Depends(get_current_user)):
    user = get_user(get_client(), current["id"])
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"id": user["id"], "name": user["name"], "email": user["email"]}


@app.post("/api/user/update")
def update_me(body: UserUpdate, current: dict = Depends(get_current_user)):
    db = get_client()
    user = get_user(db, current["id"])
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(body.old_password, user["password"]):
        raise HTTPException(status_code=401, detail="Wrong old password")
    updated = update_user(db, user["id"], body.name, hash_password(body.password))
    return {"msg": "User updated successfully", "user": updated}


@app.delete("/api/user/delete")
def delete_me(body: UserDelete, current: dict = Depends(get_current_user)):
    db = get_client()
    user = get_user(db, current["id"])
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(body.password, user["password"]):
        raise HTTPException(status_code=401, detail="Wrong password")
    deleted = delete_user(db, user["id"])
    logger.info("User deleted: id=%s", user["id"])
    return {"msg": "User deleted successfully", "deleted_user": deleted}


# ── Assignments ───────────────────────────────────────────────────────────────

@app.get("/api/tasks/bulk")
def get_tasks(current: dict = Depends(get_current_user)):
    return {"assignments": list_assignments(get_client(), current["id"])}


@app.post("/api/tasks", status_code=201)
def create_task(body: AssignmentCreate, current: dict = Depends(get_current_user)):
    assignment = create_assignment(get_client(), current["id"], body.model_dump(mode="json"))
    return {"msg": "Assignment created", "assignment": assignment}


@app.put("/api/tasks/{task_id}")
def update_task(
    task_id: int,
    body: AssignmentUpdate,
    background_tasks: BackgroundTasks,
    current: dict = Depends(get_current_user),
):
    db = get_client()
    existing = get_assignment(db, current["id"], task_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Assignment not found or not yours")

    updated = update_assignment(db, current["id"], task_id, body.changes())
    if not updated:
        raise HTTPException(status_code=404, detail="Assignment not found or not yours")

    # Only the incomplete -> complete transition counts toward the streak.
    if body.is_completed is True and not existing.get("is_completed"):
        background_tasks.add_task(
            on_task_completed, db, current["id"], task_id, existing["title"], _today(),
        )

    return updated


@app.delete("/api/tasks/{task_id}")
def delete_task(task_id: int, current: dict = Depends(get_current_user)):
    deleted = delete_assignment(get_client(), current["id"], task_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Assignment not found")
    return {"msg": "Assignment deleted", "deleted": deleted}


# ── Dashboard ─────────────────────────────────────────────────────────────────

@app.get("/api/tasks/dashboard")
def get_dashboard(current: dict = Depends(get_current_user)):
    db = get_client()
    user_id = current["id"]
    total = count_assignments(db, user_id)
    completed = count_assignments(db, user_id, is_completed=True)
    streak = _streak_view(get_streak_state(db, user_id) or {})
    return {
        "total_tasks": total,
        "pending_tasks": total - completed,
        "completed_tasks": completed,
        "overdue_tasks": count_overdue(db, user_id, _now()),
        "current_streak": streak["current_streak"],
        "effective_streak": streak["effective_streak"],
    }


@app.get("/api/tasks/overdue")
def get_overdue(current: dict = Depends(get_current_user)):
    return list_overdue(get_client(), current["id"], _now())


@app.get("/api/tasks/streak-calendar")
def get_streak_calendar(current: dict = Depends(get_current_user)):
    """Last 7 days of completion history, oldest first."""
    today = _today()
    start, end = calendar_window(today)
    rows = query_completions(get_client(), current["id"], start, end)
    return {"calendar_data": [d.to_dict() for d in build_calendar(rows, today)]}


@app.get("/api/streak")
def get_streak(current: dict = Depends(get_current_user)):
    state = get_streak_state(get_client(), current["id"])
    if state is None:
        raise HTTPException(status_code=404, detail="User not found")
    return _streak_view(state)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _streak_view(state: dict) -> dict:
    current_streak = state.get("current_streak") or 0
    last_raw = state.get("last_activity_date")
    last = to_calendar_date(last_raw) if last_raw else None
    return {
        "current_streak": current_streak,
        "effective_streak": effective_streak(last, current_streak, _today()),
        "last_activity_date": last.isoformat() if last else None,
    }
