"""
Recompute a user's streak state from their task_history rows.

Streak updates are best-effort, so a failed write can leave current_streak
behind the history. This replays every completion day in order with the same
rules the live path uses. Safe to run multiple times (idempotent).

Usage:
    cd backend
    SUPABASE_URL=... SUPABASE_SERVICE_KEY=... python scripts/backfill_streak.py <user_id>

Or with a .env file:
    pip install python-dotenv  # if needed
    python scripts/backfill_streak.py <user_id> [--dry-run]
"""
import os
import sys
from datetime import date

# Load .env if present
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass

# Add project root to path so we can import engine modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.engine.streak import replay_streak, to_calendar_date
from app.db import get_client, get_user


PAGE_SIZE = 1000  # Supabase row limit per request


def fetch_completion_dates(db, user_id: int) -> list[date]:
    """Fetch every completed_date for a user in pages."""
    days: list[date] = []
    offset = 0
    while True:
        res = (
            db.table("task_history")
            .select("completed_date")
            .eq("user_id", user_id)
            .order("completed_date")
            .range(offset, offset + PAGE_SIZE - 1)
            .execute()
        )
        batch = res.data or []
        days.extend(to_calendar_date(row["completed_date"]) for row in batch)
        print(f"  fetched {len(days)} rows...", end="\r")
        if len(batch) < PAGE_SIZE:
            break
        offset += PAGE_SIZE
    print(f"  fetched {len(days)} rows total          ")
    return days


def run(user_id: int, dry_run: bool = False):
    print(f"\n🔍 Rebuilding streak for user: {user_id}\n")

    db = get_client()

    user = get_user(db, user_id)
    if not user:
        print(f"❌ User not found: {user_id}")
        sys.exit(1)
    print(f"  Name: {user['name']}")
    print(f"  Stored: current_streak={user.get('current_streak', 0)} "
          f"last_activity_date={user.get('last_activity_date')}")

    days = fetch_completion_dates(db, user_id)
    if not days:
        print("  No completions found — nothing to rebuild.")
        return

    streak, last = replay_streak(days)
    print(f"\n  Replayed from {len(set(days))} active days: "
          f"current_streak={streak} last_activity_date={last.isoformat()}")

    if dry_run:
        print("\n  DRY RUN — no changes written.")
        return

    db.table("users").update(
        {"current_streak": streak, "last_activity_date": last.isoformat()}
    ).eq("id", user_id).execute()
    print(f"\n✅ Streak updated for {user['name']}!\n")


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if a != "--dry-run"]
    dry = "--dry-run" in sys.argv

    if not args or not args[0].isdigit():
        print("Usage: python scripts/backfill_streak.py <user_id> [--dry-run]")
        sys.exit(1)

    run(int(args[0]), dry_run=dry)
