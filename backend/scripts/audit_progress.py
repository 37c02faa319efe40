"""
Audit a user's progression counters against the XP transaction log.

Read-only: reports drift between user_progress and what the engine's
invariants require, so a reconciliation can be planned by hand. Checks:
  - level == floor(sqrt(xp / 100)) + 1
  - longest_streak >= current_streak
  - total_xp_earned == sum(xp_transactions.amount)

Usage:
    cd backend
    SUPABASE_URL=... SUPABASE_SERVICE_KEY=... python scripts/audit_progress.py <user_id> [<user_id> ...]

A .env file in the working directory is picked up automatically.
"""
import os
import sys

from dotenv import load_dotenv

# Add project root to path so we can import engine modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from liftquest.db import get_client
from liftquest.engine.xp import level_of

PAGE_SIZE = 1000  # Supabase row limit per request


def fetch_transaction_total(db, user_id: str) -> tuple[int, int]:
    """Return (sum of amounts, row count) over all of a user's transactions."""
    total = 0
    count = 0
    offset = 0
    while True:
        res = (
            db.table("xp_transactions")
            .select("amount")
            .eq("user_id", user_id)
            .order("id")
            .range(offset, offset + PAGE_SIZE - 1)
            .execute()
        )
        batch = res.data or []
        total += sum(row["amount"] for row in batch)
        count += len(batch)
        if len(batch) < PAGE_SIZE:
            break
        offset += PAGE_SIZE
    return total, count


def find_drift(progress: dict, transaction_total: int) -> list[str]:
    """Return human-readable invariant violations for one progress row."""
    problems = []
    xp = progress.get("xp") or 0
    level = progress.get("level") or 1
    current = progress.get("current_streak") or 0
    longest = progress.get("longest_streak") or 0
    earned = progress.get("total_xp_earned") or 0

    if level != level_of(xp):
        problems.append(f"level is {level}, xp={xp} implies {level_of(xp)}")
    if longest < current:
        problems.append(f"longest_streak {longest} < current_streak {current}")
    if earned != transaction_total:
        problems.append(f"total_xp_earned is {earned}, transactions sum to {transaction_total}")
    if xp > earned:
        problems.append(f"xp {xp} exceeds total_xp_earned {earned}")
    return problems


def run(user_id: str) -> bool:
    db = get_client()
    res = db.table("user_progress").select("*").eq("user_id", user_id).execute()
    if not res.data:
        print(f"  {user_id}: no progress row (nothing earned yet)")
        return True

    progress = res.data[0]
    total, count = fetch_transaction_total(db, user_id)
    problems = find_drift(progress, total)

    print(f"  {user_id}: xp={progress.get('xp', 0)} level={progress.get('level', 1)} "
          f"streak={progress.get('current_streak', 0)}/{progress.get('longest_streak', 0)} "
          f"transactions={count}")
    for p in problems:
        print(f"    DRIFT: {p}")
    return not problems


if __name__ == "__main__":
    load_dotenv()
    args = sys.argv[1:]
    if not args:
        print("Usage: python scripts/audit_progress.py <user_id> [<user_id> ...]")
        sys.exit(1)

    results = [run(uid) for uid in args]
    sys.exit(0 if all(results) else 2)
