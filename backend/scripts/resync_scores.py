"""
Repair leaderboard scores that lag behind the ledger balance.

A balance write that succeeded followed by a failed leaderboard write leaves
profiles.score stale until the user's next award or spend. This rewrites
every stale score from user_stats.heart_points. Safe to run repeatedly.

Usage:
    cd backend
    SUPABASE_URL=... SUPABASE_SERVICE_KEY=... python scripts/resync_scores.py [user_id] [--dry-run]

Without a user_id every user is checked. A .env file is picked up if present.
"""
import os
import sys

from dotenv import load_dotenv

load_dotenv()

# Add project root to path so we can import the package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from heartledger.db import get_client, update_profile_score


PAGE_SIZE = 1000  # Supabase row limit per request


def fetch_all(db, table: str, columns: str, user_id: str | None = None) -> list[dict]:
    """Fetch rows from a table in pages, optionally for one user."""
    rows = []
    offset = 0
    while True:
        query = db.table(table).select(columns)
        if user_id:
            query = query.eq("user_id", user_id)
        res = query.order("user_id").range(offset, offset + PAGE_SIZE - 1).execute()
        batch = res.data or []
        rows.extend(batch)
        if len(batch) < PAGE_SIZE:
            break
        offset += PAGE_SIZE
    return rows


def find_stale_scores(stats_rows: list[dict], profile_rows: list[dict]) -> list[tuple[str, int, int]]:
    """
    Returns (user_id, current_score, balance) for every profile whose score
    differs from the ledger balance. Users without a profile are skipped.
    """
    balances = {r["user_id"]: r.get("heart_points") or 0 for r in stats_rows}
    stale = []
    for profile in profile_rows:
        uid = profile["user_id"]
        if uid not in balances:
            continue
        score = profile.get("score") or 0
        if score != balances[uid]:
            stale.append((uid, score, balances[uid]))
    return stale


def run(user_id: str | None = None, dry_run: bool = False):
    target = f"user {user_id[:8]}..." if user_id else "all users"
    print(f"\n🔍 Checking leaderboard scores for {target}\n")

    db = get_client()
    stats_rows = fetch_all(db, "user_stats", "user_id, heart_points", user_id)
    profile_rows = fetch_all(db, "profiles", "user_id, score", user_id)
    print(f"  {len(stats_rows)} stats records, {len(profile_rows)} profiles")

    stale = find_stale_scores(stats_rows, profile_rows)
    if not stale:
        print("  All scores in sync ✅")
        return

    for uid, score, balance in stale:
        print(f"    {uid[:8]}...: score {score} → {balance}")

    if dry_run:
        print(f"\n  DRY RUN: {len(stale)} scores left unchanged.")
        return

    for uid, _, balance in stale:
        update_profile_score(db, uid, balance)
    print(f"\n✅ Resynced {len(stale)} scores!\n")


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if a != "--dry-run"]
    dry = "--dry-run" in sys.argv
    run(args[0] if args else None, dry_run=dry)
