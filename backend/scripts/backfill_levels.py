"""
Recompute every derived progression field for a user from the stored XP and
streak values: stat levels, player level, longest streak, and penalty points
clamped to [0, 10].

Safe to run multiple times (idempotent).

Usage:
    cd backend
    SUPABASE_URL=... SUPABASE_SERVICE_KEY=... python scripts/backfill_levels.py <user_id> [--dry-run]

Or with a .env file in backend/.
"""
import os
import sys

from dotenv import load_dotenv

load_dotenv()

# Add project root to path so we can import engine modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.engine.quests import STAT_TYPES
from app.engine.streak import MAX_PENALTY_POINTS
from app.engine.xp import stat_level, player_level
from app.db import get_client, get_profile, get_stats, update_profile, update_stats


def compute_stat_levels(stats: dict) -> dict:
    return {stat: stat_level(stats.get(f"{stat}_xp") or 0) for stat in STAT_TYPES}


def compute_profile_fields(profile: dict) -> dict:
    current = profile.get("current_streak") or 0
    points = profile.get("penalty_points") or 0
    return {
        "player_level": player_level(profile.get("total_xp") or 0),
        "longest_streak": max(profile.get("longest_streak") or 0, current),
        "penalty_points": min(max(points, 0), MAX_PENALTY_POINTS),
    }


def _report(label: str, current: dict, computed: dict) -> dict:
    print(f"\n  {label}:")
    changed = {}
    for k, v in computed.items():
        current_val = current.get(k)
        if v == current_val:
            print(f"    {k}: {v} ✅")
        else:
            print(f"    {k}: {v} 📈 (was {current_val})")
            changed[k] = v
    return changed


def run(user_id: str, dry_run: bool = False):
    print(f"\n🔍 Recomputing levels for user: {user_id[:8]}...\n")

    db = get_client()

    profile = get_profile(db, user_id)
    stats = get_stats(db, user_id)
    if profile is None or stats is None:
        print(f"❌ Profile or stats not found: {user_id}")
        sys.exit(1)
    print(f"  Player: {profile.get('display_name') or 'Hunter'}")

    stat_changes = _report("Stat levels", stats, compute_stat_levels(stats))
    profile_changes = _report("Profile", profile, compute_profile_fields(profile))

    if not stat_changes and not profile_changes:
        print("\n  Everything already consistent — nothing to write.")
        return

    if dry_run:
        print("\n  DRY RUN — no changes written.")
        return

    if stat_changes:
        update_stats(db, user_id, stat_changes)
    if profile_changes:
        update_profile(db, user_id, profile_changes)
    print(f"\n✅ Levels updated for {user_id[:8]}...!\n")


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if a != "--dry-run"]
    dry = "--dry-run" in sys.argv

    if not args:
        print("Usage: python scripts/backfill_levels.py <user_id> [--dry-run]")
        sys.exit(1)

    run(args[0], dry_run=dry)
