import os
import logging
from functools import lru_cache
from postgrest.exceptions import APIError
from supabase import create_client, Client

from .errors import StorageFailure

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_client() -> Client:
    url = os.environ["SUPABASE_URL"]
    key = os.environ["SUPABASE_SERVICE_KEY"]
    return create_client(url, key)


def _execute(query):
    try:
        return query.execute()
    except APIError as e:
        raise StorageFailure(e.message or str(e)) from e


def _is_unique_violation(e: Exception) -> bool:
    err_str = str(e).lower()
    code = getattr(e, "code", None)
    return code == "23505" or "duplicate" in err_str or "unique" in err_str or "23505" in err_str


def _match(query, expected: dict | None):
    """Add equality filters; a None value matches SQL NULL."""
    for column, value in (expected or {}).items():
        query = query.is_(column, "null") if value is None else query.eq(column, value)
    return query


def ping(db: Client) -> None:
    _execute(db.table("profiles").select("user_id").limit(1))


# ── Profiles ──────────────────────────────────────────────────────────────────

def get_profile(db: Client, user_id: str) -> dict | None:
    res = _execute(db.table("profiles").select("*").eq("user_id", user_id))
    return res.data[0] if res.data else None


def update_profile(db: Client, user_id: str, updates: dict, expected: dict | None = None) -> bool:
    """Returns False when no row matched user_id and every expected value."""
    query = db.table("profiles").update(updates).eq("user_id", user_id)
    res = _execute(_match(query, expected))
    return bool(res.data)


# ── Stats ─────────────────────────────────────────────────────────────────────

def get_stats(db: Client, user_id: str) -> dict | None:
    res = _execute(db.table("player_stats").select("*").eq("user_id", user_id))
    return res.data[0] if res.data else None


def update_stats(db: Client, user_id: str, updates: dict, expected: dict | None = None) -> bool:
    query = db.table("player_stats").update(updates).eq("user_id", user_id)
    res = _execute(_match(query, expected))
    return bool(res.data)


# ── Quests ────────────────────────────────────────────────────────────────────

def get_quests(db: Client, user_id: str, quest_date: str) -> list[dict]:
    res = _execute(
        db.table("daily_quests")
        .select("*")
        .eq("user_id", user_id)
        .eq("quest_date", quest_date)
        .order("is_mandatory", desc=True)
        .order("created_at")
    )
    return res.data or []


def get_quest(db: Client, user_id: str, quest_id: str) -> dict | None:
    res = _execute(
        db.table("daily_quests").select("*").eq("id", quest_id).eq("user_id", user_id)
    )
    return res.data[0] if res.data else None


def insert_quests(db: Client, rows: list[dict]) -> list[dict]:
    res = _execute(db.table("daily_quests").insert(rows))
    return res.data or []


def update_quest(db: Client, quest_id: str, updates: dict, expected: dict | None = None) -> bool:
    query = db.table("daily_quests").update(updates).eq("id", quest_id)
    res = _execute(_match(query, expected))
    return bool(res.data)


def claim_quest_day(db: Client, user_id: str, quest_date: str) -> bool:
    """
    Insert the per-day generation marker. False means another request already
    claimed this day (unique constraint on user_id, quest_date).
    """
    try:
        db.table("quest_generations").insert({"user_id": user_id, "quest_date": quest_date}).execute()
        return True
    except APIError as e:
        if _is_unique_violation(e):
            return False
        raise StorageFailure(e.message or str(e)) from e


def release_quest_day(db: Client, user_id: str, quest_date: str) -> None:
    _execute(
        db.table("quest_generations").delete().eq("user_id", user_id).eq("quest_date", quest_date)
    )


# ── Templates ─────────────────────────────────────────────────────────────────

def get_active_templates(db: Client) -> list[dict]:
    res = _execute(db.table("quest_templates").select("*").eq("is_active", True))
    return res.data or []


# ── Streak history ────────────────────────────────────────────────────────────

def get_history(db: Client, user_id: str, start: str, end: str) -> list[dict]:
    """Entries with start <= date <= end, newest first."""
    res = _execute(
        db.table("streak_history")
        .select("*")
        .eq("user_id", user_id)
        .gte("date", start)
        .lte("date", end)
        .order("date", desc=True)
    )
    return res.data or []


def upsert_history(db: Client, user_id: str, day: str, fields: dict) -> None:
    _execute(
        db.table("streak_history").upsert(
            {"user_id": user_id, "date": day, **fields}, on_conflict="user_id,date"
        )
    )
