"""
Streak and penalty tracking — pure functions, no DB access.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta

MAINTAIN_THRESHOLD_PCT = 80.0
MAX_PENALTY_POINTS = 10
REDEEM_MIN_STREAK = 7
AT_RISK_HOUR = 20
HISTORY_DAYS = 7


def completion_percentage(completed: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return completed * 100.0 / total


def is_maintained(percentage: float) -> bool:
    return percentage >= MAINTAIN_THRESHOLD_PCT


def previous_day(day: str) -> str:
    return (date.fromisoformat(day) - timedelta(days=1)).isoformat()


def history_window(today: str, days: int = HISTORY_DAYS) -> tuple[str, str]:
    """(first, last) ISO dates of the trailing window ending today."""
    end = date.fromisoformat(today)
    return (end - timedelta(days=days - 1)).isoformat(), end.isoformat()


def advance_streak(profile: dict, day: str) -> dict | None:
    """
    Profile updates for a newly maintained day, or None when the day is not
    later than the last counted one. A back-dated day never moves
    last_quest_date backwards.
    """
    last = profile.get("last_quest_date")
    if last and date.fromisoformat(str(last)[:10]) >= date.fromisoformat(day):
        return None
    new_streak = (profile.get("current_streak") or 0) + 1
    return {
        "current_streak": new_streak,
        "longest_streak": max(profile.get("longest_streak") or 0, new_streak),
        "last_quest_date": day,
    }


@dataclass
class MissedDayOutcome:
    action: str             # 'none' | 'already_evaluated' | 'freeze_used' | 'penalty'
    updates: dict = field(default_factory=dict)
    streak_lost: int = 0


def missed_day_outcome(profile: dict, entry: dict | None, yesterday: str) -> MissedDayOutcome:
    """
    Decide what yesterday's history entry costs the player.
    Only a recorded, unmaintained day is punishable; each day is settled once,
    either by a freeze credit or by a penalty point.
    """
    if entry is None or entry.get("streak_maintained"):
        return MissedDayOutcome("none")

    if yesterday in (profile.get("last_penalty_date"), profile.get("last_freeze_date")):
        return MissedDayOutcome("already_evaluated")

    freezes = profile.get("streak_freeze_available") or 0
    if freezes > 0:
        return MissedDayOutcome(
            "freeze_used",
            {"streak_freeze_available": freezes - 1, "last_freeze_date": yesterday},
        )

    points = profile.get("penalty_points") or 0
    return MissedDayOutcome(
        "penalty",
        {
            "current_streak": 0,
            "penalty_points": min(points + 1, MAX_PENALTY_POINTS),
            "last_penalty_date": yesterday,
        },
        streak_lost=profile.get("current_streak") or 0,
    )


def redeem_penalty(profile: dict) -> dict | None:
    """Remove one penalty point for a 7+ day streak; None when not eligible."""
    points = profile.get("penalty_points") or 0
    if (profile.get("current_streak") or 0) >= REDEEM_MIN_STREAK and points > 0:
        return {"penalty_points": points - 1}
    return None


def is_at_risk(local_hour: int, today_completed: bool) -> bool:
    return local_hour >= AT_RISK_HOUR and not today_completed
