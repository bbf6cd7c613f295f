"""
Quest generation, quest completion and streak/penalty operations.

Every operation takes the Supabase client and the caller's user id explicitly.
Day keys are the caller's local ISO date (YYYY-MM-DD).

Counter columns (stat XP, total XP, streak, penalty points) are written as
compare-and-set against the value just read, so two completions landing at the
same time both count. A conflicting write re-reads and tries again, up to
MAX_WRITE_ATTEMPTS.
"""
import logging
import random
from datetime import datetime, timezone

from .db import (
    get_profile, update_profile, get_stats, update_stats,
    get_quests, get_quest, insert_quests, update_quest,
    claim_quest_day, release_quest_day, get_active_templates,
    get_history, upsert_history,
)
from .engine.xp import (
    effective_xp, streak_multiplier, penalty_reduction,
    stat_level, stat_progress, player_level, xp_progress,
)
from .engine.quests import (
    STAT_TYPES, QuestTemplate, select_daily_templates, stat_levels_from_row,
    build_quest_rows, completion_counts, bonus_xp_earned,
)
from .engine.streak import (
    completion_percentage, is_maintained, previous_day, history_window,
    advance_streak, missed_day_outcome, redeem_penalty, is_at_risk,
)
from .errors import (
    AlreadyCompleted, NoTemplatesAvailable, ProfileNotFound,
    QuestGenerationInProgress, QuestNotFound, StatsNotFound, StorageFailure,
)
from .models import (
    CompletionResult, MissedDayResult, PlayerSummary, QuestOut, QuestSet,
    RedeemResult, StatProgress, StreakHistoryEntry, StreakInfo,
)

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 5


def _require_profile(db, user_id: str) -> dict:
    profile = get_profile(db, user_id)
    if profile is None:
        raise ProfileNotFound(user_id)
    return profile


def _require_stats(db, user_id: str) -> dict:
    stats = get_stats(db, user_id)
    if stats is None:
        raise StatsNotFound(user_id)
    return stats


def _contention(what: str) -> StorageFailure:
    return StorageFailure(f"Gave up updating {what} after {MAX_WRITE_ATTEMPTS} conflicting writes")


def _quest_set(quest_date: str, rows: list[dict], created: bool) -> QuestSet:
    return QuestSet(quest_date=quest_date, created=created, quests=[QuestOut.from_row(r) for r in rows])


# ── Quest selection ───────────────────────────────────────────────────────────

def list_daily_quests(db, user_id: str, today: str) -> QuestSet:
    return _quest_set(today, get_quests(db, user_id, today), created=False)


def generate_daily_quests(db, user_id: str, today: str, rng: random.Random | None = None) -> QuestSet:
    """Today's quests, created on the first call of the day and returned as-is afterwards."""
    existing = get_quests(db, user_id, today)
    if existing:
        return _quest_set(today, existing, created=False)

    stats = _require_stats(db, user_id)
    templates = [QuestTemplate.from_row(row) for row in get_active_templates(db)]
    if not templates:
        raise NoTemplatesAvailable()

    picks = select_daily_templates(stat_levels_from_row(stats), templates, rng)

    if not claim_quest_day(db, user_id, today):
        # Lost the race: another request owns today's set
        existing = get_quests(db, user_id, today)
        if not existing:
            raise QuestGenerationInProgress(today)
        return _quest_set(today, existing, created=False)

    try:
        inserted = insert_quests(db, build_quest_rows(user_id, today, picks))
    except Exception:
        release_quest_day(db, user_id, today)
        raise

    logger.info("Generated %d quests (%d mandatory) for %s... on %s",
                len(inserted), sum(1 for p in picks if p.is_mandatory), user_id[:8], today)
    return _quest_set(today, inserted, created=True)


# ── Progression ledger ────────────────────────────────────────────────────────

def complete_quest(
    db,
    user_id: str,
    quest_id: str,
    reflection: str | None = None,
    now: datetime | None = None,
) -> CompletionResult:
    """
    Award a quest's XP, close it, refresh its day's history entry and advance
    the streak when the day becomes maintained.

    Raises AlreadyCompleted (with the recorded result) instead of awarding twice.
    If a write fails after the quest has been closed, earlier writes are undone
    and the error is re-raised.
    """
    quest = get_quest(db, user_id, quest_id)
    if quest is None:
        raise QuestNotFound(quest_id)
    if quest.get("is_completed"):
        raise AlreadyCompleted(quest_id, _prior_result(db, user_id, quest))

    profile = _require_profile(db, user_id)
    streak = profile.get("current_streak") or 0
    penalty_points = profile.get("penalty_points") or 0
    base_xp = quest.get("xp_reward") or 0
    earned = effective_xp(base_xp, streak, penalty_points)
    stat = quest["stat_type"]
    day = str(quest["quest_date"])

    closed = update_quest(
        db, quest_id,
        {
            "is_completed": True,
            "completed_at": (now or datetime.now(timezone.utc)).isoformat(),
            "reflection": reflection,
            "xp_earned": earned,
            "penalty_applied": penalty_points > 0,
        },
        expected={"is_completed": False},
    )
    if not closed:
        fresh = get_quest(db, user_id, quest_id) or quest
        raise AlreadyCompleted(quest_id, _prior_result(db, user_id, fresh))

    undo = [lambda: update_quest(
        db, quest_id,
        {"is_completed": False, "completed_at": None, "reflection": None,
         "xp_earned": None, "penalty_applied": None},
    )]
    try:
        stat_xp = _add_stat_xp(db, user_id, stat, earned)
        undo.append(lambda: _add_stat_xp(db, user_id, stat, -earned))

        total_xp = _add_total_xp(db, user_id, earned)
        undo.append(lambda: _add_total_xp(db, user_id, -earned))

        day_fields = _record_day(db, user_id, day, streak)
        # must run after the quest is reopened, so it goes first in the list
        undo.insert(0, lambda: _record_day(db, user_id, day, streak))

        advanced, current_streak = False, streak
        if day_fields["streak_maintained"]:
            advanced, current_streak = _advance_streak(db, user_id, day)
    except Exception:
        _rollback(undo, quest_id)
        raise

    logger.info("Quest %s completed by %s...: +%d %s XP (base %d)",
                quest_id, user_id[:8], earned, stat, base_xp)

    return CompletionResult(
        quest_id=quest_id,
        stat_type=stat,
        base_xp=base_xp,
        effective_xp=earned,
        multiplier_applied=earned > base_xp,
        penalty_applied=penalty_points > 0,
        stat_xp=stat_xp,
        stat_level=stat_level(stat_xp),
        total_xp=total_xp,
        player_level=player_level(total_xp),
        completion_percentage=day_fields["completion_percentage"],
        streak_maintained=day_fields["streak_maintained"],
        streak_advanced=advanced,
        current_streak=current_streak,
    )


def _rollback(undo: list, quest_id: str) -> None:
    for step in reversed(undo):
        try:
            step()
        except Exception:
            logger.exception("Rollback step failed while undoing completion of quest %s", quest_id)


def _prior_result(db, user_id: str, quest: dict) -> CompletionResult:
    base_xp = quest.get("xp_reward") or 0
    earned = quest.get("xp_earned")
    if earned is None:
        earned = base_xp
    day = str(quest["quest_date"])
    entries = get_history(db, user_id, day, day)
    entry = entries[0] if entries else {}
    profile = get_profile(db, user_id) or {}
    return CompletionResult(
        quest_id=str(quest["id"]),
        stat_type=quest["stat_type"],
        base_xp=base_xp,
        effective_xp=earned,
        multiplier_applied=earned > base_xp,
        penalty_applied=bool(quest.get("penalty_applied")),
        completion_percentage=entry.get("completion_percentage") or 0.0,
        streak_maintained=bool(entry.get("streak_maintained")),
        current_streak=profile.get("current_streak") or 0,
    )


def _add_stat_xp(db, user_id: str, stat: str, amount: int) -> int:
    column = f"{stat}_xp"
    for _ in range(MAX_WRITE_ATTEMPTS):
        stats = _require_stats(db, user_id)
        old = stats.get(column)
        new = max((old or 0) + amount, 0)
        if update_stats(db, user_id, {column: new, stat: stat_level(new)}, expected={column: old}):
            return new
    raise _contention(column)


def _add_total_xp(db, user_id: str, amount: int) -> int:
    for _ in range(MAX_WRITE_ATTEMPTS):
        profile = _require_profile(db, user_id)
        old = profile.get("total_xp")
        new = max((old or 0) + amount, 0)
        if update_profile(db, user_id, {"total_xp": new, "player_level": player_level(new)},
                          expected={"total_xp": old}):
            return new
    raise _contention("total_xp")


def _record_day(db, user_id: str, day: str, streak: int) -> dict:
    """Recompute a day's history entry from a fresh read of all its quests."""
    quests = get_quests(db, user_id, day)
    completed, total = completion_counts(quests)
    pct = completion_percentage(completed, total)
    fields = {
        "quests_completed": completed,
        "quests_total": total,
        "completion_percentage": pct,
        "streak_maintained": is_maintained(pct),
        "xp_multiplier": streak_multiplier(streak),
        "bonus_xp_earned": bonus_xp_earned(quests),
    }
    upsert_history(db, user_id, day, fields)
    return fields


def _advance_streak(db, user_id: str, day: str) -> tuple[bool, int]:
    """(advanced, current_streak). At most one advance per day."""
    for _ in range(MAX_WRITE_ATTEMPTS):
        profile = _require_profile(db, user_id)
        updates = advance_streak(profile, day)
        if updates is None:
            return False, profile.get("current_streak") or 0
        expected = {
            "current_streak": profile.get("current_streak"),
            "last_quest_date": profile.get("last_quest_date"),
        }
        if update_profile(db, user_id, updates, expected=expected):
            logger.info("Streak advanced for %s... to %d", user_id[:8], updates["current_streak"])
            return True, updates["current_streak"]
    raise _contention("current_streak")


# ── Streak / penalty state machine ────────────────────────────────────────────

def evaluate_missed_day(db, user_id: str, today: str) -> MissedDayResult:
    """
    Settle yesterday if it was recorded but not maintained: spend a freeze
    credit, or reset the streak and add a penalty point. Safe to call any
    number of times; only yesterday is ever looked at.
    """
    yesterday = previous_day(today)
    entries = get_history(db, user_id, yesterday, yesterday)
    entry = entries[0] if entries else None

    for _ in range(MAX_WRITE_ATTEMPTS):
        profile = _require_profile(db, user_id)
        outcome = missed_day_outcome(profile, entry, yesterday)

        if outcome.action in ("none", "already_evaluated"):
            return MissedDayResult(
                evaluated_date=yesterday,
                already_evaluated=outcome.action == "already_evaluated",
                penalty_points=profile.get("penalty_points") or 0,
                streak_freeze_available=profile.get("streak_freeze_available") or 0,
            )

        expected = {
            "last_penalty_date": profile.get("last_penalty_date"),
            "last_freeze_date": profile.get("last_freeze_date"),
            "streak_freeze_available": profile.get("streak_freeze_available"),
            "penalty_points": profile.get("penalty_points"),
        }
        if update_profile(db, user_id, outcome.updates, expected=expected):
            after = {**profile, **outcome.updates}
            if outcome.action == "penalty":
                logger.info("Missed %s: streak of %d lost for %s..., penalty points now %d",
                            yesterday, outcome.streak_lost, user_id[:8], after["penalty_points"])
            else:
                logger.info("Missed %s: freeze used for %s..., %d left",
                            yesterday, user_id[:8], after["streak_freeze_available"])
            return MissedDayResult(
                evaluated_date=yesterday,
                penalty_applied=outcome.action == "penalty",
                freeze_used=outcome.action == "freeze_used",
                penalty_points=after.get("penalty_points") or 0,
                streak_freeze_available=after.get("streak_freeze_available") or 0,
                streak_lost=outcome.streak_lost,
            )
    raise _contention("missed-day evaluation")


def redeem_penalty_points(db, user_id: str) -> RedeemResult:
    """Trade a 7+ day streak for one penalty point. One point per call."""
    for _ in range(MAX_WRITE_ATTEMPTS):
        profile = _require_profile(db, user_id)
        streak = profile.get("current_streak") or 0
        updates = redeem_penalty(profile)
        if updates is None:
            return RedeemResult(redeemed=False, penalty_points=profile.get("penalty_points") or 0,
                                current_streak=streak)
        if update_profile(db, user_id, updates, expected={"penalty_points": profile.get("penalty_points")}):
            logger.info("Penalty point redeemed for %s..., %d left", user_id[:8], updates["penalty_points"])
            return RedeemResult(redeemed=True, penalty_points=updates["penalty_points"], current_streak=streak)
    raise _contention("penalty_points")


def get_streak_info(db, user_id: str, today: str, local_hour: int) -> StreakInfo:
    profile = _require_profile(db, user_id)
    start, end = history_window(today)
    history = get_history(db, user_id, start, end)

    today_entry = next((h for h in history if str(h.get("date")) == today), None)
    today_completed = bool(today_entry and today_entry.get("streak_maintained"))

    streak = profile.get("current_streak") or 0
    points = profile.get("penalty_points") or 0
    return StreakInfo(
        current_streak=streak,
        longest_streak=profile.get("longest_streak") or 0,
        multiplier=streak_multiplier(streak),
        penalty_points=points,
        penalty_reduction=penalty_reduction(points),
        streak_freeze_available=profile.get("streak_freeze_available") or 0,
        weekly_history=[StreakHistoryEntry(**{**h, "date": str(h["date"])}) for h in history],
        is_at_risk=is_at_risk(local_hour, today_completed),
        today_completed=today_completed,
    )


def get_player_summary(db, user_id: str) -> PlayerSummary:
    profile = _require_profile(db, user_id)
    stats = _require_stats(db, user_id)

    total_xp = profile.get("total_xp") or 0
    progress = xp_progress(total_xp)
    stat_rows = []
    for stat in STAT_TYPES:
        xp = stats.get(f"{stat}_xp") or 0
        stat_rows.append(StatProgress(stat=stat, xp=xp, **stat_progress(xp)))

    return PlayerSummary(
        user_id=user_id,
        display_name=profile.get("display_name"),
        total_xp=total_xp,
        player_level=progress["level"],
        xp_in_level=progress["current"],
        xp_to_next_level=progress["needed"],
        level_percentage=progress["percentage"],
        current_streak=profile.get("current_streak") or 0,
        longest_streak=profile.get("longest_streak") or 0,
        penalty_points=profile.get("penalty_points") or 0,
        streak_freeze_available=profile.get("streak_freeze_available") or 0,
        stats=stat_rows,
    )
