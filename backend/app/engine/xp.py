"""
XP computation rules — pure functions, no DB access.
"""
import math

STAT_XP_PER_LEVEL = 100
MAX_STAT_LEVEL = 100
MAX_MULTIPLIER = 2.0
MIN_PENALTY_REDUCTION = 0.5


def streak_multiplier(streak: int) -> float:
    """1.0 with no streak, +0.1 per day, capped at 2.0 from day 10."""
    return min(1.0 + max(streak, 0) * 0.1, MAX_MULTIPLIER)


def penalty_reduction(penalty_points: int) -> float:
    """1.0 when clean, -0.05 per point, floored at 0.5."""
    return max(1.0 - max(penalty_points, 0) * 0.05, MIN_PENALTY_REDUCTION)


def round_half_up(value: float) -> int:
    # builtin round() is banker's rounding: round(12.5) == 12
    if value < 0:
        return -int(math.floor(-value + 0.5))
    return int(math.floor(value + 0.5))


def effective_xp(base_xp: int, streak: int, penalty_points: int) -> int:
    """
    XP actually awarded for a quest worth base_xp.
    Halves round up, so 12.5 becomes 13.
    """
    raw = max(base_xp, 0) * streak_multiplier(streak) * penalty_reduction(penalty_points)
    return round_half_up(raw)


def stat_level(xp: int) -> int:
    """level = min(floor(xp / 100) + 1, 100)"""
    return min(max(xp, 0) // STAT_XP_PER_LEVEL + 1, MAX_STAT_LEVEL)


def stat_progress(xp: int) -> dict:
    level = stat_level(xp)
    if level >= MAX_STAT_LEVEL:
        return {"level": level, "current": 0, "needed": 0, "percentage": 100.0}
    current = max(xp, 0) - (level - 1) * STAT_XP_PER_LEVEL
    return {
        "level": level,
        "current": current,
        "needed": STAT_XP_PER_LEVEL,
        "percentage": current * 100.0 / STAT_XP_PER_LEVEL,
    }


def player_level(total_xp: int) -> int:
    """level = floor(sqrt(total_xp / 50)) + 1"""
    return int(math.floor(math.sqrt(max(total_xp, 0) / 50))) + 1


def xp_for_level(level: int) -> int:
    """Minimum total XP needed to reach this player level."""
    return (max(level, 1) - 1) ** 2 * 50


def xp_progress(total_xp: int) -> dict:
    """Progress toward the next player level, for the XP bar."""
    level = player_level(total_xp)
    floor_xp = xp_for_level(level)
    needed = xp_for_level(level + 1) - floor_xp
    current = max(total_xp, 0) - floor_xp
    return {
        "level": level,
        "current": current,
        "needed": needed,
        "percentage": current * 100.0 / needed,
    }
