"""
Quest templates and daily selection logic.
"""
import random
from dataclasses import dataclass

from .xp import stat_level

STAT_TYPES: tuple[str, ...] = (
    "strength",
    "agility",
    "vitality",
    "intelligence",
    "discipline",
    "charisma",
    "wealth",
)

MANDATORY_QUESTS_PER_DAY = 4


@dataclass(frozen=True)
class QuestTemplate:
    id: str
    title: str
    description: str
    stat_type: str      # one of STAT_TYPES
    xp_reward: int

    @classmethod
    def from_row(cls, row: dict) -> "QuestTemplate":
        return cls(
            id=str(row["id"]),
            title=row["title"],
            description=row.get("description") or "",
            stat_type=row["stat_type"],
            xp_reward=int(row.get("xp_reward") or 0),
        )


@dataclass(frozen=True)
class QuestPick:
    template: QuestTemplate
    is_mandatory: bool


def stat_levels_from_row(stats: dict) -> list[tuple[str, int]]:
    """(stat, level) pairs in category order, levels derived from stat XP."""
    return [(stat, stat_level(stats.get(f"{stat}_xp") or 0)) for stat in STAT_TYPES]


def weakest_stats(stat_levels: list[tuple[str, int]], count: int = MANDATORY_QUESTS_PER_DAY) -> list[str]:
    # sorted() is stable, so equal levels keep category order
    ranked = sorted(stat_levels, key=lambda pair: pair[1])
    return [stat for stat, _ in ranked[:count]]


def select_daily_templates(
    stat_levels: list[tuple[str, int]],
    templates: list[QuestTemplate],
    rng: random.Random | None = None,
) -> list[QuestPick]:
    """
    One mandatory quest for each of the 4 weakest stats, then one bonus quest
    from anything left. Categories without an unused template are skipped;
    a template is never picked twice.
    """
    rng = rng or random.Random()
    picks: list[QuestPick] = []
    used: set[str] = set()

    for stat in weakest_stats(stat_levels):
        available = [t for t in templates if t.stat_type == stat and t.id not in used]
        if not available:
            continue
        chosen = rng.choice(available)
        picks.append(QuestPick(chosen, is_mandatory=True))
        used.add(chosen.id)

    leftovers = [t for t in templates if t.id not in used]
    if leftovers:
        picks.append(QuestPick(rng.choice(leftovers), is_mandatory=False))

    return picks


def build_quest_rows(user_id: str, quest_date: str, picks: list[QuestPick]) -> list[dict]:
    return [
        {
            "user_id": user_id,
            "template_id": pick.template.id,
            "quest_date": quest_date,
            "title": pick.template.title,
            "description": pick.template.description,
            "stat_type": pick.template.stat_type,
            "xp_reward": pick.template.xp_reward,
            "is_mandatory": pick.is_mandatory,
            "is_completed": False,
        }
        for pick in picks
    ]


def completion_counts(quests: list[dict]) -> tuple[int, int]:
    """(completed, total) across one day's quests."""
    completed = sum(1 for q in quests if q.get("is_completed"))
    return completed, len(quests)


def bonus_xp_earned(quests: list[dict]) -> int:
    """XP earned above base across the completed quests of a day."""
    return sum(
        (q.get("xp_earned") or 0) - (q.get("xp_reward") or 0)
        for q in quests
        if q.get("is_completed") and q.get("xp_earned") is not None
    )
