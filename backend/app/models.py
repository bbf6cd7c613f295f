from pydantic import BaseModel, Field
from typing import Optional


class CompleteQuestRequest(BaseModel):
    reflection: Optional[str] = Field(default=None, max_length=2000)
    model_config = {"extra": "ignore"}


class QuestOut(BaseModel):
    id: str
    template_id: Optional[str] = None
    quest_date: str
    title: str
    description: str = ""
    stat_type: str
    xp_reward: int
    is_mandatory: bool
    is_completed: bool = False
    completed_at: Optional[str] = None
    reflection: Optional[str] = None
    xp_earned: Optional[int] = None
    penalty_applied: Optional[bool] = None
    model_config = {"extra": "ignore"}

    @classmethod
    def from_row(cls, row: dict) -> "QuestOut":
        return cls(**{
            **row,
            "id": str(row["id"]),
            "template_id": str(row["template_id"]) if row.get("template_id") else None,
            "quest_date": str(row["quest_date"]),
            "description": row.get("description") or "",
            "completed_at": str(row["completed_at"]) if row.get("completed_at") else None,
        })


class QuestSet(BaseModel):
    quest_date: str
    created: bool
    quests: list[QuestOut]


class CompletionResult(BaseModel):
    quest_id: str
    stat_type: str
    base_xp: int
    effective_xp: int
    multiplier_applied: bool
    penalty_applied: bool
    stat_xp: Optional[int] = None
    stat_level: Optional[int] = None
    total_xp: Optional[int] = None
    player_level: Optional[int] = None
    completion_percentage: float = 0.0
    streak_maintained: bool = False
    streak_advanced: bool = False
    current_streak: int = 0


class MissedDayResult(BaseModel):
    evaluated_date: str
    penalty_applied: bool = False
    freeze_used: bool = False
    already_evaluated: bool = False
    penalty_points: int = 0
    streak_freeze_available: int = 0
    streak_lost: int = 0


class RedeemResult(BaseModel):
    redeemed: bool
    penalty_points: int
    current_streak: int


class StreakHistoryEntry(BaseModel):
    date: str
    quests_completed: int = 0
    quests_total: int = 0
    completion_percentage: float = 0.0
    streak_maintained: bool = False
    xp_multiplier: float = 1.0
    bonus_xp_earned: int = 0
    model_config = {"extra": "ignore"}


class StreakInfo(BaseModel):
    current_streak: int
    longest_streak: int
    multiplier: float
    penalty_points: int
    penalty_reduction: float
    streak_freeze_available: int
    weekly_history: list[StreakHistoryEntry]
    is_at_risk: bool
    today_completed: bool


class StatProgress(BaseModel):
    stat: str
    xp: int
    level: int
    current: int
    needed: int
    percentage: float


class PlayerSummary(BaseModel):
    user_id: str
    display_name: Optional[str] = None
    total_xp: int
    player_level: int
    xp_in_level: int
    xp_to_next_level: int
    level_percentage: float
    current_streak: int
    longest_streak: int
    penalty_points: int
    streak_freeze_available: int
    stats: list[StatProgress]
