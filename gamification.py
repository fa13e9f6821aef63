"""
=============================================================================
GAMIFICATION.PY — Progression Engine
=============================================================================
Handles:
  - Levels (closed-form curve on total XP)
  - Quest / habit rewards (XP + ability points)
  - Streaks (consecutive periods) and their XP multiplier
  - Unlock conditions for achievements and avatars
  - Statistics for the dashboard

Everything here is PURE: no database, no clock. The caller passes "today"
and the rows it already fetched, and persists whatever comes back.
That keeps the rules testable on their own (see tests/test_gamification.py).
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Union

from models import ABILITY_TYPES


# =============================================================================
# ===================== LEVEL SYSTEM ==========================================
# =============================================================================
# Level = floor(sqrt(total_exp / 100)) + 1
# Level 1 → 0 XP, Level 2 → 100 XP, Level 3 → 400 XP, Level 10 → 8100 XP...

LEVEL_TITLES = {
    1: "Novice",
    3: "Apprentice",
    5: "Adventurer",
    10: "Veteran",
    15: "Expert",
    20: "Master",
    30: "Legend",
    50: "Mythic",
}


def get_level_title(level: int) -> str:
    """Title for a level"""
    title = "Novice"
    for lvl, name in sorted(LEVEL_TITLES.items()):
        if level >= lvl:
            title = name
    return title


def calculate_level(total_exp: int) -> int:
    """Level reached with the given total XP"""
    # isqrt(x // 100) == floor(sqrt(x / 100)) for integers, without float drift
    return math.isqrt(max(int(total_exp), 0) // 100) + 1


def exp_required_for_level(level: int) -> int:
    """Total XP at which a level starts"""
    return (level - 1) ** 2 * 100


def exp_to_next_level(level: int) -> int:
    """XP between the start of a level and the start of the next one"""
    return exp_required_for_level(level + 1) - exp_required_for_level(level)


def get_level_info(total_exp: int) -> dict:
    """Everything the profile screen shows about the level"""
    level = calculate_level(total_exp)
    floor_exp = exp_required_for_level(level)
    span = exp_to_next_level(level)
    current = max(int(total_exp), 0) - floor_exp

    return {
        "level": level,
        "total_exp": total_exp,
        "current_exp": current,
        "exp_to_next_level": span,
        "exp_for_current_level": floor_exp,
        "progress": round(current / span * 100, 1),
        "title": get_level_title(level),
    }


def check_level_up(old_exp: int, new_exp: int) -> dict:
    """Compares the level before and after an XP change"""
    old_level = calculate_level(old_exp)
    new_level = calculate_level(new_exp)
    return {
        "leveled_up": new_level > old_level,
        "old_level": old_level,
        "new_level": new_level,
        "levels_gained": new_level - old_level,
    }


# =============================================================================
# ===================== REWARDS ===============================================
# =============================================================================

DIFFICULTY_EXP_REWARDS = {
    "easy": 10,
    "medium": 25,
    "hard": 50,
}

ABILITY_BONUS_RATIO = 0.5
# ability points = half of the base XP, rounded down

HABIT_DIFFICULTY = "easy"


@dataclass(frozen=True)
class Reward:
    exp: int
    ability: int


def calculate_quest_reward(difficulty: str, ability_type: Optional[str] = None) -> Reward:
    """
    XP and ability points for finishing a quest.

    The ability type does not change the amount; it only says which stat
    receives the points.
    """
    if difficulty not in DIFFICULTY_EXP_REWARDS:
        raise ValueError(f"Unknown difficulty: {difficulty!r}")
    base_exp = DIFFICULTY_EXP_REWARDS[difficulty]
    return Reward(exp=base_exp, ability=math.floor(base_exp * ABILITY_BONUS_RATIO))


def calculate_habit_reward(streak: int) -> Reward:
    """Habits pay like an easy quest, boosted by the streak they extend"""
    base = calculate_quest_reward(HABIT_DIFFICULTY)
    return Reward(
        exp=apply_streak_bonus(base.exp, streak),
        ability=apply_streak_bonus(base.ability, streak),
    )


def recommended_difficulty(level: int) -> str:
    if level >= 20:
        return "hard"
    if level >= 10:
        return "medium"
    return "easy"


ABILITY_RANKS = [
    (500, "S"),
    (300, "A"),
    (150, "B"),
    (50, "C"),
]


def ability_rank(value: int) -> str:
    for minimum, rank in ABILITY_RANKS:
        if value >= minimum:
            return rank
    return "D"


def total_ability_score(abilities: dict) -> int:
    return sum(abilities.get(name, 0) for name in ABILITY_TYPES)


# =============================================================================
# ===================== STREAKS ===============================================
# =============================================================================

STREAK_MULTIPLIERS = {
    3: 1.1,    # 3+ → x1.1
    7: 1.2,    # 7+ → x1.2
    14: 1.5,   # 14+ → x1.5
    30: 2.0,   # 30+ → x2
}


def streak_bonus(streak: int) -> float:
    """XP multiplier for a streak length"""
    multiplier = 1.0
    for days, mult in sorted(STREAK_MULTIPLIERS.items()):
        if streak >= days:
            multiplier = mult
    return multiplier


def apply_streak_bonus(amount: int, streak: int) -> int:
    return math.floor(amount * streak_bonus(streak))


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def already_completed(frequency: str, last_completed: Optional[date], today: date) -> bool:
    """
    True when the current period was already credited.

    daily  → same calendar day
    weekly → same ISO week (Monday to Sunday)
    """
    if last_completed is None:
        return False
    if frequency == "weekly":
        return _week_start(last_completed) == _week_start(today)
    return last_completed == today


def next_streak(frequency: str, streak_count: int, last_completed: Optional[date], today: date) -> int:
    """
    Streak after completing the habit today.

    It grows by one only when the previous credit was in the period right
    before this one (yesterday, or last week). Otherwise it starts again at 1.
    """
    if last_completed is None:
        return 1
    if frequency == "weekly":
        previous = _week_start(today) - timedelta(days=7)
        consecutive = _week_start(last_completed) == previous
    else:
        consecutive = last_completed == today - timedelta(days=1)
    return streak_count + 1 if consecutive else 1


# =============================================================================
# ===================== UNLOCK CONDITIONS =====================================
# =============================================================================
# One small class per condition kind. evaluate_condition() dispatches on the
# class and fails loudly if a new kind is added without a branch.

@dataclass(frozen=True)
class LevelCondition:
    threshold: int


@dataclass(frozen=True)
class AbilityCondition:
    ability: str
    threshold: int


@dataclass(frozen=True)
class TotalExpCondition:
    threshold: int


@dataclass(frozen=True)
class AchievementCondition:
    achievement_id: str
    threshold: int = 1


@dataclass(frozen=True)
class QuestCountCondition:
    threshold: int


@dataclass(frozen=True)
class HabitCompletionCondition:
    threshold: int


@dataclass(frozen=True)
class MaxStreakCondition:
    threshold: int


Condition = Union[
    LevelCondition, AbilityCondition, TotalExpCondition, AchievementCondition,
    QuestCountCondition, HabitCompletionCondition, MaxStreakCondition,
]


@dataclass
class StatSnapshot:
    """What the evaluator knows about a user at one point in time"""
    level: int = 1
    total_exp: int = 0
    abilities: dict = field(default_factory=dict)
    completed_quests: int = 0
    habit_completions: int = 0
    max_streak: int = 0
    achievements: frozenset = frozenset()


@dataclass(frozen=True)
class UnlockStatus:
    satisfied: bool
    progress: float


def build_condition(
    condition_type: str,
    threshold: int,
    ability: Optional[str] = None,
    achievement_id: Optional[str] = None,
) -> Condition:
    """Turns the columns stored in the catalogs into a condition object"""
    if condition_type == "level":
        return LevelCondition(threshold)
    if condition_type == "ability":
        if ability not in ABILITY_TYPES:
            raise ValueError(f"Ability condition needs a valid ability, got {ability!r}")
        return AbilityCondition(ability, threshold)
    if condition_type == "total_exp":
        return TotalExpCondition(threshold)
    if condition_type == "achievement":
        if not achievement_id:
            raise ValueError("Achievement condition needs an achievement id")
        return AchievementCondition(achievement_id, threshold or 1)
    if condition_type == "quest_count":
        return QuestCountCondition(threshold)
    if condition_type == "habit_complete":
        return HabitCompletionCondition(threshold)
    if condition_type == "max_streak":
        return MaxStreakCondition(threshold)
    raise ValueError(f"Unknown condition type: {condition_type!r}")


def condition_current_value(condition: Condition, snapshot: StatSnapshot) -> int:
    if isinstance(condition, LevelCondition):
        return snapshot.level
    if isinstance(condition, AbilityCondition):
        return snapshot.abilities.get(condition.ability, 0)
    if isinstance(condition, TotalExpCondition):
        return snapshot.total_exp
    if isinstance(condition, AchievementCondition):
        return 1 if condition.achievement_id in snapshot.achievements else 0
    if isinstance(condition, QuestCountCondition):
        return snapshot.completed_quests
    if isinstance(condition, HabitCompletionCondition):
        return snapshot.habit_completions
    if isinstance(condition, MaxStreakCondition):
        return snapshot.max_streak
    raise TypeError(f"Unsupported condition: {condition!r}")


def _percentage(current: float, threshold: float) -> float:
    if threshold <= 0:
        return 100.0
    return min(100.0, max(0.0, current / threshold * 100))


def evaluate_condition(condition: Condition, snapshot: StatSnapshot) -> UnlockStatus:
    """Is the condition met, and how far along is the user (0-100)?"""
    current = condition_current_value(condition, snapshot)
    return UnlockStatus(
        satisfied=current >= condition.threshold,
        progress=round(_percentage(current, condition.threshold), 1),
    )


def progress_text(condition: Condition, snapshot: StatSnapshot) -> str:
    current = condition_current_value(condition, snapshot)
    target = condition.threshold
    if isinstance(condition, LevelCondition):
        return f"Level {current}/{target}"
    if isinstance(condition, AbilityCondition):
        return f"{current}/{target} {condition.ability}"
    if isinstance(condition, TotalExpCondition):
        return f"{current}/{target} XP"
    if isinstance(condition, AchievementCondition):
        return f"Achievement '{condition.achievement_id}' {'unlocked' if current else 'locked'}"
    if isinstance(condition, QuestCountCondition):
        return f"{current}/{target} quests"
    if isinstance(condition, HabitCompletionCondition):
        return f"{current}/{target} habits"
    if isinstance(condition, MaxStreakCondition):
        return f"{current}/{target} in a row"
    raise TypeError(f"Unsupported condition: {condition!r}")


# ── Avatars ──

def avatar_condition(avatar) -> Condition:
    return build_condition(
        avatar.condition_type, avatar.condition_value,
        ability=avatar.ability_type, achievement_id=avatar.condition_achievement,
    )


def avatar_unlock_status(avatar, snapshot: StatSnapshot) -> UnlockStatus:
    """
    Avatars have two gates: a minimum level, then their own condition.
    While the level gate is closed the progress tracks the level only.
    """
    if snapshot.level < avatar.level_required:
        return UnlockStatus(
            satisfied=False,
            progress=round(_percentage(snapshot.level, avatar.level_required), 1),
        )
    return evaluate_condition(avatar_condition(avatar), snapshot)


RARITY_ORDER = {"common": 1, "rare": 2, "epic": 3, "legendary": 4, "mythic": 5}


def sort_avatars(avatars: list, sort_by: str = "rarity") -> list:
    if sort_by == "level":
        return sorted(avatars, key=lambda a: a.level_required)
    if sort_by == "name":
        return sorted(avatars, key=lambda a: a.name)
    return sorted(avatars, key=lambda a: RARITY_ORDER.get(a.rarity, 0))


def recommended_avatar(avatars: list, unlocked_ids: set, snapshot: StatSnapshot):
    """The locked avatar the user is closest to, or None"""
    best = None
    best_progress = 0.0
    for avatar in avatars:
        if avatar.id in unlocked_ids:
            continue
        progress = avatar_unlock_status(avatar, snapshot).progress
        if progress > best_progress:
            best, best_progress = avatar, progress
    return best


def collection_stats(avatars: list, unlocked_ids: set) -> dict:
    total = len(avatars)
    unlocked = sum(1 for a in avatars if a.id in unlocked_ids)

    by_rarity = {}
    for avatar in avatars:
        bucket = by_rarity.setdefault(avatar.rarity, {"total": 0, "unlocked": 0})
        bucket["total"] += 1
        if avatar.id in unlocked_ids:
            bucket["unlocked"] += 1

    return {
        "total": total,
        "unlocked": unlocked,
        "percentage": round(unlocked / total * 100) if total > 0 else 0,
        "by_rarity": by_rarity,
    }


# =============================================================================
# ===================== STATISTICS ============================================
# =============================================================================

def quest_stats(quests: list) -> dict:
    total = len(quests)
    completed = sum(1 for q in quests if q.status == "completed")
    return {
        "total": total,
        "active": sum(1 for q in quests if q.status == "active"),
        "completed": completed,
        "failed": sum(1 for q in quests if q.status == "failed"),
        "completion_rate": round(completed / total * 100, 1) if total > 0 else 0.0,
    }


def daily_goal_progress(completed_quests: int, target_quests: int = 3) -> dict:
    return {
        "progress": min(completed_quests / target_quests * 100, 100) if target_quests > 0 else 100,
        "is_completed": completed_quests >= target_quests,
        "remaining": max(target_quests - completed_quests, 0),
    }


def _day_of(value) -> Optional[date]:
    if value is None:
        return None
    return value.date() if hasattr(value, "date") else value


def weekly_stats(
    quests: list, completions: list, today: date, streak: int = 0,
    day_of: Optional[Callable[[datetime], date]] = None,
) -> dict:
    """
    Activity of the last 7 days (today included).

    day_of turns a quest timestamp into the calendar day it belongs to. It
    must use the same timezone as today; the default takes the stored (UTC)
    date. Habit completions already carry their local day.

    A quest counts for the week when it was created or completed inside the
    window. XP sums completed quests and credited habit completions.
    """
    start = today - timedelta(days=6)

    def quest_day(value) -> Optional[date]:
        if value is None:
            return None
        return day_of(value) if day_of else _day_of(value)

    def in_window(day) -> bool:
        return day is not None and start <= day <= today

    week_quests = [q for q in quests if in_window(quest_day(q.created_at)) or in_window(quest_day(q.completed_at))]
    done = [q for q in week_quests if q.status == "completed" and in_window(quest_day(q.completed_at))]
    week_completions = [c for c in completions if in_window(c.completed_on)]

    ability_counts = {}
    for quest in done:
        ability_counts[quest.ability_type] = ability_counts.get(quest.ability_type, 0) + 1
    favorite = max(ability_counts, key=ability_counts.get) if ability_counts else None

    daily = []
    for offset in range(7):
        day = start + timedelta(days=offset)
        daily.append({
            "day": day,
            "completed_quests": sum(1 for q in done if quest_day(q.completed_at) == day),
            "habit_completions": sum(1 for c in week_completions if c.completed_on == day),
        })

    return {
        "total_quests": len(week_quests),
        "completed_quests": len(done),
        "habit_completions": len(week_completions),
        "total_exp": sum(q.exp_reward for q in done) + sum(c.exp_gained for c in week_completions),
        "completion_rate": round(len(done) / len(week_quests) * 100, 1) if week_quests else 0.0,
        "streak": streak,
        "favorite_ability": favorite,
        "daily": daily,
    }
