"""
=============================================================================
MODELS.PY — Database Tables
=============================================================================
Each class = one table. Each attribute = one column.

RELATIONSHIPS:
  USER
  ├── quests[]
  ├── habits[] ──→ habit_completions[]
  ├── user_achievements[] ──→ achievement (catalog)
  └── user_avatars[] ──→ avatar (catalog)

Achievements and avatars are static catalogs keyed by a short string code
("first_quest", "starter"...). They are seeded at startup from catalog.py.
"""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Boolean, Float, Text, Date,
    DateTime, ForeignKey, UniqueConstraint, Index, text
)
from sqlalchemy.orm import relationship
from database import Base
import enum


# =============================================================================
# ===================== ENUMS =================================================
# =============================================================================

class AbilityType(str, enum.Enum):
    """The five stats that grow independently of the level"""
    intelligence = "intelligence"  # 🧠
    strength = "strength"          # 💪
    health = "health"              # ❤️
    creativity = "creativity"      # 🎨
    social = "social"              # 🤝

class QuestDifficulty(str, enum.Enum):
    easy = "easy"
    medium = "medium"
    hard = "hard"

class QuestStatus(str, enum.Enum):
    """active → completed | failed. Both ends are terminal."""
    active = "active"
    completed = "completed"
    failed = "failed"

class HabitFrequency(str, enum.Enum):
    daily = "daily"
    weekly = "weekly"

class Rarity(str, enum.Enum):
    common = "common"
    rare = "rare"
    epic = "epic"
    legendary = "legendary"
    mythic = "mythic"


ABILITY_TYPES = [a.value for a in AbilityType]


# =============================================================================
# ===================== TABLE 1: USERS ========================================
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # ── Account ──
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    username = Column(String(100), nullable=False)
    timezone = Column(String(50), default="UTC")
    # timezone → decides where the user's "today" starts and ends

    # ── Progression ──
    level = Column(Integer, default=1, nullable=False)
    total_exp = Column(Integer, default=0, nullable=False)
    intelligence = Column(Integer, default=0, nullable=False)
    strength = Column(Integer, default=0, nullable=False)
    health = Column(Integer, default=0, nullable=False)
    creativity = Column(Integer, default=0, nullable=False)
    social = Column(Integer, default=0, nullable=False)

    current_avatar_id = Column(String(50), ForeignKey("avatars.id"), nullable=True)

    # ── Timestamps ──
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    quests = relationship("Quest", back_populates="user", cascade="all, delete-orphan")
    habits = relationship("Habit", back_populates="user", cascade="all, delete-orphan")
    habit_completions = relationship("HabitCompletion", back_populates="user", cascade="all, delete-orphan")
    user_achievements = relationship("UserAchievement", back_populates="user", cascade="all, delete-orphan")
    user_avatars = relationship("UserAvatar", back_populates="user", cascade="all, delete-orphan")

    def abilities(self) -> dict:
        return {name: getattr(self, name) or 0 for name in ABILITY_TYPES}


# =============================================================================
# ===================== TABLE 2: QUESTS =======================================
# =============================================================================

class Quest(Base):
    __tablename__ = "quests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    difficulty = Column(String(20), default=QuestDifficulty.easy.value, nullable=False)
    ability_type = Column(String(20), nullable=False)
    exp_reward = Column(Integer, nullable=False)
    # exp_reward → fixed when the quest is created, from the difficulty table

    status = Column(String(20), default=QuestStatus.active.value, nullable=False)
    due_date = Column(Date, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="quests")


# =============================================================================
# ===================== TABLE 3: HABITS =======================================
# =============================================================================

class Habit(Base):
    __tablename__ = "habits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    ability_type = Column(String(20), nullable=False)
    frequency = Column(String(20), default=HabitFrequency.daily.value, nullable=False)

    # ── Streaks ──
    streak_count = Column(Integer, default=0, nullable=False)
    best_streak = Column(Integer, default=0, nullable=False)
    last_completed_at = Column(Date, nullable=True)
    # last_completed_at → the calendar day (user's timezone) of the last credit

    is_active = Column(Boolean, default=True, nullable=False)
    # is_active=False → deleted from the user's point of view, history kept

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="habits")
    completions = relationship("HabitCompletion", back_populates="habit", cascade="all, delete-orphan")


# =============================================================================
# ===================== TABLE 4: HABIT_COMPLETIONS ============================
# =============================================================================
# One row per credited completion. The unique constraint is what really
# guarantees "one completion per habit per day", whatever the client does.

class HabitCompletion(Base):
    __tablename__ = "habit_completions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    habit_id = Column(Integer, ForeignKey("habits.id"), nullable=False)

    completed_on = Column(Date, nullable=False)
    exp_gained = Column(Integer, default=0, nullable=False)
    ability_gained = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("habit_id", "completed_on", name="uq_habit_completion_day"),
    )

    user = relationship("User", back_populates="habit_completions")
    habit = relationship("Habit", back_populates="completions")


# =============================================================================
# ===================== TABLE 5: ACHIEVEMENTS (catalog) =======================
# =============================================================================

class Achievement(Base):
    __tablename__ = "achievements"

    id = Column(String(50), primary_key=True)
    title = Column(String(100), nullable=False)
    description = Column(String(255), nullable=False)
    icon = Column(String(10), default="🏆")
    category = Column(String(20), nullable=False)
    # category → quest, habit, level, ability, streak

    condition_type = Column(String(30), nullable=False)
    # condition_type → quest_count, habit_complete, level, ability, max_streak, total_exp
    condition_value = Column(Integer, nullable=False)
    ability_type = Column(String(20), nullable=True)

    reward_exp = Column(Integer, default=0, nullable=False)
    rarity = Column(String(20), default=Rarity.common.value)
    unlock_message = Column(String(255), nullable=True)
    hidden = Column(Boolean, default=False)


class UserAchievement(Base):
    __tablename__ = "user_achievements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    achievement_id = Column(String(50), ForeignKey("achievements.id"), nullable=False)

    progress = Column(Float, default=0, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)
    unlocked_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),
    )

    user = relationship("User", back_populates="user_achievements")
    achievement = relationship("Achievement")


# =============================================================================
# ===================== TABLE 6: AVATARS (catalog) ============================
# =============================================================================

class Avatar(Base):
    __tablename__ = "avatars"

    id = Column(String(50), primary_key=True)
    name = Column(String(100), nullable=False)
    rarity = Column(String(20), default=Rarity.common.value, nullable=False)
    level_required = Column(Integer, default=1, nullable=False)

    # ── Unlock condition ──
    condition_type = Column(String(30), nullable=False)
    # condition_type → level, ability, total_exp, achievement
    condition_value = Column(Integer, default=1, nullable=False)
    ability_type = Column(String(20), nullable=True)
    condition_achievement = Column(String(50), nullable=True)
    condition_description = Column(String(255), nullable=True)

    description = Column(String(255), nullable=True)
    unlock_message = Column(String(255), nullable=True)
    is_default = Column(Boolean, default=False)


class UserAvatar(Base):
    __tablename__ = "user_avatars"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    avatar_id = Column(String(50), ForeignKey("avatars.id"), nullable=False)

    unlocked_at = Column(DateTime, default=datetime.utcnow)
    is_equipped = Column(Boolean, default=False, nullable=False)

    # ── At most ONE equipped avatar per user ──
    # Partial unique index: only rows with is_equipped=true take part.
    __table_args__ = (
        UniqueConstraint("user_id", "avatar_id", name="uq_user_avatar"),
        Index(
            "uq_user_equipped_avatar", "user_id", unique=True,
            sqlite_where=text("is_equipped = 1"),
            postgresql_where=text("is_equipped = true"),
        ),
    )

    user = relationship("User", back_populates="user_avatars")
    avatar = relationship("Avatar")
