"""
=============================================================================
SCHEMAS.PY — Validation Schemas (Pydantic)
=============================================================================
Models (SQLAlchemy) define the TABLES.
Schemas (Pydantic) define what DATA the API accepts and returns.

Invalid input (empty title, unknown difficulty...) is rejected with a 422
before any action touches the database.

Naming:
  XxxCreate → body of a POST
  XxxUpdate → body of a PATCH (every field optional)
  XxxResponse → what the API returns
  ActionResult → the uniform answer of every user action
"""

from pydantic import AfterValidator, BaseModel, Field, EmailStr
from datetime import date, datetime
from typing import Annotated, Any, Literal, Optional

Difficulty = Literal["easy", "medium", "hard"]
Ability = Literal["intelligence", "strength", "health", "creativity", "social"]
Frequency = Literal["daily", "weekly"]
QuestState = Literal["active", "completed", "failed"]


def _not_blank(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


Title = Annotated[str, Field(min_length=1, max_length=200), AfterValidator(_not_blank)]


# =============================================================================
# ===================== AUTH / PROFILE ========================================
# =============================================================================

class UserRegister(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, description="At least 6 characters")
    username: Optional[str] = Field(default=None, max_length=100)
    timezone: Optional[str] = None

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: int
    username: str

class ProfileResponse(BaseModel):
    id: int
    email: str
    username: str
    timezone: str
    level: int
    total_exp: int
    intelligence: int
    strength: int
    health: int
    creativity: int
    social: int
    current_avatar_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    model_config = {"from_attributes": True}

class LevelInfo(BaseModel):
    level: int
    total_exp: int
    current_exp: int
    exp_to_next_level: int
    exp_for_current_level: int
    progress: float
    title: str


# =============================================================================
# ===================== QUESTS ================================================
# =============================================================================

class QuestCreate(BaseModel):
    title: Title
    description: Optional[str] = None
    difficulty: Difficulty = "easy"
    ability_type: Ability
    due_date: Optional[date] = None

class QuestUpdate(BaseModel):
    title: Optional[Title] = None
    description: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    ability_type: Optional[Ability] = None
    due_date: Optional[date] = None

class QuestResponse(BaseModel):
    id: int
    user_id: int
    title: str
    description: Optional[str]
    difficulty: str
    ability_type: str
    exp_reward: int
    status: str
    due_date: Optional[date]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    model_config = {"from_attributes": True}

class QuestStats(BaseModel):
    total: int
    active: int
    completed: int
    failed: int
    completion_rate: float


# =============================================================================
# ===================== HABITS ================================================
# =============================================================================

class HabitCreate(BaseModel):
    title: Title
    ability_type: Ability
    frequency: Frequency = "daily"

class HabitUpdate(BaseModel):
    title: Optional[Title] = None
    ability_type: Optional[Ability] = None
    frequency: Optional[Frequency] = None
    is_active: Optional[bool] = None

class HabitResponse(BaseModel):
    id: int
    user_id: int
    title: str
    ability_type: str
    frequency: str
    streak_count: int
    best_streak: int
    last_completed_at: Optional[date]
    is_active: bool
    created_at: datetime
    completed_today: bool = False
    can_complete: bool = True
    model_config = {"from_attributes": True}


# =============================================================================
# ===================== ACHIEVEMENTS / AVATARS ================================
# =============================================================================

class AchievementProgress(BaseModel):
    id: str
    title: str
    description: str
    icon: str
    category: str
    rarity: str
    reward_exp: int
    hidden: bool
    progress: float
    is_completed: bool
    progress_text: str
    unlocked_at: Optional[datetime] = None

class AvatarResponse(BaseModel):
    id: str
    name: str
    rarity: str
    level_required: int
    condition_type: str
    condition_value: int
    ability_type: Optional[str] = None
    condition_achievement: Optional[str] = None
    condition_description: Optional[str] = None
    description: Optional[str] = None
    unlock_message: Optional[str] = None
    is_default: bool = False
    is_unlocked: bool = False
    is_equipped: bool = False
    progress: float = 0
    model_config = {"from_attributes": True}

class CollectionStats(BaseModel):
    total: int
    unlocked: int
    percentage: int
    by_rarity: dict[str, dict[str, int]]
    equipped: Optional[str] = None
    recommended: Optional[str] = None


# =============================================================================
# ===================== UNIFORM ACTION RESULT =================================
# =============================================================================
# error:
#   not_found     → the row does not exist (or belongs to somebody else)
#   duplicate     → already done (habit completed today, avatar owned...)
#   invalid_state → the quest is not active any more
#   locked        → unlock conditions not met / avatar not owned
#   store_error   → the database refused or failed; nothing was changed

ErrorKind = Literal["not_found", "duplicate", "invalid_state", "locked", "store_error"]

class ActionResult(BaseModel):
    success: bool
    message: str
    error: Optional[ErrorKind] = None
    data: Optional[Any] = None
    exp_gained: Optional[int] = None
    ability_gained: Optional[int] = None
    leveled_up: Optional[bool] = None
    new_level: Optional[int] = None
    new_streak: Optional[int] = None
    bonus_multiplier: Optional[float] = None
    unlocked_achievements: list[str] = []
    unlocked_avatars: list[str] = []
    profile: Optional[ProfileResponse] = None
