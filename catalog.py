"""
=============================================================================
CATALOG.PY — Achievement & Avatar Catalogs
=============================================================================
The static definitions every user progresses against.

They live in code (so they are versioned with the rules) and are copied into
the database at startup, so user_achievements / user_avatars can point at
them with a foreign key. Seeding is an upsert: editing an entry here and
restarting updates the stored row.
"""

import logging
from sqlalchemy.orm import Session

from models import Achievement, Avatar

logger = logging.getLogger("questmaster.catalog")


# =============================================================================
# ===================== ACHIEVEMENTS ==========================================
# =============================================================================

ACHIEVEMENT_DEFINITIONS = [
    # ── Quests ──
    {"id": "first_quest", "title": "First Step", "description": "Complete your first quest",
     "icon": "🎯", "category": "quest", "condition_type": "quest_count", "condition_value": 1,
     "reward_exp": 50, "rarity": "common", "unlock_message": "Your journey as a quest master has begun!"},
    {"id": "quest_master", "title": "Quest Master", "description": "Complete 50 quests",
     "icon": "🏆", "category": "quest", "condition_type": "quest_count", "condition_value": 50,
     "reward_exp": 500, "rarity": "epic", "unlock_message": "You are a true quest master!"},

    # ── Habits ──
    {"id": "habit_starter", "title": "Habit Starter", "description": "Complete your first habit",
     "icon": "✅", "category": "habit", "condition_type": "habit_complete", "condition_value": 1,
     "reward_exp": 30, "rarity": "common", "unlock_message": "The start of a good habit!"},
    {"id": "streak_week", "title": "One Week Challenge", "description": "Keep a habit streak for 7 periods",
     "icon": "🔥", "category": "streak", "condition_type": "max_streak", "condition_value": 7,
     "reward_exp": 200, "rarity": "rare", "unlock_message": "You showed the power of consistency!"},
    {"id": "streak_month", "title": "Miracle Month", "description": "Keep a habit streak for 30 periods",
     "icon": "🌟", "category": "streak", "condition_type": "max_streak", "condition_value": 30,
     "reward_exp": 1000, "rarity": "legendary", "unlock_message": "30 in a row! You master your habits!"},

    # ── Levels ──
    {"id": "level_5", "title": "Growing Adventurer", "description": "Reach level 5",
     "icon": "📈", "category": "level", "condition_type": "level", "condition_value": 5,
     "reward_exp": 100, "rarity": "common", "unlock_message": "Level up! You keep growing!"},
    {"id": "level_20", "title": "Veteran Quester", "description": "Reach level 20",
     "icon": "⭐", "category": "level", "condition_type": "level", "condition_value": 20,
     "reward_exp": 500, "rarity": "epic", "unlock_message": "You reached the veteran realm!"},

    # ── Abilities ──
    {"id": "intelligence_50", "title": "Wise Sage", "description": "Raise intelligence to 50",
     "icon": "🧠", "category": "ability", "condition_type": "ability", "condition_value": 50,
     "ability_type": "intelligence", "reward_exp": 300, "rarity": "rare",
     "unlock_message": "The power of wisdom grows!"},
    {"id": "strength_50", "title": "Mighty Warrior", "description": "Raise strength to 50",
     "icon": "💪", "category": "ability", "condition_type": "ability", "condition_value": 50,
     "ability_type": "strength", "reward_exp": 300, "rarity": "rare",
     "unlock_message": "You gained mighty strength!"},
]


# =============================================================================
# ===================== AVATARS ===============================================
# =============================================================================

STARTER_AVATAR_ID = "starter"

AVATAR_DEFINITIONS = [
    {"id": "starter", "name": "Novice Adventurer", "rarity": "common", "level_required": 1,
     "condition_type": "level", "condition_value": 1, "condition_description": "Default avatar",
     "unlock_message": "Start your adventure! You became a novice adventurer.", "is_default": True},
    {"id": "scholar", "name": "Wise Scholar", "rarity": "rare", "level_required": 5,
     "condition_type": "ability", "condition_value": 50, "ability_type": "intelligence",
     "condition_description": "Reach 50 intelligence",
     "unlock_message": "The light of wisdom shines on you! You became a wise scholar."},
    {"id": "warrior", "name": "Mighty Warrior", "rarity": "rare", "level_required": 5,
     "condition_type": "ability", "condition_value": 50, "ability_type": "strength",
     "condition_description": "Reach 50 strength",
     "unlock_message": "Armed with a will of steel! You became a mighty warrior."},
    {"id": "healer", "name": "Healer", "rarity": "epic", "level_required": 10,
     "condition_type": "ability", "condition_value": 100, "ability_type": "health",
     "condition_description": "Reach 100 health",
     "unlock_message": "The power of life is with you! You became a healer."},
    {"id": "artist", "name": "Creative Artist", "rarity": "epic", "level_required": 10,
     "condition_type": "ability", "condition_value": 100, "ability_type": "creativity",
     "condition_description": "Reach 100 creativity",
     "unlock_message": "Endless imagination unfolds! You became a creative artist."},
    {"id": "legend", "name": "Legendary Master", "rarity": "legendary", "level_required": 20,
     "condition_type": "total_exp", "condition_value": 10000,
     "condition_description": "Reach 10,000 total XP",
     "unlock_message": "You became a legend! A true master who overcame every challenge."},
    {"id": "champion", "name": "Eternal Champion", "rarity": "mythic", "level_required": 10,
     "condition_type": "achievement", "condition_value": 1, "condition_achievement": "quest_master",
     "condition_description": "Unlock the Quest Master achievement",
     "unlock_message": "Fifty quests behind you. The eternal champion rises."},
]


def _upsert(db: Session, model, definition: dict) -> bool:
    row = db.get(model, definition["id"])
    if row is None:
        db.add(model(**definition))
        return True
    for key, value in definition.items():
        setattr(row, key, value)
    return False


def seed_achievements(db: Session):
    """Writes the achievement catalog into the database"""
    created = sum(_upsert(db, Achievement, d) for d in ACHIEVEMENT_DEFINITIONS)
    db.commit()
    logger.info(f"✅ {len(ACHIEVEMENT_DEFINITIONS)} achievements verified ({created} new)")


def seed_avatars(db: Session):
    """Writes the avatar catalog into the database"""
    created = sum(_upsert(db, Avatar, d) for d in AVATAR_DEFINITIONS)
    db.commit()
    logger.info(f"✅ {len(AVATAR_DEFINITIONS)} avatars verified ({created} new)")


def seed_catalogs(db: Session):
    seed_avatars(db)
    seed_achievements(db)
