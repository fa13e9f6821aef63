"""
=============================================================================
ACTIONS.PY — User Actions Against the Data Store
=============================================================================
Every thing a user can DO (create / complete / fail / delete a quest or a
habit, unlock or equip an avatar, claim achievements) lives here.

Each action follows the same recipe:
  1. load the user's row(s) and check the request makes sense
  2. ask gamification.py what the reward is
  3. change the target row AND the user's totals in ONE transaction
  4. commit, then announce the change on the realtime feed
  5. answer an ActionResult with the authoritative profile, so the caller
     can replace whatever it guessed locally

Failures never escape as exceptions:
  - domain problems (already completed today, quest not active...) → result
    with success=False and an error kind
  - database problems → rollback + log + result with error="store_error"

The guarantees that must hold under concurrent requests are left to the
database:
  - a quest leaves "active" through UPDATE ... WHERE status = 'active',
    so only one request can claim its reward
  - XP and ability points are incremented in SQL
  - the unique (habit_id, completed_on) constraint
  - the partial unique index on the equipped avatar
"""

import os
import logging
from datetime import date, datetime
from typing import Optional

import pytz
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from catalog import STARTER_AVATAR_ID
from gamification import (
    StatSnapshot, already_completed, avatar_unlock_status, build_condition,
    calculate_habit_reward, calculate_level, calculate_quest_reward,
    check_level_up, collection_stats, daily_goal_progress, evaluate_condition,
    get_level_info, progress_text, quest_stats, recommended_avatar,
    recommended_difficulty, sort_avatars, streak_bonus, next_streak,
    weekly_stats, ability_rank, total_ability_score
)
from models import (
    User, Quest, Habit, HabitCompletion, Achievement, UserAchievement,
    Avatar, UserAvatar, QuestStatus
)
from realtime import ChangeEvent, ChangeFeed
from schemas import (
    ActionResult, ProfileResponse, QuestResponse, HabitResponse,
    QuestCreate, QuestUpdate, HabitCreate, HabitUpdate,
    AchievementProgress, AvatarResponse
)

logger = logging.getLogger("questmaster.actions")

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")
DAILY_QUEST_GOAL = int(os.getenv("DAILY_QUEST_GOAL", "3"))


# =============================================================================
# ===================== HELPERS ===============================================
# =============================================================================

def user_today(user: User, now: Optional[datetime] = None) -> date:
    """The calendar day it is for the user, in their own timezone"""
    now = now or datetime.utcnow()
    try:
        tz = pytz.timezone(user.timezone or DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"⚠️ Unknown timezone {user.timezone!r} for user {user.id}, using UTC")
        tz = pytz.utc
    return pytz.utc.localize(now).astimezone(tz).date()


def _fail(error: str, message: str) -> ActionResult:
    return ActionResult(success=False, error=error, message=message)


def _store_failure(db: Session, action: str, exc: Exception) -> ActionResult:
    db.rollback()
    logger.error(f"❌ Database error during '{action}': {exc}")
    return _fail("store_error", f"Could not {action}, please try again")


def _profile(user: User) -> ProfileResponse:
    return ProfileResponse.model_validate(user)


def _publish(feed: Optional[ChangeFeed], table: str, event_type: str, user_id: int, record: dict):
    if feed is not None:
        feed.publish(ChangeEvent(table=table, event_type=event_type, user_id=user_id, record=record))


def _quest_dict(quest: Quest) -> dict:
    return QuestResponse.model_validate(quest).model_dump(mode="json")


def _habit_dict(habit: Habit, today: Optional[date] = None) -> dict:
    return habit_view(habit, today).model_dump(mode="json")


def _owned(db: Session, model, row_id: int, user: User):
    return db.query(model).filter(model.id == row_id, model.user_id == user.id).first()


def _grant(db: Session, user: User, exp: int, ability_type: Optional[str] = None, ability_points: int = 0) -> int:
    """
    Adds XP (and ability points) to the user and keeps the level in sync.
    Returns the new total.

    The increments run in SQL against the stored row, not on values this
    session loaded earlier. Does not commit.
    """
    values = {User.total_exp: User.total_exp + exp}
    if ability_type:
        column = getattr(User, ability_type)
        values[column] = column + ability_points
    db.query(User).filter(User.id == user.id).update(values, synchronize_session=False)

    total = db.query(User.total_exp).filter(User.id == user.id).scalar()
    db.query(User).filter(User.id == user.id).update(
        {User.level: calculate_level(total)}, synchronize_session=False
    )
    db.expire(user, ["total_exp", "level"] + ([ability_type] if ability_type else []))
    return total


def _claim_quest(db: Session, quest: Quest, new_status: str, now: Optional[datetime] = None) -> bool:
    """
    Moves the quest out of "active" only if the stored row is still active.
    False means another request got there first. Does not commit.
    """
    values = {Quest.status: new_status}
    if now is not None:
        values[Quest.completed_at] = now
    claimed = db.query(Quest).filter(
        Quest.id == quest.id, Quest.status == QuestStatus.active.value
    ).update(values, synchronize_session=False)
    return claimed == 1


# =============================================================================
# ===================== PROFILE ===============================================
# =============================================================================

def create_profile(
    db: Session, email: str, password_hash: str,
    username: Optional[str] = None, timezone: Optional[str] = None,
) -> User:
    """
    Creates the user row with zeroed stats and gives them the starter avatar,
    already equipped.
    """
    user = User(
        email=email,
        password_hash=password_hash,
        username=username or email.split("@")[0],
        timezone=timezone or DEFAULT_TIMEZONE,
        level=1,
        total_exp=0,
        intelligence=0, strength=0, health=0, creativity=0, social=0,
    )
    db.add(user)
    db.flush()

    if db.get(Avatar, STARTER_AVATAR_ID) is not None:
        db.add(UserAvatar(user_id=user.id, avatar_id=STARTER_AVATAR_ID, is_equipped=True))
        user.current_avatar_id = STARTER_AVATAR_ID

    db.commit()
    db.refresh(user)
    logger.info(f"👤 New user registered: {user.username} ({user.email})")
    return user


def build_snapshot(db: Session, user: User, completed_achievements: Optional[set] = None) -> StatSnapshot:
    """Collects the numbers the unlock conditions look at"""
    completed_quests = db.query(func.count(Quest.id)).filter(
        Quest.user_id == user.id, Quest.status == QuestStatus.completed.value
    ).scalar() or 0
    habit_completions = db.query(func.count(HabitCompletion.id)).filter(
        HabitCompletion.user_id == user.id
    ).scalar() or 0
    max_streak = db.query(func.max(Habit.best_streak)).filter(
        Habit.user_id == user.id
    ).scalar() or 0

    if completed_achievements is None:
        completed_achievements = {
            ua.achievement_id for ua in db.query(UserAchievement).filter(
                UserAchievement.user_id == user.id, UserAchievement.is_completed == True
            ).all()
        }

    return StatSnapshot(
        level=user.level,
        total_exp=user.total_exp,
        abilities=user.abilities(),
        completed_quests=completed_quests,
        habit_completions=habit_completions,
        max_streak=max_streak,
        achievements=frozenset(completed_achievements),
    )


# =============================================================================
# ===================== QUESTS ================================================
# =============================================================================

def list_quests(db: Session, user: User, status: Optional[str] = None) -> list[Quest]:
    query = db.query(Quest).filter(Quest.user_id == user.id)
    if status is not None:
        query = query.filter(Quest.status == status)
    return query.order_by(Quest.created_at.desc(), Quest.id.desc()).all()


def create_quest(db: Session, user: User, data: QuestCreate, feed: Optional[ChangeFeed] = None) -> ActionResult:
    reward = calculate_quest_reward(data.difficulty, data.ability_type)
    try:
        quest = Quest(
            user_id=user.id,
            title=data.title,
            description=data.description,
            difficulty=data.difficulty,
            ability_type=data.ability_type,
            exp_reward=reward.exp,
            due_date=data.due_date,
        )
        db.add(quest)
        db.commit()
        db.refresh(quest)
    except SQLAlchemyError as e:
        return _store_failure(db, "create the quest", e)

    record = _quest_dict(quest)
    _publish(feed, "quests", "INSERT", user.id, record)
    logger.info(f"➕ Quest created: {quest.title} (user: {user.username})")
    return ActionResult(success=True, message="Quest created!", data=record)


def update_quest(db: Session, user: User, quest_id: int, data: QuestUpdate, feed: Optional[ChangeFeed] = None) -> ActionResult:
    quest = _owned(db, Quest, quest_id, user)
    if quest is None:
        return _fail("not_found", "Quest not found")
    if quest.status != QuestStatus.active.value:
        return _fail("invalid_state", f"Quest is already {quest.status}")

    try:
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(quest, key, value)
        quest.exp_reward = calculate_quest_reward(quest.difficulty, quest.ability_type).exp
        db.commit()
        db.refresh(quest)
    except SQLAlchemyError as e:
        return _store_failure(db, "update the quest", e)

    record = _quest_dict(quest)
    _publish(feed, "quests", "UPDATE", user.id, record)
    return ActionResult(success=True, message="Quest updated!", data=record)


def complete_quest(
    db: Session, user: User, quest_id: int,
    feed: Optional[ChangeFeed] = None, now: Optional[datetime] = None,
) -> ActionResult:
    """
    active → completed. The reward is granted exactly once: a quest that is
    not active any more is refused before anything is written.
    """
    quest = _owned(db, Quest, quest_id, user)
    if quest is None:
        return _fail("not_found", "Quest not found")
    if quest.status == QuestStatus.completed.value:
        return _fail("invalid_state", "Quest already completed")
    if quest.status != QuestStatus.active.value:
        return _fail("invalid_state", f"Quest is already {quest.status}")

    reward = calculate_quest_reward(quest.difficulty, quest.ability_type)

    try:
        if not _claim_quest(db, quest, QuestStatus.completed.value, now or datetime.utcnow()):
            db.rollback()
            return _fail("invalid_state", "Quest already completed")
        total = _grant(db, user, reward.exp, quest.ability_type, reward.ability)
        db.commit()
        db.refresh(quest)
        db.refresh(user)
    except SQLAlchemyError as e:
        return _store_failure(db, "complete the quest", e)

    level = check_level_up(total - reward.exp, total)
    record = _quest_dict(quest)
    _publish(feed, "quests", "UPDATE", user.id, record)
    _publish(feed, "users", "UPDATE", user.id, _profile(user).model_dump(mode="json"))

    if level["leveled_up"]:
        logger.info(f"⬆️ {user.username} reached level {level['new_level']}")
        message = f"🎉 Quest complete! +{reward.exp} XP and you reached level {level['new_level']}!"
    else:
        message = f"🏆 Quest complete! +{reward.exp} XP"

    return ActionResult(
        success=True,
        message=message,
        data=record,
        exp_gained=reward.exp,
        ability_gained=reward.ability,
        leveled_up=level["leveled_up"],
        new_level=level["new_level"],
        profile=_profile(user),
    )


def fail_quest(db: Session, user: User, quest_id: int, feed: Optional[ChangeFeed] = None) -> ActionResult:
    """active → failed, by the user's own decision. No reward, no penalty."""
    quest = _owned(db, Quest, quest_id, user)
    if quest is None:
        return _fail("not_found", "Quest not found")
    if quest.status != QuestStatus.active.value:
        return _fail("invalid_state", f"Quest is already {quest.status}")

    try:
        if not _claim_quest(db, quest, QuestStatus.failed.value):
            db.rollback()
            return _fail("invalid_state", "Quest is no longer active")
        db.commit()
        db.refresh(quest)
    except SQLAlchemyError as e:
        return _store_failure(db, "mark the quest as failed", e)

    record = _quest_dict(quest)
    _publish(feed, "quests", "UPDATE", user.id, record)
    return ActionResult(success=True, message="Quest marked as failed", data=record)


def delete_quest(db: Session, user: User, quest_id: int, feed: Optional[ChangeFeed] = None) -> ActionResult:
    quest = _owned(db, Quest, quest_id, user)
    if quest is None:
        return _fail("not_found", "Quest not found")

    try:
        db.delete(quest)
        db.commit()
    except SQLAlchemyError as e:
        return _store_failure(db, "delete the quest", e)

    _publish(feed, "quests", "DELETE", user.id, {"id": quest_id})
    return ActionResult(success=True, message="Quest deleted")


# =============================================================================
# ===================== HABITS ================================================
# =============================================================================

def habit_view(habit: Habit, today: Optional[date] = None) -> HabitResponse:
    view = HabitResponse.model_validate(habit)
    if today is not None:
        done = already_completed(habit.frequency, habit.last_completed_at, today)
        view.completed_today = habit.last_completed_at == today
        view.can_complete = habit.is_active and not done
    return view


def list_habits(db: Session, user: User, include_inactive: bool = False) -> list[Habit]:
    query = db.query(Habit).filter(Habit.user_id == user.id)
    if not include_inactive:
        query = query.filter(Habit.is_active == True)
    return query.order_by(Habit.created_at.desc(), Habit.id.desc()).all()


def create_habit(db: Session, user: User, data: HabitCreate, feed: Optional[ChangeFeed] = None) -> ActionResult:
    try:
        habit = Habit(
            user_id=user.id,
            title=data.title,
            ability_type=data.ability_type,
            frequency=data.frequency,
            streak_count=0,
            best_streak=0,
            is_active=True,
        )
        db.add(habit)
        db.commit()
        db.refresh(habit)
    except SQLAlchemyError as e:
        return _store_failure(db, "create the habit", e)

    record = _habit_dict(habit)
    _publish(feed, "habits", "INSERT", user.id, record)
    logger.info(f"➕ Habit created: {habit.title} (user: {user.username})")
    return ActionResult(success=True, message="Habit created!", data=record)


def update_habit(db: Session, user: User, habit_id: int, data: HabitUpdate, feed: Optional[ChangeFeed] = None) -> ActionResult:
    """A deleted habit only accepts an explicit reactivation (is_active=True)"""
    habit = _owned(db, Habit, habit_id, user)
    if habit is None:
        return _fail("not_found", "Habit not found")
    if not habit.is_active and data.is_active is not True:
        return _fail("not_found", "Habit not found")

    try:
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(habit, key, value)
        db.commit()
        db.refresh(habit)
    except SQLAlchemyError as e:
        return _store_failure(db, "update the habit", e)

    record = _habit_dict(habit)
    _publish(feed, "habits", "UPDATE", user.id, record)
    return ActionResult(success=True, message="Habit updated!", data=record)


def delete_habit(db: Session, user: User, habit_id: int, feed: Optional[ChangeFeed] = None) -> ActionResult:
    """Soft delete: the habit disappears from the lists, its history stays"""
    habit = _owned(db, Habit, habit_id, user)
    if habit is None or not habit.is_active:
        return _fail("not_found", "Habit not found")

    try:
        habit.is_active = False
        db.commit()
    except SQLAlchemyError as e:
        return _store_failure(db, "delete the habit", e)

    _publish(feed, "habits", "UPDATE", user.id, _habit_dict(habit))
    return ActionResult(success=True, message="Habit deleted")


def complete_habit(
    db: Session, user: User, habit_id: int,
    feed: Optional[ChangeFeed] = None, today: Optional[date] = None,
) -> ActionResult:
    """
    Credits one completion for the current period.

    A second call in the same period is a normal "already done" answer and
    leaves streak and stats untouched.
    """
    habit = _owned(db, Habit, habit_id, user)
    if habit is None:
        return _fail("not_found", "Habit not found")
    if not habit.is_active:
        return _fail("invalid_state", "Habit is not active")

    today = today or user_today(user)
    if already_completed(habit.frequency, habit.last_completed_at, today):
        period = "this week" if habit.frequency == "weekly" else "today"
        return _fail("duplicate", f"Already completed {period}")

    streak = next_streak(habit.frequency, habit.streak_count, habit.last_completed_at, today)
    reward = calculate_habit_reward(streak)

    try:
        habit.streak_count = streak
        habit.best_streak = max(habit.best_streak or 0, streak)
        habit.last_completed_at = today
        db.add(HabitCompletion(
            user_id=user.id,
            habit_id=habit.id,
            completed_on=today,
            exp_gained=reward.exp,
            ability_gained=reward.ability,
        ))
        total = _grant(db, user, reward.exp, habit.ability_type, reward.ability)
        db.commit()
        db.refresh(habit)
        db.refresh(user)
    except IntegrityError:
        # another request credited the same day first
        db.rollback()
        return _fail("duplicate", "Already completed today")
    except SQLAlchemyError as e:
        return _store_failure(db, "complete the habit", e)

    level = check_level_up(total - reward.exp, total)
    record = _habit_dict(habit, today)
    _publish(feed, "habits", "UPDATE", user.id, record)
    _publish(feed, "users", "UPDATE", user.id, _profile(user).model_dump(mode="json"))
    logger.info(f"🔥 {user.username} completed '{habit.title}' (streak {streak})")

    return ActionResult(
        success=True,
        message=f"✅ Habit complete! +{reward.exp} XP (streak {streak})",
        data=record,
        exp_gained=reward.exp,
        ability_gained=reward.ability,
        leveled_up=level["leveled_up"],
        new_level=level["new_level"],
        new_streak=streak,
        bonus_multiplier=streak_bonus(streak),
        profile=_profile(user),
    )


# =============================================================================
# ===================== ACHIEVEMENTS ==========================================
# =============================================================================

def _achievement_condition(achievement: Achievement):
    return build_condition(
        achievement.condition_type, achievement.condition_value, ability=achievement.ability_type
    )


def achievement_progress(db: Session, user: User) -> list[AchievementProgress]:
    """Every catalog achievement with the user's progress bar"""
    records = {
        ua.achievement_id: ua for ua in
        db.query(UserAchievement).filter(UserAchievement.user_id == user.id).all()
    }
    completed = {aid for aid, ua in records.items() if ua.is_completed}
    snapshot = build_snapshot(db, user, completed)

    result = []
    for achievement in db.query(Achievement).order_by(Achievement.id).all():
        record = records.get(achievement.id)
        is_completed = bool(record and record.is_completed)
        condition = _achievement_condition(achievement)
        status = evaluate_condition(condition, snapshot)
        result.append(AchievementProgress(
            id=achievement.id,
            title=achievement.title,
            description=achievement.description,
            icon=achievement.icon,
            category=achievement.category,
            rarity=achievement.rarity,
            reward_exp=achievement.reward_exp,
            hidden=achievement.hidden,
            progress=100.0 if is_completed else status.progress,
            is_completed=is_completed,
            progress_text="Completed" if is_completed else progress_text(condition, snapshot),
            unlocked_at=record.unlocked_at if record else None,
        ))
    return result


def recent_achievements(db: Session, user: User, limit: int = 5) -> list[Achievement]:
    rows = db.query(UserAchievement).filter(
        UserAchievement.user_id == user.id,
        UserAchievement.is_completed == True,
        UserAchievement.unlocked_at != None,
    ).order_by(UserAchievement.unlocked_at.desc()).limit(limit).all()
    return [ua.achievement for ua in rows if ua.achievement]


def check_achievements(
    db: Session, user: User,
    feed: Optional[ChangeFeed] = None, now: Optional[datetime] = None,
) -> ActionResult:
    """
    Updates every progress bar and claims what is finished.

    Each achievement pays its reward_exp once. That XP can raise the level
    and finish a level achievement in turn, so the pass repeats until nothing
    new unlocks. Avatars whose conditions became true are unlocked at the end.
    """
    now = now or datetime.utcnow()
    gained = 0

    try:
        records = {
            ua.achievement_id: ua for ua in
            db.query(UserAchievement).filter(UserAchievement.user_id == user.id).all()
        }
        achievements = db.query(Achievement).all()
        completed = {aid for aid, ua in records.items() if ua.is_completed}
        unlocked = []

        while True:
            snapshot = build_snapshot(db, user, completed)
            newly = []
            for achievement in achievements:
                if achievement.id in completed:
                    continue
                status = evaluate_condition(_achievement_condition(achievement), snapshot)
                record = records.get(achievement.id)
                if record is None:
                    record = UserAchievement(user_id=user.id, achievement_id=achievement.id)
                    db.add(record)
                    records[achievement.id] = record
                record.progress = status.progress
                if status.satisfied:
                    record.is_completed = True
                    record.unlocked_at = now
                    _grant(db, user, achievement.reward_exp)
                    gained += achievement.reward_exp
                    newly.append(achievement.id)
                    logger.info(f"🏆 {user.username} unlocked: {achievement.title}")
            if not newly:
                break
            completed.update(newly)
            unlocked.extend(newly)

        avatars = _auto_unlock(db, user, build_snapshot(db, user, completed), now)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as e:
        return _store_failure(db, "check achievements", e)

    for achievement_id in unlocked:
        _publish(feed, "user_achievements", "UPDATE", user.id, {"achievement_id": achievement_id, "is_completed": True})
    for avatar_id in avatars:
        _publish(feed, "user_avatars", "INSERT", user.id, {"avatar_id": avatar_id})
    if unlocked:
        _publish(feed, "users", "UPDATE", user.id, _profile(user).model_dump(mode="json"))

    level = check_level_up(user.total_exp - gained, user.total_exp)
    if unlocked:
        message = f"🏆 {len(unlocked)} achievement(s) unlocked! +{gained} XP"
    else:
        message = "No new achievements"

    return ActionResult(
        success=True,
        message=message,
        exp_gained=gained,
        leveled_up=level["leveled_up"],
        new_level=level["new_level"],
        unlocked_achievements=unlocked,
        unlocked_avatars=avatars,
        profile=_profile(user),
    )


# =============================================================================
# ===================== AVATARS ===============================================
# =============================================================================

def _owned_avatars(db: Session, user: User) -> dict:
    return {
        ua.avatar_id: ua for ua in
        db.query(UserAvatar).filter(UserAvatar.user_id == user.id).all()
    }


def _auto_unlock(db: Session, user: User, snapshot: StatSnapshot, now: datetime) -> list[str]:
    """Adds every avatar whose conditions are met. Does not commit."""
    owned = _owned_avatars(db, user)
    new_ids = []
    for avatar in db.query(Avatar).order_by(Avatar.level_required, Avatar.id).all():
        if avatar.id in owned:
            continue
        if avatar_unlock_status(avatar, snapshot).satisfied:
            first = not owned and not new_ids
            db.add(UserAvatar(user_id=user.id, avatar_id=avatar.id, unlocked_at=now, is_equipped=first))
            if first:
                user.current_avatar_id = avatar.id
            new_ids.append(avatar.id)
            logger.info(f"🎭 {user.username} unlocked avatar: {avatar.name}")
    return new_ids


def auto_unlock_avatars(db: Session, user: User, feed: Optional[ChangeFeed] = None) -> ActionResult:
    try:
        new_ids = _auto_unlock(db, user, build_snapshot(db, user), datetime.utcnow())
        db.commit()
    except SQLAlchemyError as e:
        return _store_failure(db, "unlock avatars", e)

    for avatar_id in new_ids:
        _publish(feed, "user_avatars", "INSERT", user.id, {"avatar_id": avatar_id})
    message = f"🎭 {len(new_ids)} new avatar(s)!" if new_ids else "No new avatars"
    return ActionResult(success=True, message=message, unlocked_avatars=new_ids, profile=_profile(user))


def unlock_avatar(db: Session, user: User, avatar_id: str, feed: Optional[ChangeFeed] = None) -> ActionResult:
    avatar = db.get(Avatar, avatar_id)
    if avatar is None:
        return _fail("not_found", "Avatar not found")

    owned = _owned_avatars(db, user)
    if avatar_id in owned:
        return _fail("duplicate", "Avatar already unlocked")

    status = avatar_unlock_status(avatar, build_snapshot(db, user))
    if not status.satisfied:
        return _fail("locked", f"Unlock conditions not met ({status.progress:.0f}%)")

    first = not owned
    try:
        db.add(UserAvatar(user_id=user.id, avatar_id=avatar_id, is_equipped=first))
        if first:
            user.current_avatar_id = avatar_id
        db.commit()
        db.refresh(user)
    except IntegrityError:
        db.rollback()
        return _fail("duplicate", "Avatar already unlocked")
    except SQLAlchemyError as e:
        return _store_failure(db, "unlock the avatar", e)

    _publish(feed, "user_avatars", "INSERT", user.id, {"avatar_id": avatar_id, "is_equipped": first})
    return ActionResult(
        success=True,
        message=avatar.unlock_message or f"You got the {avatar.name} avatar!",
        data={"avatar_id": avatar_id, "is_equipped": first},
        unlocked_avatars=[avatar_id],
        profile=_profile(user),
    )


def equip_avatar(db: Session, user: User, avatar_id: str, feed: Optional[ChangeFeed] = None) -> ActionResult:
    """
    Makes avatar_id the only equipped avatar. Clearing the others and setting
    this one happen in the same transaction.
    """
    owned = _owned_avatars(db, user)
    target = owned.get(avatar_id)
    if target is None:
        if db.get(Avatar, avatar_id) is None:
            return _fail("not_found", "Avatar not found")
        return _fail("locked", "Avatar not unlocked")

    if target.is_equipped and user.current_avatar_id == avatar_id:
        return ActionResult(success=True, message="Avatar already equipped", profile=_profile(user))

    try:
        db.query(UserAvatar).filter(
            UserAvatar.user_id == user.id, UserAvatar.is_equipped == True
        ).update({UserAvatar.is_equipped: False}, synchronize_session="fetch")
        db.flush()
        target.is_equipped = True
        user.current_avatar_id = avatar_id
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as e:
        return _store_failure(db, "equip the avatar", e)

    _publish(feed, "user_avatars", "UPDATE", user.id, {"avatar_id": avatar_id, "is_equipped": True})
    _publish(feed, "users", "UPDATE", user.id, _profile(user).model_dump(mode="json"))
    return ActionResult(
        success=True,
        message="Avatar equipped!",
        data={"avatar_id": avatar_id},
        profile=_profile(user),
    )


def avatar_gallery(db: Session, user: User, sort_by: str = "rarity") -> list[AvatarResponse]:
    owned = _owned_avatars(db, user)
    snapshot = build_snapshot(db, user)
    result = []
    for avatar in sort_avatars(db.query(Avatar).all(), sort_by):
        view = AvatarResponse.model_validate(avatar)
        record = owned.get(avatar.id)
        view.is_unlocked = record is not None
        view.is_equipped = bool(record and record.is_equipped)
        view.progress = 100.0 if record else avatar_unlock_status(avatar, snapshot).progress
        result.append(view)
    return result


def avatar_collection(db: Session, user: User) -> dict:
    avatars = db.query(Avatar).all()
    owned = _owned_avatars(db, user)
    stats = collection_stats(avatars, set(owned))
    equipped = next((aid for aid, ua in owned.items() if ua.is_equipped), None)
    suggestion = recommended_avatar(avatars, set(owned), build_snapshot(db, user))
    stats["equipped"] = equipped
    stats["recommended"] = suggestion.id if suggestion else None
    return stats


# =============================================================================
# ===================== DASHBOARD =============================================
# =============================================================================

def dashboard(db: Session, user: User, today: Optional[date] = None) -> dict:
    """Everything the home screen shows, computed from real rows"""
    today = today or user_today(user)
    quests = list_quests(db, user)
    habits = list_habits(db, user)
    completions = db.query(HabitCompletion).filter(HabitCompletion.user_id == user.id).all()

    longest = max((h.streak_count for h in habits), default=0)
    completed_today = sum(
        1 for q in quests
        if q.status == QuestStatus.completed.value and q.completed_at and user_today(user, q.completed_at) == today
    )
    daily = [h for h in habits if h.frequency == "daily"]
    abilities = user.abilities()

    return {
        "level": get_level_info(user.total_exp),
        "abilities": {
            name: {"value": value, "rank": ability_rank(value)} for name, value in abilities.items()
        },
        "total_ability_score": total_ability_score(abilities),
        "recommended_difficulty": recommended_difficulty(user.level),
        "quests": quest_stats(quests),
        "habits": {
            "daily_total": len(daily),
            "completed_today": sum(1 for h in daily if h.last_completed_at == today),
            "pending_today": [h.id for h in daily if h.last_completed_at != today],
            "longest_streak": longest,
        },
        "daily_goal": daily_goal_progress(completed_today, DAILY_QUEST_GOAL),
        "weekly": weekly_stats(
            quests, completions, today, streak=longest,
            day_of=lambda moment: user_today(user, moment),
        ),
        "recent_achievements": [a.id for a in recent_achievements(db, user)],
    }
