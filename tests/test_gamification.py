"""
Unit tests for the progression engine (gamification.py).

No database and no clock: every rule is checked on plain values.
"""

from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from gamification import (
    AbilityCondition, AchievementCondition, LevelCondition, MaxStreakCondition,
    QuestCountCondition, Reward, StatSnapshot, TotalExpCondition,
    ability_rank, already_completed, apply_streak_bonus, avatar_unlock_status,
    build_condition, calculate_habit_reward, calculate_level,
    calculate_quest_reward, check_level_up, collection_stats,
    daily_goal_progress, evaluate_condition, exp_required_for_level,
    get_level_info, get_level_title, next_streak, progress_text, quest_stats,
    recommended_avatar, recommended_difficulty, sort_avatars, streak_bonus,
    weekly_stats,
)


def make_avatar(avatar_id, rarity="common", level_required=1, condition_type="level",
                condition_value=1, ability_type=None, condition_achievement=None, name=None):
    return SimpleNamespace(
        id=avatar_id, name=name or avatar_id, rarity=rarity, level_required=level_required,
        condition_type=condition_type, condition_value=condition_value,
        ability_type=ability_type, condition_achievement=condition_achievement,
    )


# ============================================================================
# LEVELS
# ============================================================================


@pytest.mark.unit
class TestLevelCurve:
    """Level = floor(sqrt(total_exp / 100)) + 1"""

    @pytest.mark.parametrize("total_exp,level", [
        (0, 1), (10, 1), (99, 1), (100, 2), (140, 2), (399, 2), (400, 3), (8100, 10),
    ])
    def test_known_values(self, total_exp, level):
        assert calculate_level(total_exp) == level

    def test_level_is_at_least_one_and_never_decreases(self):
        previous = 1
        for total_exp in range(0, 20001, 7):
            level = calculate_level(total_exp)
            assert level >= 1
            assert level >= previous
            previous = level

    def test_boundaries_are_consistent(self):
        """The XP at which a level starts maps back to that level"""
        for n in range(1, 200):
            assert calculate_level(exp_required_for_level(n)) == n
            assert calculate_level(exp_required_for_level(n) - 1) == max(n - 1, 1)

    def test_large_totals_do_not_drift(self):
        n = 10 ** 6
        assert calculate_level(exp_required_for_level(n)) == n

    def test_negative_total_is_level_one(self):
        assert calculate_level(-50) == 1

    def test_level_info_progress(self):
        info = get_level_info(250)

        assert info["level"] == 2
        assert info["current_exp"] == 150
        assert info["exp_to_next_level"] == 300
        assert info["exp_for_current_level"] == 100
        assert info["progress"] == 50.0
        assert info["title"] == "Novice"

    def test_titles_follow_thresholds(self):
        assert get_level_title(1) == "Novice"
        assert get_level_title(4) == "Apprentice"
        assert get_level_title(10) == "Veteran"
        assert get_level_title(99) == "Mythic"

    def test_level_up_detection(self):
        result = check_level_up(90, 140)

        assert result["leveled_up"] is True
        assert result["old_level"] == 1
        assert result["new_level"] == 2

    def test_no_level_up_inside_a_level(self):
        assert check_level_up(0, 10)["leveled_up"] is False


# ============================================================================
# REWARDS
# ============================================================================


@pytest.mark.unit
class TestRewards:

    @pytest.mark.parametrize("difficulty,expected", [
        ("easy", Reward(10, 5)), ("medium", Reward(25, 12)), ("hard", Reward(50, 25)),
    ])
    def test_quest_reward_table(self, difficulty, expected):
        for ability in ("intelligence", "strength", "social", None):
            assert calculate_quest_reward(difficulty, ability) == expected

    def test_unknown_difficulty_is_rejected(self):
        with pytest.raises(ValueError):
            calculate_quest_reward("legendary")

    def test_habit_reward_without_streak_bonus(self):
        assert calculate_habit_reward(1) == Reward(10, 5)

    def test_habit_reward_is_floored_after_bonus(self):
        # 10 * 1.1 = 11, 5 * 1.1 = 5.5 → 5
        assert calculate_habit_reward(3) == Reward(11, 5)
        assert calculate_habit_reward(7) == Reward(12, 6)
        assert calculate_habit_reward(30) == Reward(20, 10)

    def test_recommended_difficulty(self):
        assert recommended_difficulty(1) == "easy"
        assert recommended_difficulty(10) == "medium"
        assert recommended_difficulty(25) == "hard"

    def test_ability_rank(self):
        assert ability_rank(0) == "D"
        assert ability_rank(50) == "C"
        assert ability_rank(499) == "A"
        assert ability_rank(500) == "S"


# ============================================================================
# STREAKS
# ============================================================================


@pytest.mark.unit
class TestStreaks:

    @pytest.mark.parametrize("streak,multiplier", [
        (0, 1.0), (1, 1.0), (2, 1.0), (3, 1.1), (6, 1.1), (7, 1.2),
        (13, 1.2), (14, 1.5), (29, 1.5), (30, 2.0), (365, 2.0),
    ])
    def test_multiplier_brackets(self, streak, multiplier):
        assert streak_bonus(streak) == multiplier

    def test_bonus_is_floored(self):
        assert apply_streak_bonus(25, 3) == 27

    def test_first_completion_starts_at_one(self):
        assert next_streak("daily", 0, None, date(2026, 3, 10)) == 1

    def test_daily_streak_continues_from_yesterday(self):
        today = date(2026, 3, 10)
        assert next_streak("daily", 4, today - timedelta(days=1), today) == 5

    def test_daily_streak_resets_after_a_gap(self):
        today = date(2026, 3, 10)
        assert next_streak("daily", 4, today - timedelta(days=2), today) == 1

    def test_weekly_streak_continues_from_previous_week(self):
        # Monday 2026-03-09, last done on Thursday of the week before
        assert next_streak("weekly", 2, date(2026, 3, 5), date(2026, 3, 9)) == 3

    def test_weekly_streak_resets_after_a_missed_week(self):
        assert next_streak("weekly", 2, date(2026, 2, 26), date(2026, 3, 9)) == 1

    def test_already_completed_daily(self):
        today = date(2026, 3, 10)
        assert already_completed("daily", today, today) is True
        assert already_completed("daily", today - timedelta(days=1), today) is False
        assert already_completed("daily", None, today) is False

    def test_already_completed_weekly_uses_iso_weeks(self):
        # Monday 9th and Sunday 15th share a week, Sunday 8th does not
        assert already_completed("weekly", date(2026, 3, 9), date(2026, 3, 15)) is True
        assert already_completed("weekly", date(2026, 3, 8), date(2026, 3, 9)) is False


# ============================================================================
# UNLOCK CONDITIONS
# ============================================================================


@pytest.mark.unit
class TestConditions:

    def test_build_each_kind(self):
        assert build_condition("level", 5) == LevelCondition(5)
        assert build_condition("ability", 50, ability="strength") == AbilityCondition("strength", 50)
        assert build_condition("total_exp", 1000) == TotalExpCondition(1000)
        assert build_condition("achievement", 1, achievement_id="first_quest") == AchievementCondition("first_quest", 1)
        assert build_condition("quest_count", 50) == QuestCountCondition(50)
        assert build_condition("max_streak", 7) == MaxStreakCondition(7)

    def test_build_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            build_condition("moon_phase", 3)

    def test_build_rejects_ability_condition_without_ability(self):
        with pytest.raises(ValueError):
            build_condition("ability", 50)

    def test_progress_is_clamped_at_100(self):
        snapshot = StatSnapshot(level=40)

        status = evaluate_condition(LevelCondition(5), snapshot)

        assert status.satisfied is True
        assert status.progress == 100

    def test_partial_progress(self):
        snapshot = StatSnapshot(abilities={"intelligence": 20})

        status = evaluate_condition(AbilityCondition("intelligence", 50), snapshot)

        assert status.satisfied is False
        assert status.progress == 40

    def test_progress_never_negative(self):
        status = evaluate_condition(TotalExpCondition(100), StatSnapshot(total_exp=-30))
        assert 0 <= status.progress <= 100

    def test_achievement_condition(self):
        condition = AchievementCondition("quest_master")

        assert evaluate_condition(condition, StatSnapshot()).satisfied is False
        done = StatSnapshot(achievements=frozenset({"quest_master"}))
        assert evaluate_condition(condition, done).satisfied is True

    def test_unknown_condition_object_fails_loudly(self):
        with pytest.raises(TypeError):
            evaluate_condition(object(), StatSnapshot())

    def test_progress_text(self):
        text = progress_text(QuestCountCondition(50), StatSnapshot(completed_quests=12))
        assert "12" in text and "50" in text


@pytest.mark.unit
class TestAvatars:

    def test_level_gate_comes_first(self):
        avatar = make_avatar("scholar", level_required=5, condition_type="ability",
                             condition_value=50, ability_type="intelligence")
        snapshot = StatSnapshot(level=2, abilities={"intelligence": 80})

        status = avatar_unlock_status(avatar, snapshot)

        assert status.satisfied is False
        assert status.progress == 40.0

    def test_condition_after_level_gate(self):
        avatar = make_avatar("scholar", level_required=5, condition_type="ability",
                             condition_value=50, ability_type="intelligence")

        assert avatar_unlock_status(avatar, StatSnapshot(level=5, abilities={"intelligence": 50})).satisfied
        assert not avatar_unlock_status(avatar, StatSnapshot(level=5, abilities={"intelligence": 49})).satisfied

    def test_sorting(self):
        avatars = [make_avatar("b", "legendary", 20), make_avatar("a", "common", 1), make_avatar("c", "rare", 5)]

        assert [a.id for a in sort_avatars(avatars)] == ["a", "c", "b"]
        assert [a.id for a in sort_avatars(avatars, "level")] == ["a", "c", "b"]
        assert [a.id for a in sort_avatars(avatars, "name")] == ["a", "b", "c"]

    def test_collection_stats(self):
        avatars = [make_avatar("a"), make_avatar("b"), make_avatar("c", "rare"), make_avatar("d", "rare")]

        stats = collection_stats(avatars, {"a", "c"})

        assert stats["total"] == 4
        assert stats["unlocked"] == 2
        assert stats["percentage"] == 50
        assert stats["by_rarity"]["rare"] == {"total": 2, "unlocked": 1}

    def test_recommended_avatar_is_the_closest_locked_one(self):
        avatars = [
            make_avatar("starter"),
            make_avatar("near", level_required=2),
            make_avatar("far", level_required=20),
        ]
        snapshot = StatSnapshot(level=1)

        assert recommended_avatar(avatars, {"starter"}, snapshot).id == "near"
        assert recommended_avatar(avatars, {"starter", "near", "far"}, snapshot) is None


# ============================================================================
# STATISTICS
# ============================================================================


@pytest.mark.unit
class TestStatistics:

    def test_quest_stats(self):
        quests = [SimpleNamespace(status=s) for s in ("active", "completed", "completed", "failed")]

        stats = quest_stats(quests)

        assert stats == {"total": 4, "active": 1, "completed": 2, "failed": 1, "completion_rate": 50.0}

    def test_quest_stats_empty(self):
        assert quest_stats([])["completion_rate"] == 0.0

    def test_daily_goal(self):
        assert daily_goal_progress(1, 3)["remaining"] == 2
        assert daily_goal_progress(5, 3) == {"progress": 100, "is_completed": True, "remaining": 0}

    def test_weekly_stats_only_counts_the_last_seven_days(self):
        today = date(2026, 3, 10)
        recent = SimpleNamespace(
            status="completed", ability_type="strength", exp_reward=25,
            created_at=datetime(2026, 3, 8, 9), completed_at=datetime(2026, 3, 9, 18),
        )
        old = SimpleNamespace(
            status="completed", ability_type="social", exp_reward=50,
            created_at=datetime(2026, 2, 1, 9), completed_at=datetime(2026, 2, 2, 9),
        )
        open_quest = SimpleNamespace(
            status="active", ability_type="health", exp_reward=10,
            created_at=datetime(2026, 3, 10, 7), completed_at=None,
        )
        completions = [
            SimpleNamespace(completed_on=date(2026, 3, 10), exp_gained=11),
            SimpleNamespace(completed_on=date(2026, 3, 1), exp_gained=10),
        ]

        stats = weekly_stats([recent, old, open_quest], completions, today, streak=4)

        assert stats["total_quests"] == 2
        assert stats["completed_quests"] == 1
        assert stats["habit_completions"] == 1
        assert stats["total_exp"] == 36
        assert stats["completion_rate"] == 50.0
        assert stats["favorite_ability"] == "strength"
        assert stats["streak"] == 4
        assert len(stats["daily"]) == 7
        assert stats["daily"][-1]["day"] == today

    def test_weekly_stats_buckets_quests_with_day_of(self):
        today = date(2026, 3, 10)
        late = SimpleNamespace(
            status="completed", ability_type="health", exp_reward=10,
            created_at=datetime(2026, 3, 9, 20), completed_at=datetime(2026, 3, 9, 22),
        )

        utc = weekly_stats([late], [], today)
        local = weekly_stats([late], [], today, day_of=lambda moment: (moment + timedelta(hours=9)).date())

        assert utc["daily"][-2]["completed_quests"] == 1
        assert local["daily"][-2]["completed_quests"] == 0
        assert local["daily"][-1]["completed_quests"] == 1
