"""
Reward economy: experience awards, levels and the daily streak.

Levels are never stored on their own; they are always derived from the
experience total with compute_level().
"""
from dataclasses import replace
from datetime import date, datetime
from typing import Callable, Optional

from goalcoach import config
from goalcoach.core.models import (
    CompletionOutcome,
    Difficulty,
    Goal,
    GoalStatus,
    UserEconomy,
    VerificationResult,
    compute_level,
    utcnow,
)
from goalcoach.utils.logging import log

DEFAULT_EXPERIENCE = {
    Difficulty.EASY: 50,
    Difficulty.MEDIUM: 75,
    Difficulty.HARD: 100,
}

MIN_EXPERIENCE = 10
MAX_EXPERIENCE = 500

__all__ = [
    "DEFAULT_EXPERIENCE",
    "RewardCalculator",
    "compute_level",
    "default_experience",
    "experience_for_completion",
    "time_multiplier",
    "update_daily_streak",
]


def default_experience(difficulty: Difficulty) -> int:
    return DEFAULT_EXPERIENCE[difficulty]


def clamp_experience(value: int) -> int:
    return max(MIN_EXPERIENCE, min(MAX_EXPERIENCE, int(value)))


def time_multiplier(goal: Goal, completed_at: datetime) -> float:
    """
    Bonus for finishing early, penalty for finishing late.
    Based on the share of the goal's window still left at completion.
    """
    if goal.deadline is None:
        return 1.0
    if completed_at >= goal.deadline:
        return 0.7

    window = (goal.deadline - goal.created_at).total_seconds()
    if window <= 0:
        return 1.0
    remaining = (goal.deadline - completed_at).total_seconds() / window * 100
    if remaining > 75:
        return 1.5
    if remaining > 50:
        return 1.3
    if remaining > 25:
        return 1.1
    return 1.0


def experience_for_completion(goal: Goal, completed_at: datetime, time_bonus: bool = False) -> int:
    if not time_bonus:
        return goal.experience_value
    return round(goal.experience_value * time_multiplier(goal, completed_at))


def update_daily_streak(economy: UserEconomy, today: Optional[date] = None) -> UserEconomy:
    """
    Same day keeps the streak, the next day extends it, any gap resets it to 1.
    """
    today = today or date.today()
    last = economy.last_activity_date

    if last is None:
        streak = 1
    else:
        gap = (today - last).days
        if gap <= 0:
            streak = max(economy.daily_streak, 1)
        elif gap == 1:
            streak = economy.daily_streak + 1
        else:
            streak = 1

    return replace(economy, daily_streak=streak, last_activity_date=max(today, last) if last else today)


class RewardCalculator:
    """
    Runs the completion path for an accepted goal.

    Verification is delegated to `verify(description, justification)`. A
    rejected justification is a normal outcome: the goal stays accepted and the
    economy is untouched, and the caller may retry as often as it likes.
    """

    def __init__(
        self,
        verify: Callable[[str, str], VerificationResult],
        time_bonus: bool = config.TIME_BONUS_ENABLED,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.verify = verify
        self.time_bonus = time_bonus
        self.clock = clock

    def complete_goal(self, goal: Goal, justification: str, economy: UserEconomy) -> CompletionOutcome:
        if goal.status is not GoalStatus.ACCEPTED:
            raise ValueError(f"Goal {goal.id} is {goal.status.value}, only accepted goals can be completed")

        justification = (justification or "").strip()
        if not justification:
            return CompletionOutcome(False, "Tell me what you did to complete this goal.")

        result = self.verify(goal.description, justification)
        if not result.verified:
            log("Rewards", f"Verification declined for goal {goal.id[:8]}", "WARNING")
            return CompletionOutcome(False, result.feedback or "Needs more detail.")

        completed_at = self.clock()
        awarded = experience_for_completion(goal, completed_at, self.time_bonus)
        completed_goal = replace(
            goal,
            status=GoalStatus.COMPLETED,
            completed_at=completed_at,
            completion_justification=justification,
            experience_value=awarded,
        )
        new_total = economy.total_experience + awarded
        log("Rewards", f"+{awarded} XP -> {new_total} (level {compute_level(new_total)})", "SUCCESS")
        return CompletionOutcome(
            verified=True,
            feedback=result.feedback or "Verified",
            experience_awarded=awarded,
            economy=economy.with_experience(new_total),
            goal=completed_goal,
        )
