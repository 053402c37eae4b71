from datetime import datetime
from typing import Iterable, Optional

from goalcoach.core.models import Difficulty, Goal, utcnow


def goal_stats(goals: Iterable[Goal], now: Optional[datetime] = None) -> dict:
    """
    Summary numbers for the goal panel and the coach's greetings.
    """
    now = now or utcnow()
    goals = list(goals)
    completed = [g for g in goals if g.completed]
    pending = [g for g in goals if not g.completed]

    return {
        "total": len(goals),
        "completed": len(completed),
        "pending": len(pending),
        "overdue": sum(1 for g in pending if g.is_overdue(now)),
        "completion_rate": round(len(completed) / len(goals) * 100) if goals else 0,
        "total_xp_earned": sum(g.experience_value for g in completed),
        "by_difficulty": {d.value: sum(1 for g in goals if g.difficulty is d) for d in Difficulty},
        "completed_by_difficulty": {d.value: sum(1 for g in completed if g.difficulty is d) for d in Difficulty},
    }
