import logging
import sqlite3

from db import GoalRepository, SetLogRepository, utc_now
from tools import MathTools

logger = logging.getLogger(__name__)


class GoalService:
    """Track strength goals against the heaviest weight ever lifted."""

    def __init__(self, goal_repo: GoalRepository, set_repo: SetLogRepository) -> None:
        self.goals = goal_repo
        self.sets = set_repo

    def add(self, exercise_id: int, target_weight: float) -> int:
        return self.goals.add(exercise_id, float(target_weight))

    def delete(self, goal_id: int) -> None:
        self.goals.delete(goal_id)

    def list_with_progress(self) -> list[dict]:
        """Return every goal with its current best and progress percentage.

        Goals reached for the first time are marked achieved as a side
        effect.
        """
        try:
            goals = self.goals.fetch_all_goals()
            current = self.sets.max_weights(sorted({g["exercise_id"] for g in goals}))
        except sqlite3.Error:
            logger.exception("Error fetching goals")
            return []

        result = []
        for goal in goals:
            best = current.get(goal["exercise_id"], 0.0)
            progress = MathTools.goal_progress(best, goal["target_weight"])
            if best >= goal["target_weight"] and not goal["achieved"]:
                goal["achieved_at"] = self.goals.mark_achieved(goal["id"], utc_now())
                goal["achieved"] = True
                logger.info("Goal %s achieved for %s", goal["id"], goal["exercise"])
            result.append({**goal, "current": best, "progress": progress})
        return result
