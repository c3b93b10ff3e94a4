import datetime
import logging
from dataclasses import dataclass
from typing import Callable

from db import EntityStore, to_iso, utc_now
from entity_kinds import ACHIEVEMENTS as ACHIEVEMENT_KIND
from algorithms.math_tools import MathTools
from algorithms.weight_converter import WeightConverter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Achievement:
    id: str
    name: str
    tier: str
    requirement: int
    check_type: str


ACHIEVEMENTS: tuple[Achievement, ...] = (
    Achievement("streak_7", "Week Warrior", "bronze", 7, "streak"),
    Achievement("streak_14", "Fortnight Fighter", "bronze", 14, "streak"),
    Achievement("streak_30", "Monthly Machine", "silver", 30, "streak"),
    Achievement("streak_60", "Consistency King", "silver", 60, "streak"),
    Achievement("streak_90", "Quarter Champion", "gold", 90, "streak"),
    Achievement("streak_180", "Half-Year Hero", "gold", 180, "streak"),
    Achievement("streak_365", "Year of Iron", "gold", 365, "streak"),
    Achievement("workouts_10", "Getting Started", "bronze", 10, "total_workouts"),
    Achievement("workouts_25", "Building Habits", "bronze", 25, "total_workouts"),
    Achievement("workouts_50", "Half Century", "silver", 50, "total_workouts"),
    Achievement("workouts_100", "Century Club", "silver", 100, "total_workouts"),
    Achievement("workouts_250", "Gym Regular", "gold", 250, "total_workouts"),
    Achievement("workouts_500", "Iron Veteran", "gold", 500, "total_workouts"),
    Achievement("workouts_1000", "Legendary Lifter", "gold", 1000, "total_workouts"),
    Achievement("volume_10k", "First Ton", "bronze", 10_000, "total_volume"),
    Achievement("volume_50k", "Volume Builder", "bronze", 50_000, "total_volume"),
    Achievement("volume_100k", "100 Ton Club", "silver", 100_000, "total_volume"),
    Achievement("volume_500k", "Heavy Hitter", "gold", 500_000, "total_volume"),
    Achievement("volume_1m", "Million Pound Club", "gold", 1_000_000, "total_volume"),
    Achievement("prs_5", "PR Starter", "bronze", 5, "total_prs"),
    Achievement("prs_10", "Record Breaker", "bronze", 10, "total_prs"),
    Achievement("prs_25", "PR Machine", "silver", 25, "total_prs"),
    Achievement("prs_50", "Record Setter", "silver", 50, "total_prs"),
    Achievement("prs_100", "PR Legend", "gold", 100, "total_prs"),
    Achievement("perfect_week", "Perfect Week", "bronze", 1, "weekly_completion"),
    Achievement("perfect_month", "Perfect Month", "silver", 1, "monthly_completion"),
)

# Completion-based achievements need a training calendar and are never
# unlocked by stats alone.
_STAT_CHECKS = ("streak", "total_workouts", "total_volume", "total_prs")


class AchievementService:
    """Unlock achievements from workout history."""

    def __init__(
        self,
        store: EntityStore,
        clock: Callable[[], datetime.datetime] = utc_now,
    ) -> None:
        self.store = store
        self.clock = clock

    def workout_streak(self, logs: list[dict]) -> dict[str, int]:
        """Return current and record streaks of consecutive workout days."""
        if not logs:
            return {"current": 0, "record": 0}
        dates = sorted(datetime.date.fromisoformat(log["date"][:10]) for log in logs)
        record = 1
        current = 1
        for i in range(1, len(dates)):
            gap = (dates[i] - dates[i - 1]).days
            if gap == 1:
                current += 1
            elif gap > 1:
                record = max(record, current)
                current = 1
        record = max(record, current)
        if (self.clock().date() - dates[-1]).days > 1:
            current = 0
        return {"current": current, "record": record}

    @staticmethod
    def total_volume(logs: list[dict]) -> float:
        """Completed volume across all logs in kg."""
        sets = [
            (s.get("actualReps", 0), WeightConverter.to_kg(s.get("weight", 0), s.get("unit", "kg")))
            for log in logs
            for s in log.get("sets") or []
            if s.get("isComplete", True)
        ]
        return round(MathTools.volume(sets))

    async def stats(self, user_id: str) -> dict[str, float]:
        logs = await self.store.completed_logs(user_id)
        prs = await self.store.personal_records(user_id)
        return {
            "streak": self.workout_streak(logs)["current"],
            "total_workouts": len(logs),
            "total_volume": self.total_volume(logs),
            "total_prs": len(prs),
        }

    async def unlocked(self, user_id: str) -> dict[str, str]:
        rows = await self.store.fetch(ACHIEVEMENT_KIND, user_id)
        return {row["achievementId"]: row["unlockedAt"] for row in rows}

    async def evaluate(self, user_id: str) -> list[str]:
        """Unlock every newly earned achievement and return their ids."""
        stats = await self.stats(user_id)
        unlocked = await self.unlocked(user_id)
        now = to_iso(self.clock())
        earned = []
        for achievement in ACHIEVEMENTS:
            if achievement.id in unlocked or achievement.check_type not in _STAT_CHECKS:
                continue
            if stats[achievement.check_type] < achievement.requirement:
                continue
            await self.store.upsert(
                ACHIEVEMENT_KIND,
                user_id,
                {
                    "id": f"{user_id}:{achievement.id}",
                    "achievementId": achievement.id,
                    "unlockedAt": now,
                },
                now,
            )
            earned.append(achievement.id)
        if earned:
            logger.info("user %s unlocked %s", user_id, ", ".join(earned))
        return earned

    async def progress(self, user_id: str) -> list[dict]:
        stats = await self.stats(user_id)
        unlocked = await self.unlocked(user_id)
        out = []
        for achievement in ACHIEVEMENTS:
            value = stats.get(achievement.check_type, 0)
            is_unlocked = achievement.id in unlocked
            out.append(
                {
                    "achievementId": achievement.id,
                    "name": achievement.name,
                    "tier": achievement.tier,
                    "currentValue": value,
                    "isUnlocked": is_unlocked,
                    "unlockedAt": unlocked.get(achievement.id),
                    "percentComplete": (
                        100
                        if is_unlocked
                        else round(MathTools.percent(value, achievement.requirement))
                    ),
                }
            )
        return out
