from __future__ import annotations
import datetime
import uuid
from typing import Callable, Optional

from db import EntityStore, to_iso, utc_now
from entity_kinds import PERSONAL_RECORDS
from settings_schema import UserSettingsSchema, load_user_settings
from algorithms.math_tools import MathTools


class ProgressionAdvisor:
    """Suggest working weights from logged history and detect personal records."""

    HISTORY_WINDOW = 50
    DEFAULT_RPE = 7
    MAX_EFFORT_RPE = 9

    def __init__(
        self,
        store: EntityStore,
        clock: Callable[[], datetime.datetime] = utc_now,
    ) -> None:
        self.store = store
        self.clock = clock

    async def settings(self, user_id: str) -> UserSettingsSchema:
        return load_user_settings(await self.store.user_settings(user_id))

    async def day_suggestion(
        self, user_id: str, exercise_id: str, day_id: str, set_number: int
    ) -> Optional[dict]:
        """Suggest a weight for one set of a training day.

        Looks only at the most recent completed log of the same day. If the
        matching set reached its target the weight goes up by the user's
        progression increment, otherwise it is repeated.
        """
        logs = await self.store.completed_logs(user_id, day_id=day_id, limit=1)
        if not logs:
            return None
        previous = next(
            (
                s
                for s in logs[0].get("sets") or []
                if s.get("exerciseId") == exercise_id
                and s.get("setNumber") == set_number
            ),
            None,
        )
        if previous is None:
            return None
        settings = await self.settings(user_id)
        hit_target = previous["actualReps"] >= previous["targetReps"]
        weight = previous["weight"]
        if hit_target:
            weight += settings.progression_increment
        return {
            "weight": weight,
            "lastWeight": previous["weight"],
            "lastReps": previous["actualReps"],
            "targetReps": previous["targetReps"],
            "hitTarget": hit_target,
            "unit": previous.get("unit", settings.weight_unit),
        }

    async def global_suggestion(self, user_id: str, exercise_id: str) -> Optional[dict]:
        """Summarize the latest completed log that trained ``exercise_id``."""
        logs = await self.store.completed_logs(user_id, limit=self.HISTORY_WINDOW)
        for log in logs:
            sets = [s for s in log.get("sets") or [] if s.get("exerciseId") == exercise_id]
            if not sets:
                continue
            settings = await self.settings(user_id)
            best = max(sets, key=lambda s: s["weight"])
            last = sorted(sets, key=lambda s: s.get("completedAt") or "")[-1]
            last_rpe = last.get("rpe") or self.DEFAULT_RPE
            hit_target = best["actualReps"] >= best["targetReps"]
            nudge = (
                hit_target
                and settings.auto_progress_weight
                and last_rpe < self.MAX_EFFORT_RPE
            )
            return {
                "lastWeight": best["weight"],
                "lastReps": best["actualReps"],
                "lastRpe": last_rpe,
                "hitTarget": hit_target,
                "suggestedWeight": (
                    best["weight"] + settings.progression_increment if nudge else None
                ),
                "unit": best.get("unit", settings.weight_unit),
                "date": log.get("date"),
            }
        return None

    async def is_personal_record(
        self,
        user_id: str,
        exercise_id: str,
        weight: float,
        reps: int,
        exercise_name: str = "",
        unit: str = "kg",
        workout_log_id: str | None = None,
        date: str | None = None,
    ) -> bool:
        """Return ``True`` and store a new PR row if the set beats every stored row.

        Earlier rows are kept, so an exercise accumulates its PR history.
        """
        existing = await self.store.personal_records(user_id, exercise_id)
        if not all(
            MathTools.beats(weight, reps, pr["weight"], pr["reps"]) for pr in existing
        ):
            return False
        now = self.clock()
        await self.store.upsert(
            PERSONAL_RECORDS,
            user_id,
            {
                "id": str(uuid.uuid4()),
                "exerciseId": exercise_id,
                "exerciseName": exercise_name,
                "weight": weight,
                "reps": reps,
                "unit": unit,
                "date": date or now.date().isoformat(),
                "workoutLogId": workout_log_id,
            },
            to_iso(now),
        )
        return True
