"""Declarative description of every record kind that travels with sync.

Push, pull, local export and local import iterate over ``ENTITY_KINDS``
instead of branching per kind. Each entry names its table, its data
columns, which of them a later push may overwrite, and how the kind is
filtered on pull.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field

from pydantic.alias_generators import to_camel


class UpsertPolicy(str, enum.Enum):
    OVERWRITE = "overwrite"
    INSERT_ONLY = "insert_only"


@dataclass(frozen=True)
class EntityKind:
    key: str
    table: str
    columns: tuple[str, ...]
    mutable: tuple[str, ...]
    json_columns: frozenset[str] = field(default_factory=frozenset)
    bool_columns: frozenset[str] = field(default_factory=frozenset)
    policy: UpsertPolicy = UpsertPolicy.OVERWRITE
    incremental: bool = True
    singleton: bool = False

    def field_name(self, column: str) -> str:
        return to_camel(column)

    def to_row(self, record: dict) -> dict:
        """Return the data columns present in a camelCase ``record``."""
        row = {}
        for col in self.columns:
            key = self.field_name(col)
            if key in record:
                row[col] = record[key]
            elif col in record:
                row[col] = record[col]
        return row


EXERCISES = EntityKind(
    key="exercises",
    table="exercises",
    columns=("name", "video_url", "muscle_groups", "equipment", "is_custom"),
    mutable=("name", "video_url", "muscle_groups", "equipment", "is_custom"),
    json_columns=frozenset({"muscle_groups"}),
    bool_columns=frozenset({"is_custom"}),
)

PROGRAMS = EntityKind(
    key="programs",
    table="programs",
    columns=("name", "description", "is_active"),
    mutable=("name", "description", "is_active"),
    bool_columns=frozenset({"is_active"}),
)

TRAINING_DAYS = EntityKind(
    key="trainingDays",
    table="training_days",
    columns=("program_id", "name", "day_number", "warmup", "supersets", "finisher"),
    mutable=("name", "day_number", "warmup", "supersets", "finisher"),
    json_columns=frozenset({"warmup", "supersets", "finisher"}),
)

WORKOUT_LOGS = EntityKind(
    key="workoutLogs",
    table="workout_logs",
    columns=(
        "date",
        "program_id",
        "day_id",
        "day_name",
        "sets",
        "start_time",
        "end_time",
        "duration",
        "notes",
        "is_complete",
    ),
    mutable=("sets", "end_time", "duration", "notes", "is_complete"),
    json_columns=frozenset({"sets"}),
    bool_columns=frozenset({"is_complete"}),
)

PERSONAL_RECORDS = EntityKind(
    key="personalRecords",
    table="personal_records",
    columns=(
        "exercise_id",
        "exercise_name",
        "weight",
        "reps",
        "unit",
        "date",
        "workout_log_id",
    ),
    mutable=("weight", "reps"),
)

USER_SETTINGS = EntityKind(
    key="settings",
    table="user_settings",
    columns=(
        "weight_unit",
        "default_rest_seconds",
        "sound_enabled",
        "auto_progress_weight",
        "progression_increment",
        "auto_start_rest_timer",
    ),
    mutable=(
        "weight_unit",
        "default_rest_seconds",
        "sound_enabled",
        "auto_progress_weight",
        "progression_increment",
        "auto_start_rest_timer",
    ),
    bool_columns=frozenset(
        {"sound_enabled", "auto_progress_weight", "auto_start_rest_timer"}
    ),
    incremental=False,
    singleton=True,
)

ONBOARDING_PROFILES = EntityKind(
    key="onboardingProfile",
    table="onboarding_profiles",
    columns=(
        "goals",
        "experience_level",
        "training_days_per_week",
        "equipment",
        "height_cm",
        "weight_kg",
        "body_fat_percent",
        "injuries",
        "has_completed_onboarding",
        "skipped_onboarding",
        "completed_at",
    ),
    mutable=(
        "goals",
        "experience_level",
        "training_days_per_week",
        "equipment",
        "height_cm",
        "weight_kg",
        "body_fat_percent",
        "injuries",
        "has_completed_onboarding",
        "skipped_onboarding",
        "completed_at",
    ),
    json_columns=frozenset({"goals", "injuries"}),
    bool_columns=frozenset({"has_completed_onboarding", "skipped_onboarding"}),
    incremental=False,
    singleton=True,
)

# Unlocked achievements never change, so the first write wins.
ACHIEVEMENTS = EntityKind(
    key="achievements",
    table="achievements",
    columns=("achievement_id", "unlocked_at"),
    mutable=(),
    policy=UpsertPolicy.INSERT_ONLY,
    incremental=False,
)

ENTITY_KINDS: tuple[EntityKind, ...] = (
    EXERCISES,
    PROGRAMS,
    TRAINING_DAYS,
    WORKOUT_LOGS,
    PERSONAL_RECORDS,
    USER_SETTINGS,
    ONBOARDING_PROFILES,
    ACHIEVEMENTS,
)


def records_for(kind: EntityKind, payload: dict) -> list[dict]:
    """Return the records a payload carries for ``kind`` as a list."""
    value = payload.get(kind.key)
    if value is None:
        return []
    if isinstance(value, dict):
        return [value]
    return list(value)
