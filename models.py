"""Training-day definitions and the in-progress workout session."""
import enum
import re
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Phase(str, enum.Enum):
    PREVIEW = "preview"
    WARMUP = "warmup"
    EXERCISE = "exercise"
    REST = "rest"
    FINISHER = "finisher"
    COMPLETE = "complete"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Position(CamelModel):
    superset_index: int = 0
    exercise_index: int = 0
    set_number: int = 1


class SetLog(CamelModel):
    id: str
    exercise_id: str
    exercise_name: str = ""
    superset_label: str = ""
    set_number: int
    target_reps: int
    actual_reps: int
    weight: float
    unit: Literal["kg", "lbs"] = "kg"
    rpe: Optional[int] = Field(default=None, ge=1, le=10)
    is_complete: bool = True
    completed_at: str

    @property
    def volume(self) -> float:
        return self.weight * self.actual_reps


class WarmupExercise(CamelModel):
    exercise_id: str
    duration: Optional[int] = None
    reps: Optional[int] = None


class SupersetExercise(CamelModel):
    exercise_id: str
    sets: int = Field(default=3, ge=1)
    reps: str = "10"
    tempo: Optional[str] = None
    rest_seconds: int = Field(default=90, ge=0)


class Superset(CamelModel):
    id: str
    label: str = ""
    exercises: List[SupersetExercise] = Field(min_length=1)


class FinisherExercise(CamelModel):
    exercise_id: str
    duration: Optional[int] = None
    notes: Optional[str] = None


class TrainingDay(CamelModel):
    id: str
    program_id: str = ""
    name: str = ""
    day_number: int = 1
    warmup: List[WarmupExercise] = Field(default_factory=list)
    supersets: List[Superset] = Field(default_factory=list)
    finisher: List[FinisherExercise] = Field(default_factory=list)

    def exercise_at(self, position: Position) -> SupersetExercise:
        return self.supersets[position.superset_index].exercises[
            position.exercise_index
        ]


class WorkoutSession(CamelModel):
    day_id: str
    phase: Phase = Phase.PREVIEW
    position: Position = Field(default_factory=Position)
    completed_sets: List[SetLog] = Field(default_factory=list)
    start_time: Optional[str] = None
    warmup_checked: List[bool] = Field(default_factory=list)
    finisher_checked: List[bool] = Field(default_factory=list)
    current_volume: float = 0.0


class WorkoutLog(CamelModel):
    id: str
    date: str
    program_id: str
    day_id: str
    day_name: str
    sets: List[SetLog] = Field(default_factory=list)
    start_time: str
    end_time: Optional[str] = None
    duration: Optional[int] = None
    notes: Optional[str] = None
    is_complete: bool = True


_LEADING_INT = re.compile(r"\s*(\d+)")


def target_reps(scheme: str, set_number: int) -> int:
    """Return the target reps for ``set_number`` (1-based) of a rep scheme.

    ``"10,10,8,8"`` gives 8 for set 3, ``"10-12"`` gives 10 for any set and
    a scheme with fewer items than sets falls back to its first item.
    """
    items = (scheme or "").split(",")
    candidate = ""
    if 1 <= set_number <= len(items):
        candidate = items[set_number - 1].strip()
    if not candidate:
        candidate = items[0].strip()
    match = _LEADING_INT.match(candidate)
    return int(match.group(1)) if match else 10


def total_planned_sets(day: TrainingDay) -> int:
    return sum(ex.sets for ss in day.supersets for ex in ss.exercises)


def next_position(day: TrainingDay, position: Position) -> Optional[Position]:
    """Position after ``position`` or ``None`` once every superset is done.

    Exercises rotate within a round; a round is one set of each exercise.
    An exercise with fewer sets than the longest one in its superset sits
    out the rounds beyond its own count.
    """
    si = position.superset_index
    ei = position.exercise_index + 1
    set_number = position.set_number
    while si < len(day.supersets):
        exercises = day.supersets[si].exercises
        while ei < len(exercises):
            if set_number <= exercises[ei].sets:
                return Position(
                    superset_index=si, exercise_index=ei, set_number=set_number
                )
            ei += 1
        ei = 0
        set_number += 1
        if set_number > max(ex.sets for ex in exercises):
            si += 1
            set_number = 1
    return None
