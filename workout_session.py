"""Phase-by-phase driver for one workout of a training day.

Every transition writes the session snapshot to the continuity store
before returning, so an interrupted workout can be resumed from the last
completed step. Completion turns the session into a workout log and holds
that log durably until it has been persisted.
"""
import datetime
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from db import EntityStore, parse_instant, to_iso, utc_now
from entity_kinds import WORKOUT_LOGS
from errors import InvalidTransition
from models import (
    Phase,
    Position,
    SetLog,
    TrainingDay,
    WorkoutLog,
    WorkoutSession,
    next_position,
    target_reps,
    total_planned_sets,
)
from progression_service import ProgressionAdvisor
from session_store import SessionContinuityStore
from algorithms.math_tools import MathTools

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    committed: bool
    log: WorkoutLog
    personal_records: list[str] = field(default_factory=list)
    error: Optional[str] = None


class WorkoutSessionMachine:
    """State machine for ``preview → warmup → exercise ⇄ rest → finisher → complete``."""

    def __init__(
        self,
        day: TrainingDay,
        user_id: str,
        store: EntityStore,
        advisor: ProgressionAdvisor,
        continuity: SessionContinuityStore,
        scheduler=None,
        achievements=None,
        exercise_names: dict[str, str] | None = None,
        unit: str = "kg",
        clock: Callable[[], datetime.datetime] = utc_now,
    ) -> None:
        if not day.supersets:
            raise ValueError(f"training day {day.id} has no supersets")
        self.day = day
        self.user_id = user_id
        self.store = store
        self.advisor = advisor
        self.continuity = continuity
        self.scheduler = scheduler
        self.achievements = achievements
        self.exercise_names = exercise_names or {}
        self.unit = unit
        self.clock = clock
        self.session = self._fresh_session()
        self.pending_log: Optional[WorkoutLog] = None
        self.last_commit: Optional[CommitResult] = None

    def _fresh_session(self) -> WorkoutSession:
        return WorkoutSession(
            day_id=self.day.id,
            warmup_checked=[False] * len(self.day.warmup),
            finisher_checked=[False] * len(self.day.finisher),
        )

    @property
    def phase(self) -> Phase:
        return self.session.phase

    def _require(self, *phases: Phase) -> None:
        if self.session.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise InvalidTransition(
                f"phase is {self.session.phase.value}, expected one of: {allowed}"
            )

    def _persist(self) -> None:
        self.continuity.save(self.session)

    # start-up

    def check_resume(self) -> Optional[WorkoutSession]:
        """Return a resumable snapshot for this day, if one exists."""
        return self.continuity.load(self.day.id)

    def resume(self, snapshot: WorkoutSession | None = None) -> WorkoutSession:
        self._require(Phase.PREVIEW)
        snapshot = snapshot or self.check_resume()
        if snapshot is None:
            raise InvalidTransition("no session to resume")
        self.session = snapshot.model_copy(deep=True)
        logger.info(
            "resumed day %s in phase %s with %d sets",
            self.day.id,
            self.session.phase.value,
            len(self.session.completed_sets),
        )
        return self.session

    def discard_snapshot(self) -> None:
        self.continuity.delete(self.day.id)

    def begin(self) -> None:
        self._require(Phase.PREVIEW)
        self.session.start_time = to_iso(self.clock())
        self.session.position = Position()
        self.session.phase = Phase.WARMUP if self.day.warmup else Phase.EXERCISE
        self._persist()

    # warm-up

    def toggle_warmup(self, index: int) -> None:
        self._require(Phase.WARMUP)
        checked = self.session.warmup_checked
        if not 0 <= index < len(checked):
            raise ValueError(f"no warm-up item {index}")
        checked[index] = not checked[index]
        self._persist()

    def start_main_work(self) -> None:
        self._require(Phase.WARMUP)
        if not all(self.session.warmup_checked):
            raise InvalidTransition("warm-up is not finished")
        self.session.phase = Phase.EXERCISE
        self._persist()

    # main work

    async def complete_set(
        self, weight: float, reps: int, rpe: int | None = None
    ) -> SetLog:
        """Log the set at the current position and advance."""
        self._require(Phase.EXERCISE)
        if weight < 0 or reps < 0:
            raise ValueError("weight and reps must be non-negative")
        position = self.session.position
        superset = self.day.supersets[position.superset_index]
        exercise = superset.exercises[position.exercise_index]
        set_log = SetLog(
            id=str(uuid.uuid4()),
            exercise_id=exercise.exercise_id,
            exercise_name=self.exercise_names.get(exercise.exercise_id, ""),
            superset_label=superset.label,
            set_number=position.set_number,
            target_reps=target_reps(exercise.reps, position.set_number),
            actual_reps=reps,
            weight=weight,
            unit=self.unit,
            rpe=rpe,
            completed_at=to_iso(self.clock()),
        )
        self.session.completed_sets.append(set_log)
        self.session.current_volume += set_log.volume

        following = next_position(self.day, position)
        if following is not None:
            self.session.position = following
            self.session.phase = Phase.REST
            self._persist()
        elif self.day.finisher:
            self.session.phase = Phase.FINISHER
            self._persist()
        else:
            await self._complete()
        return set_log

    def rest_seconds(self) -> int:
        return self.day.exercise_at(self.session.position).rest_seconds

    def finish_rest(self) -> None:
        self._require(Phase.REST)
        self.session.phase = Phase.EXERCISE
        self._persist()

    skip_rest = finish_rest

    def edit_set(
        self,
        set_id: str,
        weight: float | None = None,
        reps: int | None = None,
        rpe: int | None = None,
    ) -> SetLog:
        """Change weight, reps or RPE of a logged set.

        ``current_volume`` moves by the difference between the new and the
        old set volume; phase and position are untouched.
        """
        self._require(Phase.EXERCISE, Phase.REST, Phase.FINISHER)
        sets = self.session.completed_sets
        index = next((i for i, s in enumerate(sets) if s.id == set_id), None)
        if index is None:
            raise KeyError(set_id)
        old = sets[index]
        values = old.model_dump()
        if weight is not None:
            values["weight"] = weight
        if reps is not None:
            values["actual_reps"] = reps
        if rpe is not None:
            values["rpe"] = rpe
        new = SetLog(**values)
        sets[index] = new
        self.session.current_volume += MathTools.volume_delta(
            old.weight, old.actual_reps, new.weight, new.actual_reps
        )
        self._persist()
        return new

    # finisher

    def toggle_finisher(self, index: int) -> None:
        self._require(Phase.FINISHER)
        checked = self.session.finisher_checked
        if not 0 <= index < len(checked):
            raise ValueError(f"no finisher item {index}")
        checked[index] = not checked[index]
        self._persist()

    async def finish_finisher(self) -> CommitResult:
        self._require(Phase.FINISHER)
        if not all(self.session.finisher_checked):
            raise InvalidTransition("finisher is not finished")
        return await self._complete()

    # completion

    async def discard(self, persist: bool = False) -> Optional[CommitResult]:
        """End the workout early.

        Without logged sets the session is dropped. Otherwise ``persist``
        chooses between dropping it and completing it as logged so far.
        """
        self._require(Phase.WARMUP, Phase.EXERCISE, Phase.REST, Phase.FINISHER)
        if self.session.completed_sets and persist:
            return await self._complete()
        self.discard_snapshot()
        self.session = self._fresh_session()
        return None

    def _build_log(self) -> WorkoutLog:
        now = self.clock()
        started = parse_instant(self.session.start_time) if self.session.start_time else now
        return WorkoutLog(
            id=str(uuid.uuid4()),
            date=started.date().isoformat(),
            program_id=self.day.program_id,
            day_id=self.day.id,
            day_name=self.day.name,
            sets=list(self.session.completed_sets),
            start_time=to_iso(started),
            end_time=to_iso(now),
            duration=round((now - started).total_seconds() / 60),
            is_complete=True,
        )

    async def _complete(self) -> CommitResult:
        self.session.phase = Phase.COMPLETE
        log = self._build_log()
        self.pending_log = log
        return await self._commit(log)

    async def _commit(self, log: WorkoutLog) -> CommitResult:
        try:
            self.continuity.hold_log(log)
            self.continuity.delete(self.day.id)
            await self.store.upsert(
                WORKOUT_LOGS, self.user_id, log.dump(), to_iso(self.clock())
            )
        except (sqlite3.Error, OSError) as exc:
            logger.error("could not save workout log %s: %s", log.id, exc)
            self.last_commit = CommitResult(committed=False, log=log, error=str(exc))
            return self.last_commit

        records = await self._record_personal_records(log)
        self.continuity.release_log(self.day.id)
        self.pending_log = None
        if self.scheduler is not None:
            self.scheduler.push_after_workout()
        if self.achievements is not None:
            try:
                await self.achievements.evaluate(self.user_id)
            except sqlite3.Error as exc:
                logger.warning("achievement evaluation failed: %s", exc)
        self.last_commit = CommitResult(committed=True, log=log, personal_records=records)
        logger.info(
            "workout %s saved with %d sets, %d new PRs",
            log.id,
            len(log.sets),
            len(records),
        )
        return self.last_commit

    async def _record_personal_records(self, log: WorkoutLog) -> list[str]:
        best: dict[str, SetLog] = {}
        for s in log.sets:
            current = best.get(s.exercise_id)
            if current is None or (s.weight, s.actual_reps) > (
                current.weight,
                current.actual_reps,
            ):
                best[s.exercise_id] = s
        records = []
        for exercise_id, s in best.items():
            try:
                is_record = await self.advisor.is_personal_record(
                    self.user_id,
                    exercise_id,
                    s.weight,
                    s.actual_reps,
                    exercise_name=s.exercise_name,
                    unit=s.unit,
                    workout_log_id=log.id,
                    date=log.date,
                )
            except sqlite3.Error as exc:
                logger.warning("PR check for %s failed: %s", exercise_id, exc)
                continue
            if is_record:
                records.append(exercise_id)
        return records

    async def retry_commit(self) -> CommitResult:
        if self.pending_log is None:
            raise InvalidTransition("no workout log waiting to be saved")
        return await self._commit(self.pending_log)

    async def recover_pending_commit(self) -> Optional[CommitResult]:
        """Save a log held over from an interrupted completion, if any."""
        log = self.continuity.held_log(self.day.id)
        if log is None:
            return None
        logger.info("recovering held workout log %s", log.id)
        self.pending_log = log
        self.session.phase = Phase.COMPLETE
        return await self._commit(log)

    # read-only helpers

    async def suggestion(self) -> Optional[dict]:
        exercise = self.day.exercise_at(self.session.position)
        return await self.advisor.day_suggestion(
            self.user_id,
            exercise.exercise_id,
            self.day.id,
            self.session.position.set_number,
        )

    def progress(self) -> float:
        return MathTools.percent(
            len(self.session.completed_sets), total_planned_sets(self.day)
        )
