import os
import sys
import datetime
import json

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import SessionSnapshotRepository
from models import Phase, Position, SetLog, WorkoutLog, WorkoutSession
from session_store import SessionContinuityStore, SESSION_PREFIX, PENDING_LOG_PREFIX


class Clock:
    def __init__(self) -> None:
        self.now = datetime.datetime(2024, 2, 1, 9, 0, tzinfo=datetime.timezone.utc)

    def __call__(self):
        return self.now


def make_store(tmp_path):
    clock = Clock()
    repo = SessionSnapshotRepository(str(tmp_path / "local.db"))
    return SessionContinuityStore(repo, clock=clock), repo, clock


def in_progress_session():
    return WorkoutSession(
        day_id="day-1",
        phase=Phase.REST,
        position=Position(superset_index=0, exercise_index=1, set_number=2),
        completed_sets=[
            SetLog(
                id="s1",
                exercise_id="a1",
                exercise_name="Bench",
                superset_label="A",
                set_number=1,
                target_reps=10,
                actual_reps=9,
                weight=80.0,
                rpe=8,
                completed_at="2024-02-01T08:55:00+00:00",
            )
        ],
        start_time="2024-02-01T08:30:00+00:00",
        warmup_checked=[True, True],
        current_volume=720.0,
    )


def test_resume_restores_session_verbatim(tmp_path):
    store, repo, _clock = make_store(tmp_path)
    session = in_progress_session()
    assert store.save(session)

    restarted = SessionContinuityStore(
        SessionSnapshotRepository(repo.db_path), clock=store.clock
    )
    restored = restarted.load("day-1")
    assert restored == session
    assert restored.completed_sets[0].rpe == 8


def test_preview_and_complete_are_not_saved(tmp_path):
    store, repo, _clock = make_store(tmp_path)
    assert not store.save(WorkoutSession(day_id="day-1"))
    assert not store.save(WorkoutSession(day_id="day-1", phase=Phase.COMPLETE))
    assert repo.load(SESSION_PREFIX + "day-1") is None


def test_snapshot_expires_after_six_hours(tmp_path):
    store, repo, clock = make_store(tmp_path)
    store.save(in_progress_session())
    clock.now += datetime.timedelta(hours=5, minutes=59)
    assert store.load("day-1") is not None
    clock.now += datetime.timedelta(minutes=1)
    assert store.load("day-1") is None
    assert repo.load(SESSION_PREFIX + "day-1") is None


def test_corrupt_snapshot_is_deleted(tmp_path):
    store, repo, _clock = make_store(tmp_path)
    repo.save(SESSION_PREFIX + "day-1", "{not json", "2024-02-01T09:00:00+00:00")
    assert store.load("day-1") is None
    assert repo.load(SESSION_PREFIX + "day-1") is None

    repo.save(
        SESSION_PREFIX + "day-1",
        json.dumps({"session": {"phase": "rest"}, "capturedAt": "2024-02-01T09:00:00+00:00"}),
        "2024-02-01T09:00:00+00:00",
    )
    assert store.load("day-1") is None


def test_non_resumable_phase_in_slot_is_deleted(tmp_path):
    store, repo, _clock = make_store(tmp_path)
    payload = {
        "session": WorkoutSession(day_id="day-1", phase=Phase.COMPLETE).dump(),
        "capturedAt": "2024-02-01T09:00:00+00:00",
    }
    repo.save(SESSION_PREFIX + "day-1", json.dumps(payload), "2024-02-01T09:00:00+00:00")
    assert store.load("day-1") is None
    assert repo.load(SESSION_PREFIX + "day-1") is None


def test_held_log_slot(tmp_path):
    store, repo, _clock = make_store(tmp_path)
    assert store.held_log("day-1") is None
    log = WorkoutLog(
        id="log-1",
        date="2024-02-01",
        program_id="p-1",
        day_id="day-1",
        day_name="Upper",
        sets=in_progress_session().completed_sets,
        start_time="2024-02-01T08:30:00+00:00",
        end_time="2024-02-01T09:30:00+00:00",
        duration=60,
    )
    store.hold_log(log)
    assert store.held_log("day-1") == log
    store.release_log("day-1")
    assert repo.load(PENDING_LOG_PREFIX + "day-1") is None


def test_snapshot_next_to_held_log_is_not_resumable(tmp_path):
    store, repo, _clock = make_store(tmp_path)
    session = in_progress_session()
    store.save(session)
    store.hold_log(
        WorkoutLog(
            id="log-1",
            date="2024-02-01",
            program_id="p-1",
            day_id="day-1",
            day_name="Upper",
            sets=session.completed_sets,
            start_time="2024-02-01T08:30:00+00:00",
            end_time="2024-02-01T09:00:00+00:00",
            duration=30,
        )
    )
    assert store.load("day-1") is None
    assert repo.load(SESSION_PREFIX + "day-1") is None
    assert store.held_log("day-1").id == "log-1"
