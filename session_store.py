import datetime
import json
import logging
from typing import Callable, Optional

from pydantic import ValidationError

from db import SessionSnapshotRepository, parse_instant, to_iso, utc_now
from errors import SnapshotCorrupt, StaleSnapshot
from models import Phase, WorkoutLog, WorkoutSession

logger = logging.getLogger(__name__)

SESSION_PREFIX = "setflow-workout-session-"
PENDING_LOG_PREFIX = "setflow-pending-log-"
SNAPSHOT_MAX_AGE = datetime.timedelta(hours=6)

_NOT_RESUMABLE = (Phase.PREVIEW, Phase.COMPLETE)


class SessionContinuityStore:
    """Durable per-day snapshot of an in-progress workout.

    Writes are synchronous so a snapshot is on disk before the transition
    that produced it returns. A second slot per day holds a finished
    workout log until it has been persisted.
    """

    def __init__(
        self,
        repo: SessionSnapshotRepository,
        clock: Callable[[], datetime.datetime] = utc_now,
        max_age: datetime.timedelta = SNAPSHOT_MAX_AGE,
    ) -> None:
        self.repo = repo
        self.clock = clock
        self.max_age = max_age

    def save(self, session: WorkoutSession) -> bool:
        if session.phase in _NOT_RESUMABLE:
            return False
        captured_at = to_iso(self.clock())
        payload = json.dumps({"session": session.dump(), "capturedAt": captured_at})
        self.repo.save(SESSION_PREFIX + session.day_id, payload, captured_at)
        return True

    def load(self, day_id: str) -> Optional[WorkoutSession]:
        """Return the resumable snapshot for ``day_id`` or ``None``.

        Corrupt, expired and non-resumable slots are deleted, and so is
        any slot left next to a held log: that workout already finished.
        """
        key = SESSION_PREFIX + day_id
        row = self.repo.load(key)
        if row is None:
            return None
        if self.repo.load(PENDING_LOG_PREFIX + day_id) is not None:
            logger.info("discarding snapshot %s: day %s has a held workout log", key, day_id)
            self.repo.delete(key)
            return None
        try:
            session = self._decode(day_id, row[0])
        except (SnapshotCorrupt, StaleSnapshot) as exc:
            logger.info("discarding snapshot %s: %s", key, exc)
            self.repo.delete(key)
            return None
        return session

    def _decode(self, day_id: str, payload: str) -> WorkoutSession:
        try:
            raw = json.loads(payload)
            session = WorkoutSession.model_validate(raw["session"])
            captured_at = parse_instant(raw["capturedAt"])
        except (ValueError, KeyError, TypeError, ValidationError) as exc:
            raise SnapshotCorrupt(str(exc)) from exc
        if session.day_id != day_id:
            raise SnapshotCorrupt(f"snapshot belongs to day {session.day_id}")
        if self.clock() - captured_at >= self.max_age:
            raise StaleSnapshot(f"captured at {to_iso(captured_at)}")
        if session.phase in _NOT_RESUMABLE:
            raise StaleSnapshot(f"phase {session.phase.value} is not resumable")
        return session

    def delete(self, day_id: str) -> None:
        self.repo.delete(SESSION_PREFIX + day_id)

    def hold_log(self, log: WorkoutLog) -> None:
        self.repo.save(
            PENDING_LOG_PREFIX + log.day_id,
            json.dumps(log.dump()),
            to_iso(self.clock()),
        )

    def held_log(self, day_id: str) -> Optional[WorkoutLog]:
        row = self.repo.load(PENDING_LOG_PREFIX + day_id)
        if row is None:
            return None
        try:
            return WorkoutLog.model_validate(json.loads(row[0]))
        except (ValueError, ValidationError) as exc:
            logger.error("held workout log for day %s is unreadable: %s", day_id, exc)
            return None

    def release_log(self, day_id: str) -> None:
        self.repo.delete(PENDING_LOG_PREFIX + day_id)
