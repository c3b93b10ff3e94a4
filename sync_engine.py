import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, Optional
import datetime

from db import EntityStore, to_iso, parse_instant, utc_now
from entity_kinds import ENTITY_KINDS, records_for
from errors import (
    SyncError,
    AuthenticationRequired,
    SyncNotConfigured,
    TransientSyncFailure,
)

logger = logging.getLogger(__name__)

UNKNOWN_EMAIL = "unknown@example.com"


@dataclass
class SyncResult:
    success: bool
    synced_at: Optional[str] = None
    data: Optional[dict] = None
    error: Optional[str] = None
    status_code: int = 200

    @classmethod
    def failure(cls, exc: SyncError) -> "SyncResult":
        return cls(success=False, error=str(exc), status_code=exc.status_code)

    def to_dict(self) -> dict:
        out: dict = {"success": self.success}
        if self.synced_at is not None:
            out["syncedAt"] = self.synced_at
        if self.data is not None:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = self.error
        return out


class SyncEngine:
    """Push/pull of every entity kind between a device and the shared store.

    Conflict policy is last push wins: a push overwrites the mutable fields
    of whatever is stored under the same id, and a pull returns whatever is
    currently stored. Achievements are the exception, they are inserted
    once and never overwritten.
    """

    def __init__(
        self,
        store: Optional[EntityStore],
        clock: Callable[[], datetime.datetime] = utc_now,
    ) -> None:
        self.store = store
        self.clock = clock

    def _authorize(self, user_id: Optional[str]) -> None:
        if not user_id:
            raise AuthenticationRequired()
        if self.store is None:
            raise SyncNotConfigured()

    async def push(
        self,
        user_id: Optional[str],
        payload: dict,
        device_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> SyncResult:
        """Upsert every record in ``payload`` and advance the user's cursor.

        Writes are not wrapped in a transaction: when a later upsert fails
        the earlier ones stay committed and ``TransientSyncFailure`` is
        raised.
        """
        try:
            self._authorize(user_id)
        except (AuthenticationRequired, SyncNotConfigured) as exc:
            return SyncResult.failure(exc)
        batches = [(kind, records_for(kind, payload)) for kind in ENTITY_KINDS]
        for kind, records in batches:
            for record in records:
                if not isinstance(record, dict) or not record.get("id"):
                    raise ValueError(f"{kind.key}: every record needs an id")

        now = to_iso(self.clock())
        counts = {}
        try:
            await self.store.ensure_user(user_id, email or UNKNOWN_EMAIL, now)
            for kind, records in batches:
                for record in records:
                    await self.store.upsert(kind, user_id, record, now)
                if records:
                    counts[kind.key] = len(records)
            await self.store.save_cursor(user_id, device_id, now)
        except sqlite3.Error as exc:
            logger.error("push for user %s failed: %s", user_id, exc)
            raise TransientSyncFailure(cause=exc) from exc
        logger.info("push for user %s stored %s", user_id, counts or "nothing")
        return SyncResult(success=True, synced_at=now)

    async def pull(self, user_id: Optional[str], since: Optional[str] = None) -> SyncResult:
        """Return everything changed since ``since`` plus the full singletons."""
        try:
            self._authorize(user_id)
        except (AuthenticationRequired, SyncNotConfigured) as exc:
            return SyncResult.failure(exc)
        since_iso = to_iso(parse_instant(since))
        synced_at = to_iso(self.clock())
        try:
            results = await asyncio.gather(
                *(
                    self.store.fetch(
                        kind, user_id, since=since_iso if kind.incremental else None
                    )
                    for kind in ENTITY_KINDS
                )
            )
        except sqlite3.Error as exc:
            logger.error("pull for user %s failed: %s", user_id, exc)
            raise TransientSyncFailure(cause=exc) from exc
        data = _assemble(results)
        logger.info(
            "pull for user %s since %s returned %d records",
            user_id,
            since_iso,
            sum(len(rows) for rows in results),
        )
        return SyncResult(success=True, synced_at=synced_at, data=data)


def _assemble(results) -> dict:
    data = {}
    for kind, rows in zip(ENTITY_KINDS, results):
        if kind.singleton:
            data[kind.key] = rows[0] if rows else None
        else:
            data[kind.key] = rows
    return data


async def export_changes(
    store: EntityStore, user_id: str, since: Optional[str] = None
) -> dict:
    """Collect the local records a push should carry.

    Incremental kinds are limited to rows touched at or after ``since``;
    the others are exported in full.
    """
    since_iso = to_iso(parse_instant(since)) if since else None
    results = await asyncio.gather(
        *(
            store.fetch(kind, user_id, since=since_iso if kind.incremental else None)
            for kind in ENTITY_KINDS
        )
    )
    return _assemble(results)


async def import_snapshot(store: EntityStore, user_id: str, data: dict) -> int:
    """Apply pulled records to the local store; returns the number applied.

    Each record keeps the ``updatedAt`` it had in the shared store.
    """
    applied = 0
    for kind in ENTITY_KINDS:
        for record in records_for(kind, data):
            if not record.get("id"):
                continue
            updated_at = to_iso(parse_instant(record.get("updatedAt")))
            await store.upsert(kind, user_id, record, updated_at)
            applied += 1
    return applied
