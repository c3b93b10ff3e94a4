import asyncio
import enum
import logging
import sqlite3
import time
from typing import Callable, Optional

from db import DeviceStateRepository, EntityStore
from errors import SyncError, SyncNotConfigured
from sync_engine import SyncEngine, SyncResult, export_changes, import_snapshot

logger = logging.getLogger(__name__)


class SyncStatus(str, enum.Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class SyncTrigger(str, enum.Enum):
    SIGN_IN = "sign_in"
    PERIODIC = "periodic"
    FOREGROUND = "foreground"
    MANUAL = "manual"


class LocalSyncTransport:
    """Run push and pull against an in-process engine."""

    def __init__(self, engine: SyncEngine) -> None:
        self.engine = engine

    async def push(self, user_id, payload, device_id, email=None) -> SyncResult:
        return await self.engine.push(user_id, payload, device_id, email)

    async def pull(self, user_id, since=None) -> SyncResult:
        return await self.engine.pull(user_id, since)


class HttpSyncTransport:
    """Run push and pull over HTTP; the user is implied by the client's API key."""

    def __init__(self, client) -> None:
        self.client = client

    async def push(self, user_id, payload, device_id, email=None) -> SyncResult:
        return await asyncio.to_thread(self.client.push, payload, device_id, email)

    async def pull(self, user_id, since=None) -> SyncResult:
        return await asyncio.to_thread(self.client.pull, since)


class SyncScheduler:
    """Decide when a full sync runs and make sure only one runs at a time.

    One instance lives for the lifetime of the app. Sign-in starts it and
    sign-out resets it: timers are cancelled, the sign-in guard is cleared
    and the cached watermark is dropped so the next sign-in pulls
    everything.
    """

    def __init__(
        self,
        transport,
        local_store: EntityStore,
        device_state: DeviceStateRepository,
        interval: float = 300.0,
        min_gap: float = 60.0,
        sign_in_delay: float = 2.0,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.local_store = local_store
        self.device_state = device_state
        self.interval = interval
        self.min_gap = min_gap
        self.sign_in_delay = sign_in_delay
        self._monotonic = monotonic
        self.status = SyncStatus.IDLE
        self.last_error: Optional[str] = None
        self.user_id: Optional[str] = None
        self.email: Optional[str] = None
        self._in_flight = False
        self._last_attempt: Optional[float] = None
        self._signed_in = False
        self._periodic: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._generation = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("background sync task failed", exc_info=task.exception())

    def _try_acquire(self, trigger: SyncTrigger) -> bool:
        if self.user_id is None:
            logger.debug("not signed in, ignoring %s sync", trigger.value)
            return False
        if self._in_flight:
            logger.debug("sync in flight, dropping %s trigger", trigger.value)
            return False
        now = self._monotonic()
        if (
            trigger is not SyncTrigger.MANUAL
            and self._last_attempt is not None
            and now - self._last_attempt < self.min_gap
        ):
            logger.debug("last sync %.1fs ago, dropping %s trigger", now - self._last_attempt, trigger.value)
            return False
        self._in_flight = True
        self._last_attempt = now
        return True

    async def full_sync(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> Optional[SyncResult]:
        """Pull then push; returns ``None`` when the trigger was dropped.

        Failures never escape: they end up in ``status`` and ``last_error``.
        A sync that outlives a sign-out leaves the new session's state alone.
        """
        if not self._try_acquire(trigger):
            return None
        generation = self._generation
        self.status = SyncStatus.SYNCING
        self.last_error = None
        logger.info("%s sync started for user %s", trigger.value, self.user_id)
        try:
            result = await self._run(self.user_id, generation)
        except Exception as exc:
            result = _failed(exc)
        finally:
            if generation == self._generation:
                self._in_flight = False
        if generation == self._generation:
            self._report(result)
        return result

    async def _run(self, user_id: str, generation: int) -> SyncResult:
        since = self.device_state.last_synced_at()
        try:
            pulled = await self.transport.pull(user_id, since)
            if pulled.success:
                applied = await import_snapshot(self.local_store, user_id, pulled.data or {})
                logger.info("applied %d pulled records", applied)
        except Exception as exc:
            pulled = _failed(exc)

        pushed = await self._push(user_id, since)

        if pulled.success and pushed.success:
            if generation == self._generation:
                self.device_state.set_last_synced_at(pulled.synced_at)
            return SyncResult(success=True, synced_at=pulled.synced_at)
        return pulled if not pulled.success else pushed

    async def _push(self, user_id: str, since: Optional[str]) -> SyncResult:
        try:
            payload = await export_changes(self.local_store, user_id, since)
            return await self.transport.push(
                user_id, payload, self.device_state.device_id(), self.email
            )
        except Exception as exc:
            return _failed(exc)

    def _report(self, result: SyncResult) -> None:
        if result.success:
            self.status = SyncStatus.SUCCESS
            logger.info("sync finished at %s", result.synced_at)
        elif result.status_code == SyncNotConfigured.status_code:
            self.status = SyncStatus.IDLE
            logger.debug("cloud sync not configured")
        else:
            self.status = SyncStatus.ERROR
            self.last_error = result.error
            logger.warning("sync failed: %s", result.error)

    # triggers

    def bind_user(self, user_id: str, email: str | None = None) -> None:
        """Set the user that syncs run for, without starting any timer."""
        self.user_id = user_id
        self.email = email

    def on_sign_in(self, user_id: str, email: str | None = None) -> Optional[asyncio.Task]:
        if self._signed_in:
            return None
        self._signed_in = True
        self.bind_user(user_id, email)
        task = self._spawn(self._delayed_sign_in_sync())
        self._periodic = self._spawn(self._periodic_loop())
        return task

    async def _delayed_sign_in_sync(self) -> Optional[SyncResult]:
        await asyncio.sleep(self.sign_in_delay)
        return await self.full_sync(SyncTrigger.SIGN_IN)

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.full_sync(SyncTrigger.PERIODIC)
            except Exception:
                logger.exception("periodic sync failed")

    def on_sign_out(self) -> None:
        self._generation += 1
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._periodic = None
        self._signed_in = False
        self._in_flight = False
        self._last_attempt = None
        self.user_id = None
        self.email = None
        self.status = SyncStatus.IDLE
        self.last_error = None
        self.device_state.clear_last_synced_at()

    async def on_foreground(self) -> Optional[SyncResult]:
        return await self.full_sync(SyncTrigger.FOREGROUND)

    async def sync_now(self) -> Optional[SyncResult]:
        return await self.full_sync(SyncTrigger.MANUAL)

    def push_after_workout(self) -> Optional[asyncio.Task]:
        """Push local changes in the background without touching the watermark."""
        if self.user_id is None:
            return None
        return self._spawn(self._push_after_workout(self.user_id))

    async def _push_after_workout(self, user_id: str) -> None:
        try:
            since = self.device_state.last_synced_at()
        except sqlite3.Error as exc:
            logger.warning("post-workout push skipped: %s", exc)
            return
        result = await self._push(user_id, since)
        if result.success:
            logger.info("post-workout push done")
        else:
            logger.warning("post-workout push failed: %s", result.error)


def _failed(exc: Exception) -> SyncResult:
    if isinstance(exc, SyncError):
        return SyncResult.failure(exc)
    logger.error("unexpected sync failure: %r", exc, exc_info=exc)
    return SyncResult(success=False, error=str(exc), status_code=500)
