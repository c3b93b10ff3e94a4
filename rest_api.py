import logging
import time
from collections import deque
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Response, Request, Header
from pydantic import Field

from config import YamlConfig, APP_VERSION
from db import EntityStore, ApiKeyRepository
from errors import TransientSyncFailure
from models import CamelModel
from sync_engine import SyncEngine, SyncResult

logger = logging.getLogger(__name__)


class RateLimiter:
    """Per-client sliding-window limit on requests to the sync API.

    Clients are keyed by remote address. Timestamps older than the window
    are pruned on every request and clients left without any are
    forgotten, so memory stays bounded by the clients active in one window.
    """

    def __init__(
        self,
        limit: int = 60,
        window: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("rate limit must be at least 1")
        self.limit = limit
        self.window = window
        self.clock = clock
        self.requests: dict[str, deque[float]] = {}

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        for client in list(self.requests):
            history = self.requests[client]
            while history and history[0] <= cutoff:
                history.popleft()
            if not history:
                del self.requests[client]

    def allow(self, client: str) -> bool:
        now = self.clock()
        self._prune(now)
        history = self.requests.setdefault(client, deque())
        if len(history) >= self.limit:
            return False
        history.append(now)
        return True

    async def __call__(self, request: Request, call_next):
        client = request.client.host if request.client else "anon"
        if not self.allow(client):
            logger.warning("rate limit exceeded for %s", client)
            return Response("rate limit exceeded", status_code=429)
        return await call_next(request)


class PushRequest(CamelModel):
    device_id: Optional[str] = None
    email: Optional[str] = None
    data: dict = Field(default_factory=dict)


class SyncAPI:
    """HTTP surface of the shared store: push, pull and health."""

    def __init__(
        self,
        db_path: str = "setflow_cloud.db",
        yaml_path: str = "settings.yaml",
        rate_limit: int | None = None,
        rate_window: int = 60,
        sync_enabled: bool | None = None,
    ) -> None:
        self.config = YamlConfig(yaml_path)
        self.settings = self.config.settings()
        if sync_enabled is None:
            sync_enabled = self.settings.sync_enabled
        self.store = EntityStore(db_path)
        self.api_keys = ApiKeyRepository(db_path)
        self.engine = SyncEngine(self.store if sync_enabled else None)
        self.app = FastAPI(
            title="SetFlow Sync API",
            description="Push and pull of training records between devices",
            version=APP_VERSION,
        )
        if rate_limit is None:
            rate_limit = self.settings.rate_limit
        if rate_limit is not None:
            limiter = RateLimiter(limit=rate_limit, window=rate_window)
            self.app.middleware("http")(limiter)
        self._setup_routes()

    @staticmethod
    def _respond(result: SyncResult) -> dict:
        if not result.success:
            raise HTTPException(status_code=result.status_code, detail=result.error)
        return result.to_dict()

    def _setup_routes(self) -> None:
        @self.app.get(
            "/health",
            summary="Health check",
            description="Report whether cloud sync is enabled.",
        )
        def health():
            return {"status": "ok", "syncEnabled": self.engine.store is not None}

        @self.app.post(
            "/sync",
            summary="Push local changes",
            description="Upsert every record in the payload; last push wins.",
        )
        async def push(body: PushRequest, x_api_key: str | None = Header(default=None)):
            user_id = self.api_keys.user_for(x_api_key)
            try:
                result = await self.engine.push(
                    user_id, body.data, body.device_id, body.email
                )
            except TransientSyncFailure as e:
                raise HTTPException(status_code=e.status_code, detail=str(e))
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return self._respond(result)

        @self.app.get(
            "/sync",
            summary="Pull changes",
            description="Return records changed since the given instant.",
        )
        async def pull(
            since: str | None = None, x_api_key: str | None = Header(default=None)
        ):
            user_id = self.api_keys.user_for(x_api_key)
            try:
                result = await self.engine.pull(user_id, since)
            except TransientSyncFailure as e:
                raise HTTPException(status_code=e.status_code, detail=str(e))
            except ValueError as e:
                raise HTTPException(status_code=400, detail=f"invalid since: {e}")
            return self._respond(result)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(SyncAPI().app)
