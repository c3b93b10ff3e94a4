import requests
from typing import Optional

from errors import AuthenticationRequired, SyncNotConfigured, TransientSyncFailure
from sync_engine import SyncResult


class SyncClient:
    """REST client for the sync API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        api_key: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> dict:
        return {"X-API-Key": self.api_key} if self.api_key else {}

    def _result(self, resp: requests.Response) -> SyncResult:
        if resp.ok:
            body = resp.json()
            return SyncResult(
                success=bool(body.get("success")),
                synced_at=body.get("syncedAt"),
                data=body.get("data"),
            )
        try:
            detail = resp.json().get("detail")
        except ValueError:
            detail = resp.text
        if resp.status_code == AuthenticationRequired.status_code:
            return SyncResult.failure(AuthenticationRequired(detail))
        if resp.status_code == SyncNotConfigured.status_code:
            return SyncResult.failure(SyncNotConfigured(detail))
        raise TransientSyncFailure(f"{resp.status_code}: {detail or 'sync failed'}")

    def push(self, data: dict, device_id: str, email: Optional[str] = None) -> SyncResult:
        body = {"deviceId": device_id, "data": data}
        if email:
            body["email"] = email
        try:
            resp = requests.post(
                f"{self.base_url}/sync",
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransientSyncFailure(cause=exc) from exc
        return self._result(resp)

    def pull(self, since: Optional[str] = None) -> SyncResult:
        params = {"since": since} if since else {}
        try:
            resp = requests.get(
                f"{self.base_url}/sync",
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransientSyncFailure(cause=exc) from exc
        return self._result(resp)

    def health(self) -> dict:
        resp = requests.get(f"{self.base_url}/health", timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()
