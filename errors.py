class SyncError(Exception):
    """Base class for sync failures carrying an HTTP-equivalent status."""

    status_code = 500
    message = "sync failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class AuthenticationRequired(SyncError):
    status_code = 401
    message = "Unauthorized"


class SyncNotConfigured(SyncError):
    status_code = 503
    message = "Cloud sync not configured"


class TransientSyncFailure(SyncError):
    """Network or storage error during a push or pull."""

    status_code = 500
    message = "Sync failed"

    def __init__(self, message: str | None = None, cause: BaseException | None = None) -> None:
        if message is None and cause is not None:
            message = str(cause) or cause.__class__.__name__
        super().__init__(message)
        self.cause = cause


class SessionError(Exception):
    """Base class for workout session failures."""


class SnapshotCorrupt(SessionError):
    pass


class StaleSnapshot(SessionError):
    pass


class InvalidTransition(SessionError):
    pass
