import argparse
import asyncio
import logging
import shutil

from client import SyncClient
from config import YamlConfig
from db import ApiKeyRepository, DeviceStateRepository, EntityStore
from sync_scheduler import HttpSyncTransport, SyncScheduler, SyncStatus

logger = logging.getLogger(__name__)


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)
    logger.info("backed up %s to %s", db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)
    logger.info("restored %s from %s", db_path, backup_path)


def add_key(db_path: str, user_id: str, name: str | None = None) -> str:
    return ApiKeyRepository(db_path).add(user_id, name)


def list_keys(db_path: str) -> list[str]:
    return [
        f"{key_id}\t{user_id}\t{name or ''}"
        for key_id, user_id, name in ApiKeyRepository(db_path).fetch_keys()
    ]


def revoke_key(db_path: str, key_id: int) -> None:
    ApiKeyRepository(db_path).delete(key_id)
    logger.info("revoked API key %d", key_id)


def run_sync(db_path: str, yaml_path: str, user_id: str, email: str | None = None) -> bool:
    """Run one manual full sync of the local database against the server."""
    settings = YamlConfig(yaml_path).settings()
    client = SyncClient(settings.sync_base_url, settings.sync_api_key)
    scheduler = SyncScheduler(
        HttpSyncTransport(client),
        EntityStore(db_path),
        DeviceStateRepository(db_path),
        interval=settings.sync_interval_seconds,
        min_gap=settings.min_sync_gap_seconds,
        sign_in_delay=settings.sign_in_delay_seconds,
    )
    scheduler.bind_user(user_id, email)
    asyncio.run(scheduler.sync_now())
    if scheduler.status is SyncStatus.ERROR:
        print(f"Sync failed: {scheduler.last_error}")
        return False
    print(f"Sync {scheduler.status.value}")
    return True


def show_status(db_path: str) -> None:
    state = DeviceStateRepository(db_path)
    print(f"device id: {state.device_id()}")
    print(f"last synced at: {state.last_synced_at() or 'never'}")


def serve(db_path: str, yaml_path: str, host: str, port: int) -> None:
    import uvicorn
    from rest_api import SyncAPI

    api = SyncAPI(db_path=db_path, yaml_path=yaml_path)
    uvicorn.run(api.app, host=host, port=port)


def main() -> None:
    parser = argparse.ArgumentParser(description="SetFlow sync utilities")
    parser.add_argument("--yaml", default="settings.yaml")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    srv = sub.add_parser("serve")
    srv.add_argument("--db", default="setflow_cloud.db")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)

    key = sub.add_parser("add-key")
    key.add_argument("--db", default="setflow_cloud.db")
    key.add_argument("--user", required=True)
    key.add_argument("--name", default=None)

    lst = sub.add_parser("list-keys")
    lst.add_argument("--db", default="setflow_cloud.db")

    rev = sub.add_parser("revoke-key")
    rev.add_argument("--db", default="setflow_cloud.db")
    rev.add_argument("key_id", type=int)

    syn = sub.add_parser("sync")
    syn.add_argument("--db", default="setflow.db")
    syn.add_argument("--user", required=True)
    syn.add_argument("--email", default=None)

    st = sub.add_parser("status")
    st.add_argument("--db", default="setflow.db")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default="setflow.db")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default="setflow.db")

    args = parser.parse_args()
    level = args.log_level or YamlConfig(args.yaml).settings().log_level
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "serve":
        serve(args.db, args.yaml, args.host, args.port)
    elif args.cmd == "add-key":
        print(add_key(args.db, args.user, args.name))
    elif args.cmd == "list-keys":
        for line in list_keys(args.db):
            print(line)
    elif args.cmd == "revoke-key":
        revoke_key(args.db, args.key_id)
    elif args.cmd == "sync":
        if not run_sync(args.db, args.yaml, args.user, args.email):
            raise SystemExit(1)
    elif args.cmd == "status":
        show_status(args.db)
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)


if __name__ == "__main__":
    main()
