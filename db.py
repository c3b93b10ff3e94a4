import sqlite3
import aiosqlite
import datetime
import json
import secrets
import uuid
from contextlib import contextmanager, asynccontextmanager
from typing import List, Tuple, Optional

from entity_kinds import (
    EntityKind,
    UpsertPolicy,
    WORKOUT_LOGS,
    PERSONAL_RECORDS,
    USER_SETTINGS,
)


EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def to_iso(moment: datetime.datetime) -> str:
    """Normalize an instant to a sortable UTC ISO-8601 string."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.timezone.utc)
    return moment.astimezone(datetime.timezone.utc).isoformat(timespec="microseconds")


def parse_instant(value: str | datetime.datetime | None) -> datetime.datetime:
    """Parse an ISO-8601 instant; ``None`` or empty means the epoch."""
    if value is None or value == "":
        return EPOCH
    if isinstance(value, datetime.datetime):
        moment = value
    else:
        moment = datetime.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.timezone.utc)
    return moment.astimezone(datetime.timezone.utc)


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "users": (
            """CREATE TABLE users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            ["id", "email", "created_at", "updated_at"],
        ),
        "exercises": (
            """CREATE TABLE exercises (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT,
                    video_url TEXT,
                    muscle_groups TEXT NOT NULL DEFAULT '[]',
                    equipment TEXT,
                    is_custom INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            [
                "id",
                "user_id",
                "name",
                "video_url",
                "muscle_groups",
                "equipment",
                "is_custom",
                "created_at",
                "updated_at",
            ],
        ),
        "programs": (
            """CREATE TABLE programs (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT,
                    description TEXT,
                    is_active INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            [
                "id",
                "user_id",
                "name",
                "description",
                "is_active",
                "created_at",
                "updated_at",
            ],
        ),
        "training_days": (
            """CREATE TABLE training_days (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    program_id TEXT,
                    name TEXT,
                    day_number INTEGER,
                    warmup TEXT NOT NULL DEFAULT '[]',
                    supersets TEXT NOT NULL DEFAULT '[]',
                    finisher TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            [
                "id",
                "user_id",
                "program_id",
                "name",
                "day_number",
                "warmup",
                "supersets",
                "finisher",
                "created_at",
                "updated_at",
            ],
        ),
        "workout_logs": (
            """CREATE TABLE workout_logs (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    date TEXT,
                    program_id TEXT,
                    day_id TEXT,
                    day_name TEXT,
                    sets TEXT NOT NULL DEFAULT '[]',
                    start_time TEXT,
                    end_time TEXT,
                    duration INTEGER,
                    notes TEXT,
                    is_complete INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            [
                "id",
                "user_id",
                "date",
                "program_id",
                "day_id",
                "day_name",
                "sets",
                "start_time",
                "end_time",
                "duration",
                "notes",
                "is_complete",
                "created_at",
                "updated_at",
            ],
        ),
        "personal_records": (
            """CREATE TABLE personal_records (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    exercise_id TEXT NOT NULL,
                    exercise_name TEXT,
                    weight REAL NOT NULL,
                    reps INTEGER NOT NULL,
                    unit TEXT NOT NULL DEFAULT 'kg',
                    date TEXT,
                    workout_log_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            [
                "id",
                "user_id",
                "exercise_id",
                "exercise_name",
                "weight",
                "reps",
                "unit",
                "date",
                "workout_log_id",
                "created_at",
                "updated_at",
            ],
        ),
        "user_settings": (
            """CREATE TABLE user_settings (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    weight_unit TEXT NOT NULL DEFAULT 'kg',
                    default_rest_seconds INTEGER NOT NULL DEFAULT 90,
                    sound_enabled INTEGER NOT NULL DEFAULT 1,
                    auto_progress_weight INTEGER NOT NULL DEFAULT 1,
                    progression_increment REAL NOT NULL DEFAULT 2.5,
                    auto_start_rest_timer INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            [
                "id",
                "user_id",
                "weight_unit",
                "default_rest_seconds",
                "sound_enabled",
                "auto_progress_weight",
                "progression_increment",
                "auto_start_rest_timer",
                "created_at",
                "updated_at",
            ],
        ),
        "onboarding_profiles": (
            """CREATE TABLE onboarding_profiles (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    goals TEXT NOT NULL DEFAULT '[]',
                    experience_level TEXT,
                    training_days_per_week INTEGER,
                    equipment TEXT,
                    height_cm REAL,
                    weight_kg REAL,
                    body_fat_percent REAL,
                    injuries TEXT NOT NULL DEFAULT '[]',
                    has_completed_onboarding INTEGER NOT NULL DEFAULT 0,
                    skipped_onboarding INTEGER NOT NULL DEFAULT 0,
                    completed_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            [
                "id",
                "user_id",
                "goals",
                "experience_level",
                "training_days_per_week",
                "equipment",
                "height_cm",
                "weight_kg",
                "body_fat_percent",
                "injuries",
                "has_completed_onboarding",
                "skipped_onboarding",
                "completed_at",
                "created_at",
                "updated_at",
            ],
        ),
        "achievements": (
            """CREATE TABLE achievements (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    achievement_id TEXT NOT NULL,
                    unlocked_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            [
                "id",
                "user_id",
                "achievement_id",
                "unlocked_at",
                "created_at",
                "updated_at",
            ],
        ),
        "sync_metadata": (
            """CREATE TABLE sync_metadata (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL UNIQUE,
                    last_synced_at TEXT NOT NULL,
                    device_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            [
                "id",
                "user_id",
                "last_synced_at",
                "device_id",
                "created_at",
                "updated_at",
            ],
        ),
        "api_keys": (
            """CREATE TABLE api_keys (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    name TEXT,
                    api_key TEXT NOT NULL UNIQUE
                );""",
            ["id", "user_id", "name", "api_key"],
        ),
        "device_state": (
            """CREATE TABLE device_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
        "session_snapshots": (
            """CREATE TABLE session_snapshots (
                    key TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    captured_at TEXT NOT NULL
                );""",
            ["key", "payload", "captured_at"],
        ),
    }

    def __init__(self, db_path: str = "setflow.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)
        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            conn.execute(
                f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
            )
        conn.execute(f"DROP TABLE {table}_old;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return rows


class EntityStore(AsyncBaseRepository):
    """Per-user collection of synced records.

    The device-local copy and the shared copy are both instances of this
    class over different database files, so they share one read/write
    contract. Records go in and come out as camelCase dictionaries.
    """

    async def upsert(
        self,
        kind: EntityKind,
        user_id: str,
        record: dict,
        updated_at: str,
    ) -> None:
        """Insert ``record`` or overwrite its mutable fields by primary key.

        ``updated_at`` is always written on insert and on overwrite. For
        insert-only kinds an existing row is left untouched.
        """
        entity_id = record.get("id")
        if not entity_id:
            raise ValueError(f"{kind.key} record without id")
        row = kind.to_row(record)
        created_at = record.get("createdAt") or updated_at
        columns = ["id", "user_id", *row.keys(), "created_at", "updated_at"]
        values = [
            entity_id,
            user_id,
            *(self._encode(kind, c, v) for c, v in row.items()),
            created_at,
            updated_at,
        ]
        placeholders = ", ".join("?" for _ in columns)
        query = (
            f"INSERT INTO {kind.table} ({', '.join(columns)}) VALUES ({placeholders}) "
        )
        if kind.policy is UpsertPolicy.INSERT_ONLY:
            query += "ON CONFLICT(id) DO NOTHING;"
        else:
            updates = [f"{c}=excluded.{c}" for c in kind.mutable if c in row]
            updates.append("updated_at=excluded.updated_at")
            query += (
                f"ON CONFLICT(id) DO UPDATE SET {', '.join(updates)} "
                f"WHERE {kind.table}.user_id = excluded.user_id;"
            )
        await self.execute(query, tuple(values))

    async def fetch(
        self,
        kind: EntityKind,
        user_id: str,
        since: str | None = None,
        filters: dict | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> List[dict]:
        columns = ["id", "user_id", *kind.columns, "created_at", "updated_at"]
        query = f"SELECT {', '.join(columns)} FROM {kind.table} WHERE user_id = ?"
        params: list = [user_id]
        if since is not None:
            query += " AND updated_at >= ?"
            params.append(since)
        for col, value in (filters or {}).items():
            if col not in columns:
                raise ValueError(f"unknown column {col}")
            query += f" AND {col} = ?"
            params.append(self._encode(kind, col, value))
        if order_by:
            query += f" ORDER BY {order_by}"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = await self.fetch_all(query + ";", tuple(params))
        return [self._decode(kind, columns, r) for r in rows]

    async def completed_logs(
        self, user_id: str, day_id: str | None = None, limit: int | None = None
    ) -> List[dict]:
        """Return completed workout logs, most recent first."""
        filters: dict = {"is_complete": True}
        if day_id is not None:
            filters["day_id"] = day_id
        return await self.fetch(
            WORKOUT_LOGS,
            user_id,
            filters=filters,
            order_by="date DESC, start_time DESC",
            limit=limit,
        )

    async def personal_records(
        self, user_id: str, exercise_id: str | None = None
    ) -> List[dict]:
        filters = {"exercise_id": exercise_id} if exercise_id is not None else None
        return await self.fetch(
            PERSONAL_RECORDS, user_id, filters=filters, order_by="created_at, rowid"
        )

    async def user_settings(self, user_id: str) -> dict | None:
        rows = await self.fetch(USER_SETTINGS, user_id, limit=1)
        return rows[0] if rows else None

    async def ensure_user(self, user_id: str, email: str, now: str) -> None:
        await self.execute(
            "INSERT OR IGNORE INTO users (id, email, created_at, updated_at) VALUES (?, ?, ?, ?);",
            (user_id, email, now, now),
        )

    async def fetch_user(self, user_id: str) -> dict | None:
        rows = await self.fetch_all(
            "SELECT id, email, created_at, updated_at FROM users WHERE id = ?;",
            (user_id,),
        )
        if not rows:
            return None
        uid, email, created, updated = rows[0]
        return {"id": uid, "email": email, "createdAt": created, "updatedAt": updated}

    async def save_cursor(self, user_id: str, device_id: str | None, synced_at: str) -> None:
        await self.execute(
            "INSERT INTO sync_metadata (id, user_id, last_synced_at, device_id, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET last_synced_at=excluded.last_synced_at, "
            "device_id=excluded.device_id, updated_at=excluded.updated_at;",
            (f"sync-{user_id}", user_id, synced_at, device_id, synced_at, synced_at),
        )

    async def fetch_cursor(self, user_id: str) -> dict | None:
        rows = await self.fetch_all(
            "SELECT last_synced_at, device_id FROM sync_metadata WHERE user_id = ?;",
            (user_id,),
        )
        if not rows:
            return None
        return {"userId": user_id, "lastSyncedAt": rows[0][0], "deviceId": rows[0][1]}

    @staticmethod
    def _encode(kind: EntityKind, column: str, value):
        if value is None:
            return None
        if column in kind.json_columns:
            return json.dumps(value)
        if column in kind.bool_columns or isinstance(value, bool):
            return int(bool(value))
        return value

    @staticmethod
    def _decode(kind: EntityKind, columns: List[str], row: Tuple) -> dict:
        record = {}
        for col, value in zip(columns, row):
            if value is not None and col in kind.json_columns:
                value = json.loads(value)
            elif value is not None and col in kind.bool_columns:
                value = bool(value)
            record[kind.field_name(col)] = value
        return record


class ApiKeyRepository(BaseRepository):
    """Repository mapping API keys to the user they authenticate."""

    def add(self, user_id: str, name: str | None = None, key: str | None = None) -> str:
        key = key or secrets.token_urlsafe(32)
        self.execute(
            "INSERT INTO api_keys (user_id, name, api_key) VALUES (?, ?, ?);",
            (user_id, name, key),
        )
        return key

    def user_for(self, key: str | None) -> str | None:
        if not key:
            return None
        rows = self.fetch_all("SELECT user_id FROM api_keys WHERE api_key = ?;", (key,))
        return rows[0][0] if rows else None

    def fetch_keys(self) -> list[tuple[int, str, str | None]]:
        rows = self.fetch_all("SELECT id, user_id, name FROM api_keys ORDER BY id;")
        return [(int(r[0]), r[1], r[2]) for r in rows]

    def delete(self, key_id: int) -> None:
        self.execute("DELETE FROM api_keys WHERE id = ?;", (key_id,))


class DeviceStateRepository(BaseRepository):
    """Device-local key/value state: device identity and sync watermark."""

    DEVICE_ID_KEY = "device_id"
    WATERMARK_KEY = "last_synced_at"

    def get_text(self, key: str, default: Optional[str] = None) -> Optional[str]:
        rows = self.fetch_all("SELECT value FROM device_state WHERE key = ?;", (key,))
        return rows[0][0] if rows else default

    def set_text(self, key: str, value: str) -> None:
        self.execute(
            "INSERT INTO device_state (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (key, value),
        )

    def delete(self, key: str) -> None:
        self.execute("DELETE FROM device_state WHERE key = ?;", (key,))

    def device_id(self) -> str:
        device_id = self.get_text(self.DEVICE_ID_KEY)
        if device_id is None:
            device_id = str(uuid.uuid4())
            self.set_text(self.DEVICE_ID_KEY, device_id)
        return device_id

    def last_synced_at(self) -> Optional[str]:
        return self.get_text(self.WATERMARK_KEY)

    def set_last_synced_at(self, timestamp: str) -> None:
        self.set_text(self.WATERMARK_KEY, timestamp)

    def clear_last_synced_at(self) -> None:
        self.delete(self.WATERMARK_KEY)


class SessionSnapshotRepository(BaseRepository):
    """Durable key/value slots for in-progress workout state."""

    def save(self, key: str, payload: str, captured_at: str) -> None:
        self.execute(
            "INSERT INTO session_snapshots (key, payload, captured_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET payload=excluded.payload, captured_at=excluded.captured_at;",
            (key, payload, captured_at),
        )

    def load(self, key: str) -> Optional[tuple[str, str]]:
        rows = self.fetch_all(
            "SELECT payload, captured_at FROM session_snapshots WHERE key = ?;", (key,)
        )
        return (rows[0][0], rows[0][1]) if rows else None

    def delete(self, key: str) -> None:
        self.execute("DELETE FROM session_snapshots WHERE key = ?;", (key,))
