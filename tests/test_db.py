import os
import sqlite3
import sys
import unittest
import datetime

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import (
    Database,
    EntityStore,
    ApiKeyRepository,
    DeviceStateRepository,
    SessionSnapshotRepository,
    parse_instant,
    to_iso,
    EPOCH,
)
from entity_kinds import EXERCISES, ACHIEVEMENTS, WORKOUT_LOGS, USER_SETTINGS


@pytest.mark.asyncio
async def test_upsert_inserts_and_overwrites(tmp_path):
    store = EntityStore(str(tmp_path / "store.db"))
    record = {
        "id": "ex-1",
        "name": "Bench",
        "muscleGroups": ["chest"],
        "equipment": "barbell",
        "isCustom": False,
    }
    await store.upsert(EXERCISES, "u1", record, "2024-01-01T00:00:00.000000+00:00")
    await store.upsert(
        EXERCISES,
        "u1",
        {"id": "ex-1", "name": "Bench Press"},
        "2024-01-02T00:00:00.000000+00:00",
    )
    rows = await store.fetch(EXERCISES, "u1")
    assert len(rows) == 1
    row = rows[0]
    assert row["name"] == "Bench Press"
    assert row["muscleGroups"] == ["chest"]
    assert row["isCustom"] is False
    assert row["userId"] == "u1"
    assert row["createdAt"] == "2024-01-01T00:00:00.000000+00:00"
    assert row["updatedAt"] == "2024-01-02T00:00:00.000000+00:00"


@pytest.mark.asyncio
async def test_upsert_ignores_rows_of_other_users(tmp_path):
    store = EntityStore(str(tmp_path / "store.db"))
    await store.upsert(EXERCISES, "u1", {"id": "ex-1", "name": "Bench"}, "t1")
    await store.upsert(EXERCISES, "u2", {"id": "ex-1", "name": "Hijack"}, "t2")
    rows = await store.fetch(EXERCISES, "u1")
    assert rows[0]["name"] == "Bench"
    assert await store.fetch(EXERCISES, "u2") == []


@pytest.mark.asyncio
async def test_insert_only_kind_keeps_first_write(tmp_path):
    store = EntityStore(str(tmp_path / "store.db"))
    first = {"id": "a-1", "achievementId": "streak_7", "unlockedAt": "2024-01-01"}
    second = {"id": "a-1", "achievementId": "streak_7", "unlockedAt": "2024-05-01"}
    await store.upsert(ACHIEVEMENTS, "u1", first, "2024-01-01T00:00:00+00:00")
    await store.upsert(ACHIEVEMENTS, "u1", second, "2024-05-01T00:00:00+00:00")
    rows = await store.fetch(ACHIEVEMENTS, "u1")
    assert rows[0]["unlockedAt"] == "2024-01-01"
    assert rows[0]["updatedAt"] == "2024-01-01T00:00:00+00:00"


@pytest.mark.asyncio
async def test_upsert_requires_id(tmp_path):
    store = EntityStore(str(tmp_path / "store.db"))
    with pytest.raises(ValueError):
        await store.upsert(EXERCISES, "u1", {"name": "Bench"}, "t")


@pytest.mark.asyncio
async def test_completed_logs_most_recent_first(tmp_path):
    store = EntityStore(str(tmp_path / "store.db"))
    for log_id, date, complete in [
        ("l1", "2024-01-01", True),
        ("l2", "2024-01-03", True),
        ("l3", "2024-01-05", False),
        ("l4", "2024-01-02", True),
    ]:
        await store.upsert(
            WORKOUT_LOGS,
            "u1",
            {
                "id": log_id,
                "date": date,
                "dayId": "d1" if log_id != "l4" else "d2",
                "startTime": date + "T10:00:00+00:00",
                "sets": [],
                "isComplete": complete,
            },
            "t",
        )
    logs = await store.completed_logs("u1")
    assert [log["id"] for log in logs] == ["l2", "l4", "l1"]
    logs = await store.completed_logs("u1", day_id="d1", limit=1)
    assert [log["id"] for log in logs] == ["l2"]


@pytest.mark.asyncio
async def test_cursor_and_user(tmp_path):
    store = EntityStore(str(tmp_path / "store.db"))
    await store.ensure_user("u1", "a@example.com", "t1")
    await store.ensure_user("u1", "other@example.com", "t2")
    user = await store.fetch_user("u1")
    assert user["email"] == "a@example.com"
    await store.save_cursor("u1", "dev-1", "t1")
    await store.save_cursor("u1", "dev-2", "t2")
    cursor = await store.fetch_cursor("u1")
    assert cursor == {"userId": "u1", "lastSyncedAt": "t2", "deviceId": "dev-2"}
    assert await store.fetch_cursor("nobody") is None


@pytest.mark.asyncio
async def test_singleton_settings(tmp_path):
    store = EntityStore(str(tmp_path / "store.db"))
    assert await store.user_settings("u1") is None
    await store.upsert(
        USER_SETTINGS,
        "u1",
        {"id": "user-settings", "weightUnit": "lbs", "soundEnabled": False},
        "t",
    )
    settings = await store.user_settings("u1")
    assert settings["weightUnit"] == "lbs"
    assert settings["soundEnabled"] is False
    assert settings["defaultRestSeconds"] == 90


class TimestampTestCase(unittest.TestCase):
    def test_parse_instant(self) -> None:
        self.assertEqual(parse_instant(None), EPOCH)
        self.assertEqual(parse_instant(""), EPOCH)
        moment = parse_instant("2024-03-01T10:00:00Z")
        self.assertEqual(moment.tzinfo, datetime.timezone.utc)
        self.assertEqual(moment.hour, 10)
        with self.assertRaises(ValueError):
            parse_instant("yesterday")

    def test_to_iso_is_sortable_utc(self) -> None:
        tz = datetime.timezone(datetime.timedelta(hours=2))
        local = datetime.datetime(2024, 3, 1, 12, 0, tzinfo=tz)
        self.assertEqual(to_iso(local), "2024-03-01T10:00:00.000000+00:00")
        naive = datetime.datetime(2024, 3, 1, 9, 0)
        self.assertLess(to_iso(naive), to_iso(local))


class RepositoryTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = "test_repos.db"
        if os.path.exists(self.db):
            os.remove(self.db)

    def tearDown(self) -> None:
        if os.path.exists(self.db):
            os.remove(self.db)

    def test_api_keys(self) -> None:
        repo = ApiKeyRepository(self.db)
        key = repo.add("u1", "phone")
        self.assertTrue(key)
        self.assertEqual(repo.user_for(key), "u1")
        self.assertIsNone(repo.user_for("wrong"))
        self.assertIsNone(repo.user_for(None))
        fixed = repo.add("u2", key="abc")
        self.assertEqual(fixed, "abc")
        keys = repo.fetch_keys()
        self.assertEqual([k[1] for k in keys], ["u1", "u2"])
        repo.delete(keys[0][0])
        self.assertIsNone(repo.user_for(key))

    def test_device_state(self) -> None:
        state = DeviceStateRepository(self.db)
        device_id = state.device_id()
        self.assertEqual(state.device_id(), device_id)
        self.assertIsNone(state.last_synced_at())
        state.set_last_synced_at("t1")
        self.assertEqual(state.last_synced_at(), "t1")
        state.clear_last_synced_at()
        self.assertIsNone(state.last_synced_at())
        self.assertEqual(DeviceStateRepository(self.db).device_id(), device_id)

    def test_snapshot_slots(self) -> None:
        repo = SessionSnapshotRepository(self.db)
        self.assertIsNone(repo.load("k"))
        repo.save("setflow-a", "{}", "t1")
        repo.save("setflow-a", "[]", "t2")
        repo.save("other", "{}", "t1")
        self.assertEqual(repo.load("setflow-a"), ("[]", "t2"))
        self.assertEqual(repo.load("other"), ("{}", "t1"))
        repo.delete("setflow-a")
        self.assertIsNone(repo.load("setflow-a"))


class TestSchemaMigration:
    def test_adds_missing_columns_and_keeps_rows(self, tmp_path):
        db_file = tmp_path / "test.db"
        conn = sqlite3.connect(str(db_file))
        conn.execute(
            "CREATE TABLE exercises (id TEXT PRIMARY KEY, user_id TEXT NOT NULL, name TEXT, created_at TEXT NOT NULL, updated_at TEXT NOT NULL)"
        )
        conn.execute(
            "INSERT INTO exercises VALUES ('ex-1', 'u1', 'Squat', 't', 't')"
        )
        conn.commit()
        conn.close()

        Database(str(db_file))

        conn = sqlite3.connect(str(db_file))
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='exercises_old'"
        )
        assert cur.fetchone() is None
        cols = [row[1] for row in conn.execute("PRAGMA table_info(exercises)")]
        assert "muscle_groups" in cols
        row = conn.execute("SELECT name, muscle_groups FROM exercises").fetchone()
        assert row == ("Squat", "[]")
        conn.close()
