import os
import sys
import unittest

import keyring
import yaml

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import YamlConfig
from settings_schema import validate_settings, load_user_settings


class DummyKeyring(keyring.backend.KeyringBackend):
    priority = 1

    def __init__(self):
        self.store = {}

    def get_password(self, service, username):
        return self.store.get((service, username))

    def set_password(self, service, username, password):
        self.store[(service, username)] = password

    def delete_password(self, service, username):
        self.store.pop((service, username), None)


class SettingsEncryptionTest(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = DummyKeyring()
        keyring.set_keyring(self.backend)
        os.environ["ENCRYPT_SETTINGS"] = "1"
        self.path = "enc_settings.yaml"
        if os.path.exists(self.path):
            os.remove(self.path)

    def tearDown(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
        os.environ.pop("ENCRYPT_SETTINGS", None)

    def test_api_key_goes_to_keyring(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({"sync_api_key": "secret", "sync_enabled": True})
        with open(self.path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
        self.assertNotEqual(raw["sync_api_key"], "secret")
        self.assertEqual(self.backend.store[("setflow", "sync_api_key")], "secret")
        data = cfg.load()
        self.assertEqual(data["sync_api_key"], "secret")
        self.assertTrue(data["sync_enabled"])

    def test_update_merges(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({"sync_enabled": False})
        data = cfg.update(sync_base_url="http://cloud:8000")
        self.assertEqual(data, {"sync_enabled": False, "sync_base_url": "http://cloud:8000"})
        self.assertEqual(cfg.load()["sync_base_url"], "http://cloud:8000")


class EnvironmentOverrideTest(unittest.TestCase):
    def setUp(self) -> None:
        self.path = "env_settings.yaml"
        if os.path.exists(self.path):
            os.remove(self.path)

    def tearDown(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)

    def test_environment_wins_over_file(self) -> None:
        environ = {"SETFLOW_SYNC_ENABLED": "true", "SETFLOW_RATE_LIMIT": "30", "HOME": "/tmp"}
        cfg = YamlConfig(self.path, environ=environ)
        cfg.save({"sync_enabled": False, "sync_base_url": "http://cloud:8000"})
        settings = cfg.settings()
        self.assertTrue(settings.sync_enabled)
        self.assertEqual(settings.rate_limit, 30)
        self.assertEqual(settings.sync_base_url, "http://cloud:8000")

    def test_update_does_not_write_overrides(self) -> None:
        cfg = YamlConfig(self.path, environ={"SETFLOW_SYNC_ENABLED": "1"})
        cfg.update(sync_base_url="http://cloud:9000")
        with open(self.path, encoding="utf-8") as f:
            self.assertEqual(yaml.safe_load(f), {"sync_base_url": "http://cloud:9000"})

    def test_file_must_hold_a_mapping(self) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("- just\n- a list\n")
        with self.assertRaises(ValueError):
            YamlConfig(self.path, environ={}).load()


class SettingsSchemaTest(unittest.TestCase):
    def test_defaults(self) -> None:
        settings = validate_settings({})
        self.assertFalse(settings.sync_enabled)
        self.assertEqual(settings.sync_interval_seconds, 300.0)
        self.assertEqual(settings.min_sync_gap_seconds, 60.0)

    def test_invalid_settings(self) -> None:
        with self.assertRaises(ValueError):
            validate_settings({"sync_interval_seconds": "often"})

    def test_user_settings_defaults_and_merge(self) -> None:
        defaults = load_user_settings(None)
        self.assertEqual(defaults.weight_unit, "kg")
        self.assertEqual(defaults.default_rest_seconds, 90)
        self.assertEqual(defaults.progression_increment, 2.5)
        self.assertTrue(defaults.auto_start_rest_timer)
        merged = load_user_settings(
            {"id": "user-settings", "weightUnit": "lbs", "progressionIncrement": 5, "soundEnabled": None}
        )
        self.assertEqual(merged.weight_unit, "lbs")
        self.assertEqual(merged.progression_increment, 5)
        self.assertTrue(merged.sound_enabled)
        with self.assertRaises(ValueError):
            load_user_settings({"weightUnit": "stone"})


if __name__ == "__main__":
    unittest.main()
