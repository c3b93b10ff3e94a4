import logging
import os

import keyring
import yaml

from settings_schema import AppSettingsSchema, validate_settings

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"
ENV_PREFIX = "SETFLOW_"
KEYRING_SERVICE = "setflow"


class YamlConfig:
    """Deployment settings for a SetFlow device or server.

    Values come from a YAML file and can be overridden per process with
    ``SETFLOW_<KEY>`` environment variables. With ``ENCRYPT_SETTINGS=1``
    the sync API key lives in the OS keyring and the file only records
    that one is set.
    """

    SENSITIVE_KEYS = ("sync_api_key",)

    def __init__(self, path: str = "settings.yaml", environ: dict | None = None) -> None:
        self.path = path
        self.environ = os.environ if environ is None else environ
        self.encrypt = self.environ.get("ENCRYPT_SETTINGS") == "1"

    def _read_file(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} must contain a mapping")
        if self.encrypt:
            for key in self.SENSITIVE_KEYS:
                if key not in data:
                    continue
                secret = keyring.get_password(KEYRING_SERVICE, key)
                if secret is None:
                    logger.warning("%s is marked as stored but missing from the keyring", key)
                    del data[key]
                else:
                    data[key] = secret
        return data

    def _env_overrides(self) -> dict:
        overrides = {}
        for name, value in self.environ.items():
            if name.startswith(ENV_PREFIX):
                key = name[len(ENV_PREFIX):].lower()
                overrides[key] = value
                logger.debug("setting %s overridden from environment", key)
        return overrides

    def load(self) -> dict:
        data = self._read_file()
        data.update(self._env_overrides())
        return data

    def settings(self) -> AppSettingsSchema:
        return validate_settings(self.load())

    def save(self, data: dict) -> None:
        out = dict(data)
        if self.encrypt:
            for key in self.SENSITIVE_KEYS:
                if out.get(key):
                    keyring.set_password(KEYRING_SERVICE, key, str(out[key]))
                    out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)

    def update(self, **values) -> dict:
        """Merge ``values`` into the file; environment overrides are not written."""
        data = self._read_file()
        data.update(values)
        self.save(data)
        return data
