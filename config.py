import logging
import os

import keyring
import yaml

from settings_schema import SettingsSchema, validate_settings

APP_VERSION = "1.0.0"

ENV_OVERRIDES = {
    "FITNESS_DB_PATH": "db_path",
    "FITNESS_LOG_LEVEL": "log_level",
    "FITNESS_CATALOG_PATH": "catalog_path",
    "FITNESS_ALLOW_ROLE_SWITCH": "allow_role_switch",
}


class YamlConfig:
    """Load and save settings to a YAML file with optional encryption."""

    SENSITIVE_KEYS = {
        "seed_trainer_password",
    }

    def __init__(self, path: str = "settings.yaml") -> None:
        self.path = path
        self.encrypt = os.environ.get("ENCRYPT_SETTINGS") == "1"
        self.service = "fitness-coach"

    def load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if self.encrypt:
            for key in list(data.keys()):
                if key in self.SENSITIVE_KEYS:
                    secret = keyring.get_password(self.service, key)
                    if secret is not None:
                        data[key] = secret
                    else:
                        data.pop(key, None)
        return data

    def save(self, data: dict) -> None:
        out = dict(data)
        if self.encrypt:
            for key in self.SENSITIVE_KEYS:
                if key in out:
                    keyring.set_password(self.service, key, str(out[key]))
                    out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)


def load_settings(path: str = "settings.yaml", **overrides) -> SettingsSchema:
    """Merge YAML settings, environment variables and explicit overrides."""
    data = YamlConfig(path).load()
    for env_key, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_key)
        if value is not None:
            data[key] = value
    data.update({k: v for k, v in overrides.items() if v is not None})
    return validate_settings(data)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
