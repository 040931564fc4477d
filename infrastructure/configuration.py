# infrastructure/configuration.py
import json
import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict

from infrastructure.logging_service import get_module_logger

logger = get_module_logger("Configuration", "configuration.log")


class Platform(Enum):
    MOBILE = "mobile"  # Images externalisées en fichiers
    WEB = "web"        # Images gardées inline en base64


def default_data_dir() -> str:
    app_data = os.environ.get('LOCALAPPDATA', os.path.join(os.path.expanduser('~'), '.local', 'share'))
    return os.path.join(app_data, "VoletStore")


@dataclass(frozen=True)
class StorageSettings:
    """Resolved storage settings. Sizes are UTF-8 bytes."""
    platform: Platform = Platform.MOBILE
    data_dir: str = ""
    key_prefix: str = "SIEMENS"
    chunk_threshold_bytes: int = 500 * 1024
    chunk_size_bytes: int = 500 * 1024
    max_value_bytes: int = 2 * 1024 * 1024
    history_limit: int = 50
    images_dir_name: str = "notes"
    log_dir: str = "logs"
    db_filename: str = "voletstore.db"

    @property
    def db_path(self) -> str:
        return os.path.join(self.data_dir, self.db_filename)

    def key(self, name: str) -> str:
        """Storage key for a top-level collection, e.g. key('NOTES') -> 'SIEMENS_NOTES'."""
        return f"{self.key_prefix}_{name}"


class ConfigurationService:
    """Service to load and manage storage configuration."""

    _instance = None  # Singleton instance

    DEFAULTS = {
        "platform": Platform.MOBILE.value,
        "data_dir": None,
        "key_prefix": "SIEMENS",
        "chunk_threshold_bytes": 500 * 1024,
        "chunk_size_bytes": 500 * 1024,
        "max_value_bytes": 2 * 1024 * 1024,
        "history_limit": 50,
        "images_dir_name": "notes",
        "log_dir": "logs",
    }

    @classmethod
    def get_instance(cls) -> 'ConfigurationService':
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = ConfigurationService()
        return cls._instance

    def __init__(self, config_path: str = None):
        if config_path is None:
            db_dir = default_data_dir()
            os.makedirs(db_dir, exist_ok=True)
            config_path = os.path.join(db_dir, "storage_config.json")

        self.config_path = config_path
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        defaults = dict(self.DEFAULTS)

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    loaded = json.load(f)
                if not isinstance(loaded, dict):
                    raise ValueError("configuration root must be an object")
                # Merge with basic defaults
                for key, value in defaults.items():
                    if key not in loaded:
                        loaded[key] = value
                return loaded
            except (OSError, ValueError) as e:
                logger.warning(f"Invalid config {self.config_path}: {e}. Using defaults.")

        return defaults

    def save(self):
        """Save configuration to file."""
        try:
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.error(f"Error saving config: {e}")

    def get_platform(self) -> Platform:
        try:
            return Platform(self.config.get("platform"))
        except ValueError:
            logger.warning(f"Unknown platform {self.config.get('platform')!r}, using mobile")
            return Platform.MOBILE

    def set_platform(self, platform: Platform):
        self.config["platform"] = platform.value
        self.save()

    def get_data_dir(self) -> str:
        """Directory holding the database and image blobs. Defaults to AppData."""
        folder = self.config.get("data_dir") or default_data_dir()
        os.makedirs(folder, exist_ok=True)
        return folder

    def set_data_dir(self, folder: str):
        old_folder = self.config.get("data_dir")
        self.config["data_dir"] = folder
        self.save()
        return old_folder

    def _positive_int(self, name: str) -> int:
        value = self.config.get(name)
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            if value != self.DEFAULTS[name]:
                logger.warning(f"Invalid value for {name}: {value!r}, using {self.DEFAULTS[name]}")
            return self.DEFAULTS[name]
        return value

    def get_settings(self, **overrides) -> StorageSettings:
        """Build the immutable settings, with optional field overrides."""
        settings = StorageSettings(
            platform=self.get_platform(),
            data_dir=self.get_data_dir(),
            key_prefix=str(self.config.get("key_prefix") or self.DEFAULTS["key_prefix"]),
            chunk_threshold_bytes=self._positive_int("chunk_threshold_bytes"),
            chunk_size_bytes=self._positive_int("chunk_size_bytes"),
            max_value_bytes=self._positive_int("max_value_bytes"),
            history_limit=self._positive_int("history_limit"),
            images_dir_name=str(self.config.get("images_dir_name") or self.DEFAULTS["images_dir_name"]),
            log_dir=str(self.config.get("log_dir") or self.DEFAULTS["log_dir"]),
        )
        if overrides:
            settings = replace(settings, **overrides)
        return settings
