from copy import deepcopy
from os import getenv
from pathlib import Path
from threading import RLock
from typing import Any

from dotenv import load_dotenv
from yaml import safe_load

from leasekeeper.config.config_schema import ConfigSchema

load_dotenv()

ROOT_PATH = Path(getenv("ROOT_PATH", Path(__file__).parent))
CONFIG_DIR = getenv("CONFIG_DIR", "")
CONFIG_PATH: Path = ROOT_PATH / CONFIG_DIR

CONFIG_FILE = getenv("CONFIG_FILE", "config.yaml")
CONFIG_FILEPATH: Path = CONFIG_PATH / CONFIG_FILE


class Config:
    """YAML settings validated against ConfigSchema.

    Sections are handed out as deep copies, so callers can't alter the
    loaded settings. `reload()` re-reads and re-validates the file.
    """

    def __init__(self, path: Path = CONFIG_FILEPATH):
        self._lock = RLock()
        self._path: Path = path
        self._config = {}
        self._load()

    def _load(self):
        with self._lock:
            with open(self._path, mode="r", encoding="utf-8") as _file_handle:
                _raw = safe_load(_file_handle)
            ConfigSchema.model_validate(_raw)
            self._config = _raw

    @property
    def path(self) -> Path:
        return self._path

    def reload(self):
        """Re-read the file; the previous settings stay if validation fails."""
        self._load()

    def resolve_path(self, relative: str) -> Path:
        """Resolve a path from the config relative to the config file directory."""
        _path = Path(relative)
        if _path.is_absolute():
            return _path
        return self._path.parent / _path

    def get(self, key: str) -> Any:
        """Deep copy of a top-level section such as "dhcp" or "static"."""

        if not isinstance(key, str) or not key:
            raise ValueError("Config section name must be a non-empty str.")

        with self._lock:
            if key not in self._config:
                raise RuntimeError(f"Unknown config section {key!r}.")
            return deepcopy(self._config[key])


config = Config()
