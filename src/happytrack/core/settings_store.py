"""Persistent key-value settings store backed by a JSON file."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from ..utils.exceptions import ConfigurationError
from ..utils.logging_config import get_logger

DEFAULT_SETTINGS_DIR = Path.home() / ".happytrack"


class SettingsStore:
    """Key-value store persisted as a single JSON document.

    Every mutation rewrites the whole file through a temporary file in the
    same directory, so a crash never leaves a half-written settings file.
    """

    def __init__(self, path: Optional[Path] = None):
        self.logger = get_logger(__name__)
        self.path = Path(path) if path else DEFAULT_SETTINGS_DIR / "settings.json"
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to load settings from {self.path}: {e}")
            raise ConfigurationError(f"Failed to load settings: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError("Settings file must contain a JSON object")

        return data

    def _save(self, data: Dict[str, Any]) -> None:
        """Write ``data`` to disk, then make it the in-memory state."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            prefix=".settings-", suffix=".json", dir=self.path.parent
        )

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.chmod(temp_path, 0o600)
            os.replace(temp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            self.logger.error(f"Failed to save settings to {self.path}: {e}")
            raise ConfigurationError(f"Failed to save settings: {e}")

        self._data = data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._save({**self._data, key: value})

    def delete(self, key: str) -> None:
        if key not in self._data:
            return
        self._save({k: v for k, v in self._data.items() if k != key})

    def clear(self) -> None:
        self._save({})
