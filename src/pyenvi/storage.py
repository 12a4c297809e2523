"""State store implementations.

Values must be JSON-serializable. ``JsonFileStateStore`` writes the whole
mapping on every ``set`` so state survives process restarts.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any


_LOGGER = logging.getLogger(__name__)


class MemoryStateStore:
    """Process-local state store."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        """Initialize the store.

        Args:
            initial: Optional initial contents.
        """
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value for ``key``."""
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store a value under ``key``."""
        self._data[key] = value

    def as_dict(self) -> dict[str, Any]:
        """Return a copy of the stored values."""
        return dict(self._data)


class JsonFileStateStore(MemoryStateStore):
    """State store persisted to a JSON file.

    Example:
        ```python
        store = JsonFileStateStore("~/.config/pyenvi/state.json")
        store.set("device_instance_id", "3f2a...")
        ```
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize the store, loading existing contents if the file exists.

        Args:
            path: Location of the JSON file. Parent directories are created on first write.
        """
        self._path = Path(path).expanduser()
        super().__init__(self._load())

    @property
    def path(self) -> Path:
        """Get the backing file path."""
        return self._path

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            _LOGGER.warning("Ignoring unreadable state file %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            _LOGGER.warning("Ignoring state file %s: expected a JSON object", self._path)
            return {}
        return data

    def set(self, key: str, value: Any) -> None:
        """Store a value under ``key`` and write the file."""
        super().set(key, value)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self._path)
