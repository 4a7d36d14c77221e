"""Device-local key/value stores for small scalars such as the self id."""
from __future__ import annotations

import json
import logging
from pathlib import Path

from ..errors import ConfigurationError
from ..fs import atomic_write_json

logger = logging.getLogger(__name__)


class MemoryLocalStore:
    """Dict-backed store; contents last as long as the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str | None) -> None:
        if value is None:
            self._values.pop(key, None)
        else:
            self._values[key] = value


class JsonFileLocalStore:
    """Store persisted as a flat JSON object, rewritten atomically on each set."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._values = self._read()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Local state file {self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Local state file {self.path} must hold a JSON object")
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str | None) -> None:
        if value is None:
            if self._values.pop(key, None) is None:
                return
        else:
            self._values[key] = value
        atomic_write_json(self.path, self._values)
        logger.debug("Wrote local state key %s to %s", key, self.path)
