"""Key-value persistence backends for the identity store.

* ``JsonFileStore`` -- one JSON document per key under a state directory.
  ``save()`` writes to a temp file then calls ``os.replace()`` so readers
  never see partial data.
* ``MemoryStore`` -- dict-backed, for tests and dry runs.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SAFE_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonFileStore:
    """Persist values as ``<state_dir>/<key>.json``.

    Args:
        state_dir: Directory for the JSON files (typically
            ``.todo_sync/``). Created on first save.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = Path(state_dir)

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    def load(self, key: str) -> Any | None:
        """Return the stored value, or ``None`` if nothing was saved yet.

        An empty or corrupt file is treated as missing and logged; the
        next ``save()`` replaces it.
        """
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as fh:
                text = fh.read()
        except OSError as exc:
            logger.error("Failed to read %s: %s", path, exc)
            raise
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring corrupt state file %s: %s", path, exc)
            return None

    def save(self, key: str, value: Any) -> None:
        """Persist *value* under *key* atomically."""
        self._state_dir.mkdir(parents=True, exist_ok=True)
        target = self._path(key)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(value, fh, indent=2, sort_keys=True)
            os.replace(tmp_path, target)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY_RE.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._state_dir / f"{key}.json"


class MemoryStore:
    """In-memory ``KeyValueStore``; values are deep-copied on the way in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})
        self.save_count = 0

    def load(self, key: str) -> Any | None:
        return copy.deepcopy(self._data.get(key))

    def save(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self.save_count += 1
