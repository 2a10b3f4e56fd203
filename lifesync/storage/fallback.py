"""Fallback key-value backends used when SQLite can't be opened.

JsonFileBackend keeps the whole map in memory and rewrites a single JSON
file on every change (temp file + os.replace, so readers of the file never
see a half-written map). MemoryBackend is the last resort and the default
for tests and guest sessions that shouldn't touch disk.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from lifesync.protocols import StorageError

logger = logging.getLogger(__name__)


class MemoryBackend:
    """Process-local dict storage."""

    name = "memory"

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def open(self) -> None:
        pass

    def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        # Hand out copies so callers can't mutate stored state in place
        return json.loads(json.dumps(value)) if value is not None else None

    def put(self, key: str, value: Any) -> None:
        self._data[key] = json.loads(json.dumps(value))

    def put_many(self, items: List[Tuple[str, Any]]) -> None:
        staged = {key: json.loads(json.dumps(value)) for key, value in items}
        self._data.update(staged)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def list(self, prefix: str) -> List[Tuple[str, Any]]:
        return [(k, self.get(k)) for k in sorted(self._data) if k.startswith(prefix)]

    def close(self) -> None:
        pass


class JsonFileBackend(MemoryBackend):
    """Single-file JSON storage, the synchronous localStorage-style fallback."""

    name = "json_file"

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise StorageError(f"{self.path} does not contain a JSON object")
            self._data = data
        else:
            self._flush()

    def _flush(self) -> None:
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, separators=(",", ":"))
            os.replace(tmp_path, self.path)
        except OSError as e:
            _remove_quietly(tmp_path)
            raise StorageError(f"Failed to write {self.path}: {e}") from e

    def _commit(self, mutate) -> None:
        previous = dict(self._data)
        mutate()
        try:
            self._flush()
        except StorageError:
            self._data = previous
            raise

    def put(self, key: str, value: Any) -> None:
        self._commit(lambda: MemoryBackend.put(self, key, value))

    def put_many(self, items: List[Tuple[str, Any]]) -> None:
        self._commit(lambda: MemoryBackend.put_many(self, items))

    def delete(self, key: str) -> None:
        if key not in self._data:
            return
        self._commit(lambda: MemoryBackend.delete(self, key))


def _remove_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except OSError:
        logger.debug(f"Could not remove temp file {path}", exc_info=True)
