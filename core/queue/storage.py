"""Key -> string blob stores backing the durable queue.

The queue keeps a single JSON array under one key. Two backends exist:

- FileKeyValueStorage: one file per key under a directory, replaced
  atomically on every write so a crash never leaves a half-written queue.
- MemoryKeyValueStorage: process-local dict, used in tests and when no
  directory is configured.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

from exceptions.exceptions import QueueStorageError


logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    """Minimal blob store interface used by DurableQueue."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class MemoryKeyValueStorage:
    """In-memory store; survives nothing but the current process."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileKeyValueStorage:
    """File-backed store writing `<base_dir>/<key>.json`.

    Parameters
    ----------
    base_dir:
        Directory holding one file per key. Created on first use.
    """

    def __init__(self, base_dir: str) -> None:
        self._base_dir = Path(base_dir)

    def _path(self, key: str) -> Path:
        return self._base_dir / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise QueueStorageError(f"Unable to read {path}: {exc}") from exc

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self._base_dir), prefix=f".{key}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(value)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise QueueStorageError(f"Unable to write {path}: {exc}") from exc

    def remove_item(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise QueueStorageError(f"Unable to remove {path}: {exc}") from exc


def open_storage(base_dir: Optional[str]) -> Optional[KeyValueStorage]:
    """Return a file-backed store for `base_dir`, or None if it is unusable.

    A None result makes the queue degrade to fire-and-forget.
    """
    if not base_dir:
        return None
    try:
        Path(base_dir).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(
            "[QUEUE] Local storage unavailable at %s (%s); queuing disabled",
            base_dir,
            exc,
        )
        return None
    return FileKeyValueStorage(base_dir)
