"""Flat-file key-value store backing the sync server.

Each key maps to one file below the data directory; ``/`` in a key is a
directory separator. Writes go to a temp file first and are renamed into
place, so a reader never sees a half-written value.
"""

import logging
import os
import tempfile
from pathlib import Path

from ..errors import StorageError

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".tmp_"


class FileKVStore:
    """Key-value store on the local filesystem."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir).expanduser().resolve()
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        """Map a key to its file, rejecting anything that escapes data_dir."""
        if not key or key.startswith("/") or "\\" in key or "\x00" in key:
            raise ValueError(f"Invalid key: {key!r}")

        parts = key.split("/")
        for part in parts:
            if not part or part in (".", "..") or part.startswith("."):
                raise ValueError(f"Invalid key: {key!r}")

        path = self.data_dir.joinpath(*parts)
        if not path.resolve().is_relative_to(self.data_dir):
            raise ValueError(f"Invalid key: {key!r}")
        return path

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.is_file():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError("read_key", key, e)

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def put(self, key: str, value: bytes) -> None:
        """Write a value, replacing any previous one."""
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError("write_key", key, e)
        self._write_atomic(path, value)

    def put_if_absent(self, key: str, value: bytes) -> bool:
        """Write a value only if the key is new. Returns True if written."""
        if self.exists(key):
            return False
        self.put(key, value)
        return True

    def delete(self, key: str) -> bool:
        """Delete a key. Returns False if it did not exist."""
        path = self._path(key)
        if not path.is_file():
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError("delete_key", key, e)
        return True

    def list(self, prefix: str = "") -> list[str]:
        """All keys starting with prefix, sorted."""
        # Walk only the deepest directory the prefix pins down
        head = prefix.rsplit("/", 1)[0] if "/" in prefix else ""
        base = self._path(head) if head else self.data_dir
        if not base.is_dir():
            return []

        keys = []
        for root, dirs, files in os.walk(base):
            dirs[:] = [d for d in dirs if not d.startswith(".")]
            for name in files:
                if name.startswith("."):
                    continue
                key = Path(root, name).relative_to(self.data_dir).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        return sorted(keys)

    def _write_atomic(self, path: Path, data: bytes) -> None:
        fd = None
        temp_path = None
        try:
            fd, temp_path = tempfile.mkstemp(dir=str(path.parent), prefix=TEMP_PREFIX)
            os.write(fd, data)
            os.close(fd)
            fd = None

            os.replace(temp_path, path)
            temp_path = None
        except OSError as e:
            raise StorageError("write_key", str(path), e)
        finally:
            if fd is not None:
                os.close(fd)
            if temp_path is not None and os.path.exists(temp_path):
                os.unlink(temp_path)
