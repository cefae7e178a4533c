"""
File system adapter interface and implementations.

Packer, Validator and Migrator never touch a concrete storage API directly;
every read and write of a snapshot goes through a FileSystemAdapter.
"""

import json
import logging
import os
import posixpath
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .exceptions import FileSystemError


logger = logging.getLogger(__name__)


def dumps_json(data: Any, indent: Optional[int] = 2) -> str:
    """
    Serialize a JSON payload the one way every snapshot file is serialized.

    Keys keep insertion order; callers that need a stable order build their
    dicts in a stable order. Output always ends with a newline.
    """
    return json.dumps(data, indent=indent, ensure_ascii=False) + "\n"


@dataclass
class FileStats:
    """Result of FileSystemAdapter.stat()."""
    size: int
    is_file: bool
    is_dir: bool


class FileSystemAdapter(ABC):
    """
    Abstract base class for byte-addressable stores (local disk, object
    store, in-memory).
    """

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Read a UTF-8 text file."""
        pass

    @abstractmethod
    def read_binary(self, path: str) -> bytes:
        """Read a file as raw bytes."""
        pass

    @abstractmethod
    def write_file(self, path: str, data: Union[str, bytes]) -> None:
        """
        Write text (UTF-8 encoded) or bytes to a file, replacing it.

        Parent directories are expected to exist (see ensure_dir).
        """
        pass

    def write_json(self, path: str, data: Any, indent: Optional[int] = 2) -> None:
        """Serialize data with dumps_json and write it."""
        self.write_file(path, dumps_json(data, indent=indent))

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check whether a file or directory exists."""
        pass

    @abstractmethod
    def stat(self, path: str) -> FileStats:
        """Return size and kind of a path. Raises FileSystemError if missing."""
        pass

    @abstractmethod
    def ensure_dir(self, path: str) -> None:
        """Create a directory and its parents if needed."""
        pass

    @abstractmethod
    def join_path(self, *segments: str) -> str:
        pass

    @abstractmethod
    def dirname(self, path: str) -> str:
        pass

    @abstractmethod
    def is_absolute(self, path: str) -> bool:
        pass

    def get_name(self) -> str:
        """Return the adapter name/identifier."""
        return self.__class__.__name__


class LocalFileSystemAdapter(FileSystemAdapter):
    """FileSystemAdapter over the local disk."""

    def read_file(self, path: str) -> str:
        try:
            return Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise FileSystemError(f"Failed to read file: {e}", "read_file", path) from e

    def read_binary(self, path: str) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise FileSystemError(f"Failed to read binary file: {e}", "read_binary", path) from e

    def write_file(self, path: str, data: Union[str, bytes]) -> None:
        payload = data.encode("utf-8") if isinstance(data, str) else data
        try:
            Path(path).write_bytes(payload)
        except OSError as e:
            raise FileSystemError(f"Failed to write file: {e}", "write_file", path) from e
        logger.debug(f"Wrote {len(payload)} bytes to {path}")

    def exists(self, path: str) -> bool:
        return Path(path).exists()

    def stat(self, path: str) -> FileStats:
        try:
            st = Path(path).stat()
        except OSError as e:
            raise FileSystemError(f"Failed to stat file: {e}", "stat", path) from e
        p = Path(path)
        return FileStats(size=st.st_size, is_file=p.is_file(), is_dir=p.is_dir())

    def ensure_dir(self, path: str) -> None:
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileSystemError(f"Failed to ensure directory: {e}", "ensure_dir", path) from e

    def join_path(self, *segments: str) -> str:
        return os.path.join(*segments)

    def dirname(self, path: str) -> str:
        return os.path.dirname(path)

    def is_absolute(self, path: str) -> bool:
        return os.path.isabs(path)


class MemoryFileSystemAdapter(FileSystemAdapter):
    """
    Dict-backed FileSystemAdapter using POSIX-style paths.

    Directories are tracked explicitly so that ensure_dir/exists/stat behave
    like a real file system. Safe for the parallel attachment writes the
    Packer performs.
    """

    def __init__(self, files: Optional[Dict[str, bytes]] = None):
        self._lock = threading.Lock()
        self._files: Dict[str, bytes] = {}
        self._dirs = {"/", "."}
        for path, data in (files or {}).items():
            self.ensure_dir(self.dirname(path))
            self.write_file(path, data)

    @staticmethod
    def _norm(path: str) -> str:
        return posixpath.normpath(path)

    def read_file(self, path: str) -> str:
        try:
            return self.read_binary(path).decode("utf-8")
        except UnicodeDecodeError as e:
            raise FileSystemError(f"Failed to read file: {e}", "read_file", path) from e

    def read_binary(self, path: str) -> bytes:
        with self._lock:
            data = self._files.get(self._norm(path))
        if data is None:
            raise FileSystemError(f"No such file: {path}", "read_binary", path)
        return data

    def write_file(self, path: str, data: Union[str, bytes]) -> None:
        key = self._norm(path)
        parent = posixpath.dirname(key) or "."
        with self._lock:
            if parent not in self._dirs:
                raise FileSystemError(f"Parent directory does not exist: {parent}", "write_file", path)
            self._files[key] = data.encode("utf-8") if isinstance(data, str) else bytes(data)

    def delete(self, path: str) -> None:
        """Remove a file. Only the in-memory adapter supports this."""
        with self._lock:
            self._files.pop(self._norm(path), None)

    def exists(self, path: str) -> bool:
        key = self._norm(path)
        with self._lock:
            return key in self._files or key in self._dirs

    def stat(self, path: str) -> FileStats:
        key = self._norm(path)
        with self._lock:
            if key in self._files:
                return FileStats(size=len(self._files[key]), is_file=True, is_dir=False)
            if key in self._dirs:
                return FileStats(size=0, is_file=False, is_dir=True)
        raise FileSystemError(f"No such file or directory: {path}", "stat", path)

    def ensure_dir(self, path: str) -> None:
        key = self._norm(path)
        with self._lock:
            while key not in self._dirs:
                self._dirs.add(key)
                key = posixpath.dirname(key) or "."

    def join_path(self, *segments: str) -> str:
        return posixpath.join(*segments)

    def dirname(self, path: str) -> str:
        return posixpath.dirname(path)

    def is_absolute(self, path: str) -> bool:
        return posixpath.isabs(path)

    def list_files(self, prefix: str = "") -> Dict[str, int]:
        """Map of path -> size for every stored file under a prefix."""
        norm_prefix = self._norm(prefix) if prefix else ""
        with self._lock:
            return {
                path: len(data)
                for path, data in sorted(self._files.items())
                if not norm_prefix or path == norm_prefix or path.startswith(norm_prefix + "/")
            }
