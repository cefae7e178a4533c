"""
Output sinks for the Packer.

The Packer has exactly one code path; where its bytes end up is decided by
the sink. Every JSON file is serialized once with `dumps_json` before it
reaches a sink, so a MemorySink and an AdapterSink fed by the same run hold
byte-identical files.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set

from ..core.filesystem import FileSystemAdapter, dumps_json
from .manifest import MANIFEST_FILE

logger = logging.getLogger(__name__)


class OutputSink(ABC):
    """
    Abstract destination for snapshot files.

    Paths are always relative and '/'-separated (e.g. 'chunks/chunk-0000.json').
    Implementations must be safe for concurrent `write` calls.
    """

    @abstractmethod
    def write(self, relative_path: str, data: bytes) -> None:
        """Write one file, creating parent directories as needed."""
        pass

    def write_json(self, relative_path: str, data: Any) -> bytes:
        """Serialize and write a JSON file; returns the bytes written."""
        payload = dumps_json(data).encode("utf-8")
        self.write(relative_path, payload)
        return payload

    @abstractmethod
    def written_paths(self) -> List[str]:
        """Relative paths written so far, in write order."""
        pass

    def get_name(self) -> str:
        return self.__class__.__name__


class AdapterSink(OutputSink):
    """Writes through a FileSystemAdapter under an output directory."""

    def __init__(self, fs: FileSystemAdapter, output_dir: str):
        self.fs = fs
        self.output_dir = output_dir
        self._lock = threading.Lock()
        self._dirs: Set[str] = set()
        self._paths: List[str] = []
        self.fs.ensure_dir(output_dir)

    def _ensure_parent(self, full_path: str) -> None:
        parent = self.fs.dirname(full_path)
        with self._lock:
            if parent in self._dirs:
                return
        self.fs.ensure_dir(parent)
        with self._lock:
            self._dirs.add(parent)

    def write(self, relative_path: str, data: bytes) -> None:
        full_path = self.fs.join_path(self.output_dir, *relative_path.split("/"))
        self._ensure_parent(full_path)
        self.fs.write_file(full_path, data)
        with self._lock:
            self._paths.append(relative_path)

    def written_paths(self) -> List[str]:
        with self._lock:
            return list(self._paths)

    def get_name(self) -> str:
        return f"{self.fs.get_name()}:{self.output_dir}"


class MemorySink(OutputSink):
    """Captures the snapshot as {relative_path: bytes}."""

    def __init__(self):
        self._lock = threading.Lock()
        self.files: Dict[str, bytes] = {}
        self._paths: List[str] = []

    def write(self, relative_path: str, data: bytes) -> None:
        with self._lock:
            self.files[relative_path] = bytes(data)
            self._paths.append(relative_path)

    def written_paths(self) -> List[str]:
        with self._lock:
            return list(self._paths)

    def read(self, relative_path: str) -> Optional[bytes]:
        with self._lock:
            return self.files.get(relative_path)

    def write_to(self, fs: FileSystemAdapter, output_dir: str) -> None:
        """Copy the captured files to a FileSystemAdapter, manifest last."""
        target = AdapterSink(fs, output_dir)
        manifest = None
        for path in sorted(self.files):
            if path == MANIFEST_FILE:
                manifest = self.files[path]
                continue
            target.write(path, self.files[path])
        if manifest is not None:
            target.write(MANIFEST_FILE, manifest)
        logger.debug(f"Copied {len(self.files)} captured files to {target.get_name()}")
