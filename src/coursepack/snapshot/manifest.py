"""
Course manifest handling.

The manifest is the authoritative descriptor of a packed course and the
sole commit marker of a snapshot: it is written last, and a snapshot
without a readable manifest is treated as absent.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..core.exceptions import FileSystemError, SnapshotValidationError
from ..core.filesystem import FileSystemAdapter

logger = logging.getLogger(__name__)


SCHEMA_VERSION = "1.0.0"
MANIFEST_FILE = "manifest.json"
CHUNKS_DIR = "chunks"
INDICES_DIR = "indices"
ATTACHMENTS_DIR = "attachments"
DESIGN_DOCS_DIR = "design-docs"


def chunk_id_for(number: int) -> str:
    """Chunk id for a zero-based chunk number (chunk-0000, chunk-0001, ...)."""
    return f"chunk-{number:04d}"


def chunk_path_for(chunk_id: str) -> str:
    return f"{CHUNKS_DIR}/{chunk_id}.json"


def index_path_for(name: str) -> str:
    return f"{INDICES_DIR}/{name}.json"


@dataclass
class ChunkDescriptor:
    """One chunk entry in the manifest."""
    id: str
    path: str
    document_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "documentCount": self.document_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkDescriptor":
        return cls(
            id=data["id"],
            path=data.get("path") or chunk_path_for(data["id"]),
            document_count=data.get("documentCount", 0),
        )


@dataclass
class IndexDescriptor:
    """One index entry in the manifest."""
    name: str
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "path": self.path}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexDescriptor":
        return cls(name=data["name"], path=data.get("path") or index_path_for(data["name"]))


@dataclass
class DesignDocDescriptor:
    """
    One design document entry in the manifest.

    `path` is optional on read; snapshots that only list ids are accepted.
    """
    id: str
    path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id}
        if self.path:
            data["path"] = self.path
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DesignDocDescriptor":
        return cls(id=data["id"], path=data.get("path"))


@dataclass
class CourseManifest:
    """
    Manifest for a packed course.

    Serialized with the camelCase keys static consumers read:
    schemaVersion, courseId, courseName, lastUpdated, documentCount,
    chunks, indices, designDocs.
    """
    course_id: str
    course_name: str
    document_count: int = 0
    chunks: List[ChunkDescriptor] = field(default_factory=list)
    indices: List[IndexDescriptor] = field(default_factory=list)
    design_docs: List[DesignDocDescriptor] = field(default_factory=list)
    last_updated: Optional[datetime] = None
    schema_version: str = SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "schemaVersion": self.schema_version,
            "courseId": self.course_id,
            "courseName": self.course_name,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
            "documentCount": self.document_count,
            "chunks": [c.to_dict() for c in self.chunks],
            "indices": [i.to_dict() for i in self.indices],
            "designDocs": [d.to_dict() for d in self.design_docs],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CourseManifest":
        """Create from dictionary."""
        last_updated = data.get("lastUpdated")
        if isinstance(last_updated, str):
            try:
                last_updated = datetime.fromisoformat(last_updated.replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Unparseable lastUpdated in manifest: {last_updated}")
                last_updated = None

        return cls(
            course_id=data.get("courseId", ""),
            course_name=data.get("courseName", ""),
            document_count=data.get("documentCount", 0),
            chunks=[ChunkDescriptor.from_dict(c) for c in data.get("chunks") or []],
            indices=[IndexDescriptor.from_dict(i) for i in data.get("indices") or []],
            design_docs=[DesignDocDescriptor.from_dict(d) for d in data.get("designDocs") or []],
            last_updated=last_updated,
            schema_version=data.get("schemaVersion", SCHEMA_VERSION),
        )

    def touch(self) -> None:
        """Stamp lastUpdated with the current UTC time."""
        self.last_updated = datetime.now(timezone.utc)

    def chunk_total(self) -> int:
        return sum(c.document_count for c in self.chunks)

    @classmethod
    def load(cls, static_dir: str, fs: FileSystemAdapter) -> "CourseManifest":
        """
        Read and parse manifest.json from a snapshot directory.

        Raises:
            SnapshotValidationError if the manifest is missing or unparseable
        """
        path = fs.join_path(static_dir, MANIFEST_FILE)
        if not fs.exists(path):
            raise SnapshotValidationError(f"Manifest not found: {path}", errors=[f"Manifest not found: {path}"])
        try:
            data = json.loads(fs.read_file(path))
        except (FileSystemError, json.JSONDecodeError) as e:
            raise SnapshotValidationError(
                f"Manifest unreadable: {path}: {e}", errors=[f"Manifest unreadable: {path}: {e}"]
            ) from e
        if not isinstance(data, dict):
            raise SnapshotValidationError(
                f"Manifest is not an object: {path}", errors=[f"Manifest is not an object: {path}"]
            )
        try:
            return cls.from_dict(data)
        except (KeyError, TypeError) as e:
            raise SnapshotValidationError(
                f"Manifest malformed: {path}: {e}", errors=[f"Manifest malformed: {path}: {e}"]
            ) from e
