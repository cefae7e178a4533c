"""
coursepack: bidirectional conversion between live course databases and
portable static course snapshots.

This package provides:
- CoursePacker: live database -> chunked static snapshot
- validate_static_course: structural integrity checks for a snapshot
- CourseMigrator: static snapshot -> live database
- Document sources (CouchDB, in-memory) and file system adapters
"""

from .core.exceptions import (
    CoursePackError,
    SourceConnectionError,
    SnapshotValidationError,
    DocumentError,
    PartialWriteError,
    FileSystemError,
    CoursePackConfigError,
)
from .core.filesystem import LocalFileSystemAdapter, MemoryFileSystemAdapter
from .core.progress import ProgressEvent
from .snapshot.packer import CoursePacker, PackerConfig, PackResult
from .snapshot.migrator import CourseMigrator, MigratorConfig, MigrationResult
from .snapshot.validator import ValidationReport, validate_static_course
from .snapshot.sinks import AdapterSink, MemorySink

__version__ = "0.1.0"

__all__ = [
    # Exceptions
    "CoursePackError",
    "SourceConnectionError",
    "SnapshotValidationError",
    "DocumentError",
    "PartialWriteError",
    "FileSystemError",
    "CoursePackConfigError",
    # Adapters
    "LocalFileSystemAdapter",
    "MemoryFileSystemAdapter",
    "AdapterSink",
    "MemorySink",
    # Engine
    "ProgressEvent",
    "CoursePacker",
    "PackerConfig",
    "PackResult",
    "CourseMigrator",
    "MigratorConfig",
    "MigrationResult",
    "ValidationReport",
    "validate_static_course",
]
