"""
Snapshot module for live database <-> static course conversion.

This module provides:
- Manifest: the commit marker and descriptor of a packed course
- Index builders: advisory secondary indices written beside the chunks
- Output sinks: adapter-backed or in-memory destinations for a pack run
- Packer, Validator and Migrator
"""

from .manifest import CourseManifest, ChunkDescriptor, IndexDescriptor, DesignDocDescriptor
from .index import (
    IndexBuilder,
    FieldIndexBuilder,
    BucketIndexBuilder,
    TagIndexBuilder,
    default_index_builders,
)
from .sinks import OutputSink, AdapterSink, MemorySink
from .packer import CoursePacker, PackerConfig, PackResult
from .validator import ValidationReport, validate_static_course
from .migrator import CourseMigrator, MigratorConfig, MigrationResult

__all__ = [
    "CourseManifest",
    "ChunkDescriptor",
    "IndexDescriptor",
    "DesignDocDescriptor",
    "IndexBuilder",
    "FieldIndexBuilder",
    "BucketIndexBuilder",
    "TagIndexBuilder",
    "default_index_builders",
    "OutputSink",
    "AdapterSink",
    "MemorySink",
    "CoursePacker",
    "PackerConfig",
    "PackResult",
    "ValidationReport",
    "validate_static_course",
    "CourseMigrator",
    "MigratorConfig",
    "MigrationResult",
]
