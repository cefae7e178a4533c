"""
Structural validation of static course snapshots.

The Validator only reads. It answers one question, whether the snapshot
is complete and self-consistent enough to migrate, and reports every
problem it can find rather than stopping at the first one. Only a missing
or unusable manifest stops it early.
"""

import json
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.exceptions import DocumentError, FileSystemError, SnapshotValidationError
from ..core.filesystem import FileSystemAdapter
from ..core.models import Document
from .manifest import MANIFEST_FILE, CourseManifest, chunk_id_for

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    """
    Result of validate_static_course.

    `valid` is True exactly when `errors` is empty; warnings never make a
    snapshot invalid.
    """
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    course_id: Optional[str] = None
    course_name: Optional[str] = None

    def error(self, message: str) -> None:
        self.errors.append(message)
        self.valid = False

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "courseId": self.course_id,
            "courseName": self.course_name,
        }


def resolve_snapshot_path(fs: FileSystemAdapter, static_dir: str, relative: str) -> str:
    """
    Join a manifest-relative path onto the snapshot directory.

    Raises:
        SnapshotValidationError if the path is absolute or climbs out of
        the snapshot directory
    """
    if not isinstance(relative, str) or not relative:
        raise SnapshotValidationError(f"Empty path in snapshot: {relative!r}")
    normalized = posixpath.normpath(relative)
    if posixpath.isabs(normalized) or fs.is_absolute(relative) or normalized.split("/")[0] == "..":
        raise SnapshotValidationError(f"Path escapes the snapshot directory: {relative}")
    return fs.join_path(static_dir, *normalized.split("/"))


def read_json_file(fs: FileSystemAdapter, path: str) -> Any:
    """
    Read and parse a JSON file.

    Raises:
        SnapshotValidationError if the file is missing or unparseable
    """
    try:
        return json.loads(fs.read_file(path))
    except FileSystemError as e:
        raise SnapshotValidationError(f"Unreadable file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise SnapshotValidationError(f"Invalid JSON in {path}: {e}") from e


def validate_static_course(static_dir: str, fs: FileSystemAdapter) -> ValidationReport:
    """
    Check a static course directory for structural integrity.

    Args:
        static_dir: Snapshot root
        fs: Adapter used for every read

    Returns:
        ValidationReport; errors block migration, warnings do not
    """
    report = ValidationReport()
    manifest_path = fs.join_path(static_dir, MANIFEST_FILE)

    if not fs.exists(manifest_path):
        report.error(f"Manifest not found: {manifest_path}")
        return report
    try:
        raw = read_json_file(fs, manifest_path)
    except SnapshotValidationError as e:
        report.error(f"Manifest unreadable: {e}")
        return report
    if not isinstance(raw, dict):
        report.error(f"Manifest is not a JSON object: {manifest_path}")
        return report

    report.course_id = raw.get("courseId")
    report.course_name = raw.get("courseName")

    document_count = raw.get("documentCount")
    if isinstance(document_count, bool) or not isinstance(document_count, int) or document_count < 0:
        report.error(f"Manifest documentCount must be a non-negative integer, got {document_count!r}")
        return report
    if not raw.get("schemaVersion"):
        report.error("Manifest has no schemaVersion")
        return report
    if not isinstance(raw.get("chunks", []), list):
        report.error("Manifest chunks must be a list")
        return report

    try:
        manifest = CourseManifest.from_dict(raw)
    except (KeyError, TypeError) as e:
        report.error(f"Manifest malformed: {e}")
        return report

    _check_chunks(manifest, static_dir, fs, report)
    _check_indices(manifest, static_dir, fs, report)
    _check_design_docs(manifest, static_dir, fs, report)

    if report.valid:
        logger.info(
            f"Snapshot {static_dir} is valid ({manifest.document_count} documents, "
            f"{len(report.warnings)} warnings)"
        )
    else:
        logger.warning(f"Snapshot {static_dir} has {len(report.errors)} errors")
    return report


def _check_chunks(
    manifest: CourseManifest,
    static_dir: str,
    fs: FileSystemAdapter,
    report: ValidationReport,
) -> None:
    declared_total = 0
    seen_ids: Dict[str, str] = {}

    for position, chunk in enumerate(manifest.chunks):
        if chunk.id != chunk_id_for(position):
            report.error(f"Chunk ids are not contiguous: expected {chunk_id_for(position)}, found {chunk.id}")

        count = chunk.document_count
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            report.error(f"Chunk {chunk.id} has invalid documentCount {count!r}")
            count = 0
        declared_total += count

        try:
            path = resolve_snapshot_path(fs, static_dir, chunk.path)
        except SnapshotValidationError as e:
            report.error(f"Chunk {chunk.id}: {e}")
            continue
        if not fs.exists(path):
            report.error(f"Chunk file missing: {chunk.path}")
            continue
        try:
            docs = read_json_file(fs, path)
        except SnapshotValidationError as e:
            report.error(f"Chunk file unreadable: {chunk.path}: {e}")
            continue
        if not isinstance(docs, list):
            report.error(f"Chunk file is not a JSON array: {chunk.path}")
            continue

        if len(docs) != count:
            report.error(
                f"Chunk {chunk.id} declares {count} documents but {chunk.path} holds {len(docs)}"
            )

        for doc in docs:
            doc_id = doc.get("_id") if isinstance(doc, dict) else None
            if not isinstance(doc_id, str) or not doc_id:
                report.error(f"Chunk {chunk.id} contains a document without _id")
                continue
            if doc_id in seen_ids:
                report.error(f"Document {doc_id} appears in both {seen_ids[doc_id]} and {chunk.id}")
            seen_ids[doc_id] = chunk.id
            _check_attachments(doc, static_dir, fs, report)

    if declared_total != manifest.document_count:
        report.error(
            f"Chunk document counts sum to {declared_total}, "
            f"manifest documentCount is {manifest.document_count}"
        )


def _check_attachments(
    doc: Dict[str, Any],
    static_dir: str,
    fs: FileSystemAdapter,
    report: ValidationReport,
) -> None:
    try:
        stubs = Document.stubs_from_snapshot(doc)
    except DocumentError as e:
        report.error(f"Document {doc['_id']}: {e}")
        return

    for stub in stubs:
        try:
            path = resolve_snapshot_path(fs, static_dir, stub.path)
        except SnapshotValidationError as e:
            report.error(f"Attachment {stub.name} of {doc['_id']}: {e}")
            continue
        if not fs.exists(path):
            report.warn(f"Attachment file missing: {stub.path} ({doc['_id']}/{stub.name})")
            continue
        try:
            size = fs.stat(path).size
        except FileSystemError as e:
            report.warn(f"Attachment file unreadable: {stub.path}: {e}")
            continue
        if size != stub.length:
            report.warn(
                f"Attachment length mismatch for {stub.path}: stub says {stub.length}, file has {size}"
            )


def _check_indices(
    manifest: CourseManifest,
    static_dir: str,
    fs: FileSystemAdapter,
    report: ValidationReport,
) -> None:
    for index in manifest.indices:
        try:
            path = resolve_snapshot_path(fs, static_dir, index.path)
        except SnapshotValidationError as e:
            report.warn(f"Index {index.name}: {e}")
            continue
        if not fs.exists(path):
            report.warn(f"Index file missing: {index.path}")


def _check_design_docs(
    manifest: CourseManifest,
    static_dir: str,
    fs: FileSystemAdapter,
    report: ValidationReport,
) -> None:
    for design_doc in manifest.design_docs:
        if not design_doc.path:
            continue
        try:
            path = resolve_snapshot_path(fs, static_dir, design_doc.path)
        except SnapshotValidationError as e:
            report.warn(f"Design document {design_doc.id}: {e}")
            continue
        if not fs.exists(path):
            report.warn(f"Design document file missing: {design_doc.path}")
