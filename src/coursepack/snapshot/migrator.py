"""
Migrator: static course snapshot -> live course database.

Restores a snapshot produced by the Packer into a DocumentSource:

1. Validate the snapshot (no target writes when it is invalid)
2. Probe the target
3. Upsert design documents
4. Restore chunks in manifest order, in bounded batches, rehydrating
   attachment stubs from their files
5. Optionally verify the target against the manifest

Upserts reuse the target's current revisions, so running the same
migration twice leaves the target unchanged apart from revision numbers.
The snapshot directory is only ever read.
"""

import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.exceptions import (
    CoursePackConfigError,
    CoursePackError,
    DocumentError,
    FileSystemError,
    PartialWriteError,
    SnapshotValidationError,
    SourceConnectionError,
)
from ..core.filesystem import FileSystemAdapter, LocalFileSystemAdapter
from ..core.logging import CorrelationContext
from ..core.progress import ProgressCallback, report_progress
from ..core.models import Attachment, Document
from ..sources.base import DocumentSource
from .manifest import CourseManifest
from .validator import read_json_file, resolve_snapshot_path, validate_static_course

logger = logging.getLogger(__name__)


VALIDATION_DESIGN_DOC_ID = "_design/validation"


@dataclass
class MigratorConfig:
    """
    Configuration for a migrate run.

    Attributes:
        chunk_batch_size: Maximum documents per bulk upsert
        validate_round_trip: Verify the target against the manifest afterwards
        cleanup_on_failure: Destroy the target when the run fails fatally
        round_trip_sample_size: Ids checked per chunk during round-trip
            verification (None checks every id)
        resume: Skip chunks whose documents are all present in the target
        validation_design_doc: File holding a validate_doc_update function,
            installed as _design/validation
    """
    chunk_batch_size: int = 100
    validate_round_trip: bool = False
    cleanup_on_failure: bool = False
    round_trip_sample_size: Optional[int] = None
    resume: bool = False
    validation_design_doc: Optional[Union[str, Path]] = None

    def __post_init__(self):
        if self.chunk_batch_size < 1:
            raise CoursePackConfigError("chunk_batch_size must be >= 1")
        if self.round_trip_sample_size is not None and self.round_trip_sample_size < 1:
            raise CoursePackConfigError("round_trip_sample_size must be >= 1")


@dataclass
class MigrationResult:
    """Result of a migrate run."""
    success: bool = False
    documents_restored: int = 0
    design_docs_restored: int = 0
    attachments_restored: int = 0
    migration_time: float = 0.0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    chunks_skipped: int = 0
    validation_details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "documents_restored": self.documents_restored,
            "design_docs_restored": self.design_docs_restored,
            "attachments_restored": self.attachments_restored,
            "migration_time": self.migration_time,
            "warnings": self.warnings,
            "errors": self.errors,
            "chunks_skipped": self.chunks_skipped,
            "validation_details": self.validation_details,
        }


class CourseMigrator:
    """
    Restores static course snapshots into live databases.

    Holds only configuration and adapters; run state lives in each
    migrate() call. `fs` reads the snapshot; `asset_fs` reads the
    validation design document asset and defaults to local disk.
    """

    def __init__(
        self,
        fs: FileSystemAdapter,
        config: Optional[MigratorConfig] = None,
        asset_fs: Optional[FileSystemAdapter] = None,
    ):
        self.fs = fs
        self.config = config or MigratorConfig()
        self.asset_fs = asset_fs or LocalFileSystemAdapter()

    def migrate(
        self,
        static_dir: str,
        target: DocumentSource,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> MigrationResult:
        """
        Migrate one snapshot into a target database.

        Fatal conditions (invalid snapshot, unreachable target, a failed
        batch request, a round-trip mismatch) end the run with
        success=False; they are reported in `errors`, never raised.

        Args:
            static_dir: Snapshot root
            target: Database to write into
            progress_callback: Optional structured progress observer

        Returns:
            MigrationResult
        """
        run_id = uuid.uuid4().hex[:12]
        started = time.monotonic()
        result = MigrationResult()

        with CorrelationContext(run_id=run_id, operation="migrate"):
            logger.info(f"Starting migration from {static_dir} to {target.get_name()}")

            report_progress(progress_callback, "manifest", 0, 1, "validating snapshot")
            report = validate_static_course(static_dir, self.fs)
            result.warnings.extend(report.warnings)
            if not report.valid:
                result.errors.extend(report.errors)
                logger.error(f"Snapshot {static_dir} failed validation with {len(report.errors)} errors")
                return self._finish(result, started)

            with CorrelationContext(course_id=report.course_id, run_id=run_id, operation="migrate"):
                try:
                    manifest = CourseManifest.load(static_dir, self.fs)
                    report_progress(progress_callback, "manifest", 1, 1, "loaded manifest")
                    target.ping()
                    self._restore_design_docs(static_dir, manifest, target, result, progress_callback)
                    restored: Dict[str, Dict[str, int]] = {}
                    chunk_ids = self._restore_chunks(
                        static_dir, manifest, target, result, restored, progress_callback
                    )
                    if self.config.validate_round_trip:
                        report_progress(progress_callback, "validation", 0, 1, "verifying target")
                        self._verify_round_trip(manifest, chunk_ids, restored, target)
                        report_progress(progress_callback, "validation", 1, 1, "target verified")
                except SnapshotValidationError as e:
                    result.errors.append(f"Migration failed: {e}")
                    result.errors.extend(e.errors)
                    result.validation_details = e.chunk_details
                    self._fail(target, result, e)
                except CoursePackError as e:
                    result.errors.append(f"Migration failed: {e}")
                    self._fail(target, result, e)
                else:
                    result.success = not result.errors

                return self._finish(result, started)

    def _finish(self, result: MigrationResult, started: float) -> MigrationResult:
        result.migration_time = round(time.monotonic() - started, 3)
        if result.success:
            logger.info(
                f"Migration completed in {result.migration_time:.1f}s: "
                f"{result.documents_restored} documents, {result.attachments_restored} attachments, "
                f"{result.design_docs_restored} design docs"
            )
        if result.warnings:
            logger.warning(f"Migration finished with {len(result.warnings)} warnings")
        return result

    def _fail(self, target: DocumentSource, result: MigrationResult, error: Exception) -> None:
        result.success = False
        logger.error(f"Migration failed: {error}")
        if not self.config.cleanup_on_failure:
            return
        logger.info(f"Cleaning up {target.get_name()} after failed migration")
        try:
            target.destroy()
        except Exception as e:
            logger.error(f"Failed to clean up {target.get_name()}: {e}")
            result.warnings.append(f"Failed to clean up after migration failure: {e}")

    def _restore_design_docs(
        self,
        static_dir: str,
        manifest: CourseManifest,
        target: DocumentSource,
        result: MigrationResult,
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        bodies: List[Dict[str, Any]] = []
        for descriptor in manifest.design_docs:
            if not descriptor.path:
                result.warnings.append(f"Design document {descriptor.id} has no file; skipped")
                continue
            try:
                body = read_json_file(self.fs, resolve_snapshot_path(self.fs, static_dir, descriptor.path))
            except SnapshotValidationError as e:
                result.warnings.append(f"Design document {descriptor.id} unreadable: {e}")
                continue
            if not isinstance(body, dict):
                result.warnings.append(f"Design document {descriptor.id} is not a JSON object; skipped")
                continue
            body["_id"] = descriptor.id
            bodies.append(body)

        validation_doc = self._validation_design_doc(manifest, result)
        if validation_doc is not None:
            bodies.append(validation_doc)

        for position, body in enumerate(bodies, start=1):
            try:
                target.put_design_document(body)
                result.design_docs_restored += 1
            except SourceConnectionError:
                raise
            except (ValueError, CoursePackError) as e:
                logger.warning(f"Design document {body['_id']} not restored: {e}")
                result.warnings.append(f"Design document {body['_id']} not restored: {e}")
            report_progress(progress_callback, "design_docs", position, len(bodies), f"restored {body['_id']}")

    def _validation_design_doc(
        self, manifest: CourseManifest, result: MigrationResult
    ) -> Optional[Dict[str, Any]]:
        source = self.config.validation_design_doc
        if source is None:
            return None
        if any(d.id == VALIDATION_DESIGN_DOC_ID for d in manifest.design_docs):
            logger.debug(f"Snapshot carries {VALIDATION_DESIGN_DOC_ID}; not installing the asset")
            return None
        try:
            function_source = self.asset_fs.read_file(str(source))
        except FileSystemError as e:
            result.warnings.append(f"Validation design document asset unreadable: {source}: {e}")
            return None
        return {"_id": VALIDATION_DESIGN_DOC_ID, "validate_doc_update": function_source}

    def _restore_chunks(
        self,
        static_dir: str,
        manifest: CourseManifest,
        target: DocumentSource,
        result: MigrationResult,
        restored: Dict[str, Dict[str, int]],
        progress_callback: Optional[ProgressCallback],
    ) -> Dict[str, List[str]]:
        """
        Restore every chunk in order; returns chunk id -> document ids.

        `restored` collects doc id -> {attachment name: byte length} for
        every attachment the target accepted.
        """
        if self.config.resume:
            self._read_indices(static_dir, manifest, result)

        chunk_ids: Dict[str, List[str]] = {}
        processed = 0
        total = manifest.document_count

        for chunk in manifest.chunks:
            raw_docs = read_json_file(self.fs, resolve_snapshot_path(self.fs, static_dir, chunk.path))
            ids = [doc["_id"] for doc in raw_docs]
            chunk_ids[chunk.id] = ids

            if self.config.resume and target.has_all(ids):
                logger.info(f"Chunk {chunk.id} already present in target; skipping")
                result.chunks_skipped += 1
                processed += len(ids)
                report_progress(progress_callback, "documents", processed, total, f"skipped {chunk.id}")
                continue

            batch_size = self.config.chunk_batch_size
            for offset in range(0, len(raw_docs), batch_size):
                batch = raw_docs[offset:offset + batch_size]
                self._restore_batch(static_dir, batch, target, result, restored)
                processed += len(batch)
                report_progress(progress_callback, "documents", processed, total, f"restored batch of {chunk.id}")

        return chunk_ids

    def _restore_batch(
        self,
        static_dir: str,
        raw_docs: List[Dict[str, Any]],
        target: DocumentSource,
        result: MigrationResult,
        restored: Dict[str, Dict[str, int]],
    ) -> None:
        revisions = target.get_revisions([doc["_id"] for doc in raw_docs])
        documents = []
        for raw in raw_docs:
            try:
                doc = Document.from_snapshot(raw)
            except DocumentError as e:
                result.warnings.append(f"Document skipped: {e}")
                continue
            doc.rev = revisions.get(doc.doc_id)
            doc.attachments = self._rehydrate(static_dir, raw, result)
            documents.append(doc)

        results = target.bulk_upsert(documents)
        by_id = {doc.doc_id: doc for doc in documents}
        rejections = []
        for outcome in results:
            if outcome.ok:
                attachments = by_id[outcome.doc_id].attachments
                result.documents_restored += 1
                result.attachments_restored += len(attachments)
                if attachments:
                    restored[outcome.doc_id] = {name: att.length for name, att in attachments.items()}
            else:
                rejections.append({"id": outcome.doc_id, "error": outcome.error, "reason": outcome.reason})

        if rejections:
            partial = PartialWriteError(
                f"{len(rejections)} of {len(documents)} documents rejected", rejections=rejections
            )
            logger.warning(f"Batch partially written: {partial}")
            for rejection in partial.rejections:
                result.warnings.append(
                    f"Document {rejection['id']} rejected: {rejection['error']} ({rejection['reason']})"
                )

    def _rehydrate(
        self, static_dir: str, raw: Dict[str, Any], result: MigrationResult
    ) -> Dict[str, Attachment]:
        """Load attachment bytes for every stub; unloadable ones are dropped with a warning."""
        attachments: Dict[str, Attachment] = {}
        try:
            stubs = Document.stubs_from_snapshot(raw)
        except DocumentError as e:
            result.warnings.append(f"Attachments of {raw['_id']} dropped: {e}")
            return attachments
        for stub in stubs:
            try:
                path = resolve_snapshot_path(self.fs, static_dir, stub.path)
                data = self.fs.read_binary(path)
            except (SnapshotValidationError, FileSystemError) as e:
                result.warnings.append(f"Attachment {stub.name} of {raw['_id']} dropped: {e}")
                continue
            attachments[stub.name] = Attachment(
                name=stub.name,
                content_type=stub.content_type,
                length=len(data),
                data=data,
            )
        return attachments

    def _read_indices(self, static_dir: str, manifest: CourseManifest, result: MigrationResult) -> None:
        for index in manifest.indices:
            try:
                read_json_file(self.fs, resolve_snapshot_path(self.fs, static_dir, index.path))
            except SnapshotValidationError as e:
                result.warnings.append(f"Index {index.name} unreadable: {e}")
        logger.debug(f"Read {len(manifest.indices)} indices for resume")

    def _verify_round_trip(
        self,
        manifest: CourseManifest,
        chunk_ids: Dict[str, List[str]],
        restored: Dict[str, Dict[str, int]],
        target: DocumentSource,
    ) -> None:
        """
        Compare the target with the manifest.

        Checks the document count, the presence of (sampled) document ids
        per chunk, that every manifest design document exists, and that
        (sampled) restored attachments read back at their written length.

        Raises:
            SnapshotValidationError with per-chunk detail on any mismatch
        """
        details: Dict[str, Any] = {}
        errors: List[str] = []

        actual = target.count()
        if actual != manifest.document_count:
            details["documentCount"] = {"expected": manifest.document_count, "actual": actual}
            errors.append(f"Target holds {actual} documents, manifest declares {manifest.document_count}")

        for chunk_id, ids in chunk_ids.items():
            sample = self._sample(ids, chunk_id)
            present = target.get_revisions(sample)
            missing = [doc_id for doc_id in sample if doc_id not in present]
            if missing:
                details[chunk_id] = {"checked": len(sample), "missing": missing}
                errors.append(f"Chunk {chunk_id}: {len(missing)} of {len(sample)} checked documents missing")

        design_ids = {doc.get("_id") for doc in target.list_design_documents()}
        missing_design = [d.id for d in manifest.design_docs if d.id not in design_ids]
        if missing_design:
            details["designDocs"] = {"missing": missing_design}
            errors.append(f"Design documents missing from target: {', '.join(missing_design)}")

        broken: Dict[str, Any] = {}
        for doc_id in self._sample(sorted(restored), "attachments"):
            doc = target.get(doc_id, attachments=True)
            for name, expected in restored[doc_id].items():
                attachment = doc.attachments.get(name) if doc is not None else None
                actual_length = None
                if attachment is not None and attachment.data is not None:
                    actual_length = len(attachment.data)
                if actual_length != expected:
                    broken[f"{doc_id}/{name}"] = {"expected": expected, "actual": actual_length}
        if broken:
            details["attachments"] = broken
            errors.append(f"{len(broken)} restored attachments do not read back intact")

        if errors:
            raise SnapshotValidationError("Round-trip validation failed", errors=errors, chunk_details=details)
        logger.info(f"Round-trip validation passed for {manifest.document_count} documents")

    def _sample(self, ids: List[str], seed: str) -> List[str]:
        """Deterministic subset of ids of at most round_trip_sample_size."""
        sample_size = self.config.round_trip_sample_size
        if sample_size is None or len(ids) <= sample_size:
            return ids
        return random.Random(seed).sample(ids, sample_size)
