"""
Packer: live course database -> static course snapshot.

Reads every document of a DocumentSource and writes, through an OutputSink:

    chunks/chunk-NNNN.json      ordered, bounded document arrays
    attachments/{doc}/{name}    one file per attachment
    indices/{name}.json         secondary indices
    design-docs/{name}.json     design documents, verbatim
    manifest.json               written last; the commit marker

A run that fails or is interrupted before the final step leaves no
manifest, so the partial output is never mistaken for a snapshot.
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.exceptions import CoursePackConfigError, DocumentError
from ..core.logging import CorrelationContext
from ..core.progress import ProgressCallback, report_progress
from ..core.models import DESIGN_PREFIX, Document, is_design_id
from ..sources.base import DocumentSource
from .attachments import AttachmentWriter, sanitize_path_segment, stub_for
from .index import IndexBuilder, default_index_builders
from .manifest import (
    DESIGN_DOCS_DIR,
    MANIFEST_FILE,
    ChunkDescriptor,
    CourseManifest,
    DesignDocDescriptor,
    IndexDescriptor,
    chunk_id_for,
    chunk_path_for,
    index_path_for,
)
from .sinks import OutputSink

logger = logging.getLogger(__name__)


@dataclass
class PackerConfig:
    """
    Configuration for a pack run.

    Attributes:
        chunk_size: Maximum documents per chunk file
        include_attachments: Extract attachments to files; when False,
            documents are written without any _attachments entry
        best_effort: Skip documents that cannot be serialized instead of
            aborting the run
        attachment_workers: Threads writing attachment files within a chunk
        course_config_id: Id of the document whose `name` becomes courseName
        index_builders: Index builders to run (None = default_index_builders())
    """
    chunk_size: int = 1000
    include_attachments: bool = True
    best_effort: bool = False
    attachment_workers: int = 4
    course_config_id: Optional[str] = "CourseConfig"
    index_builders: Optional[List[IndexBuilder]] = None

    def __post_init__(self):
        if self.chunk_size < 1:
            raise CoursePackConfigError("chunk_size must be >= 1")
        if self.attachment_workers < 1:
            raise CoursePackConfigError("attachment_workers must be >= 1")


@dataclass
class PackResult:
    """Result of a pack run."""
    manifest: CourseManifest
    summary: Dict[str, Any]
    warnings: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "manifest": self.manifest.to_dict(),
            "summary": self.summary,
            "warnings": self.warnings,
            "files": self.files,
        }


class CoursePacker:
    """
    Converts a live course database into a static snapshot.

    A packer holds configuration only; every pack() call builds fresh run
    state, so one packer may serve several runs (also concurrently).
    """

    def __init__(self, config: Optional[PackerConfig] = None):
        self.config = config or PackerConfig()

    def pack(
        self,
        source: DocumentSource,
        course_id: str,
        sink: OutputSink,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> PackResult:
        """
        Pack one course.

        Args:
            source: Database to read
            course_id: Identifier recorded in the manifest
            sink: Destination for every output file
            progress_callback: Optional structured progress observer

        Returns:
            PackResult with the written manifest and a run summary

        Raises:
            SourceConnectionError: The source is unreachable (nothing written)
            DocumentError: A document cannot be serialized and best_effort
                is off (no manifest written)
        """
        run_id = uuid.uuid4().hex[:12]
        with CorrelationContext(course_id=course_id, run_id=run_id, operation="pack"):
            return self._pack(source, course_id, sink, progress_callback)

    def _pack(
        self,
        source: DocumentSource,
        course_id: str,
        sink: OutputSink,
        progress_callback: Optional[ProgressCallback],
    ) -> PackResult:
        config = self.config
        started = time.monotonic()
        warnings: List[str] = []
        skipped = 0

        logger.info(f"Packing course {course_id} from {source.get_name()} to {sink.get_name()}")
        source.ping()

        doc_ids = sorted(
            doc_id for doc_id in set(source.iter_document_ids(config.chunk_size))
            if not is_design_id(doc_id)
        )
        total = len(doc_ids)
        logger.info(f"Found {total} documents; chunk size {config.chunk_size}")

        builders = [b.fresh() for b in (config.index_builders or default_index_builders())]
        manifest = CourseManifest(course_id=course_id, course_name=course_id)
        processed = 0

        with AttachmentWriter(sink, workers=config.attachment_workers) as writer:
            for number, offset in enumerate(range(0, total, config.chunk_size)):
                chunk_id = chunk_id_for(number)
                chunk_docs: List[Dict[str, Any]] = []

                for doc_id in doc_ids[offset:offset + config.chunk_size]:
                    processed += 1
                    doc = source.get(doc_id, attachments=config.include_attachments)
                    if doc is None:
                        warnings.append(f"Document {doc_id} disappeared during pack; skipped")
                        skipped += 1
                        continue

                    try:
                        snapshot = self._snapshot_form(doc)
                    except DocumentError as e:
                        if not config.best_effort:
                            logger.error(f"Aborting pack of {course_id}: {e}")
                            raise
                        logger.warning(f"Skipping document {doc_id}: {e}")
                        warnings.append(f"Skipped document {doc_id}: {e}")
                        skipped += 1
                        continue

                    if config.include_attachments:
                        writer.queue(doc)
                    if doc_id == config.course_config_id:
                        name = doc.payload.get("name")
                        if isinstance(name, str) and name:
                            manifest.course_name = name
                    for builder in builders:
                        builder.add(doc)
                    chunk_docs.append(snapshot)

                writer.flush()
                path = chunk_path_for(chunk_id)
                sink.write_json(path, chunk_docs)
                manifest.chunks.append(ChunkDescriptor(chunk_id, path, len(chunk_docs)))
                logger.debug(f"Wrote {path} with {len(chunk_docs)} documents")
                report_progress(progress_callback, "documents", processed, total, f"wrote {chunk_id}")

            attachment_count = writer.files_written
            attachment_bytes = writer.bytes_written

        for position, builder in enumerate(builders, start=1):
            path = index_path_for(builder.name)
            sink.write_json(path, builder.finalize())
            manifest.indices.append(IndexDescriptor(builder.name, path))
            report_progress(progress_callback, "indices", position, len(builders), f"wrote {path}")

        design_docs = source.list_design_documents()
        for position, design_doc in enumerate(design_docs, start=1):
            doc_id = design_doc["_id"]
            body = {k: v for k, v in design_doc.items() if k != "_rev"}
            path = f"{DESIGN_DOCS_DIR}/{sanitize_path_segment(doc_id[len(DESIGN_PREFIX):])}.json"
            sink.write_json(path, body)
            manifest.design_docs.append(DesignDocDescriptor(doc_id, path))
            report_progress(progress_callback, "design_docs", position, len(design_docs), f"wrote {path}")

        manifest.document_count = manifest.chunk_total()
        manifest.touch()
        sink.write_json(MANIFEST_FILE, manifest.to_dict())
        report_progress(progress_callback, "manifest", 1, 1, "wrote manifest")

        summary = {
            "courseId": course_id,
            "documentCount": manifest.document_count,
            "chunkCount": len(manifest.chunks),
            "attachmentCount": attachment_count,
            "attachmentBytes": attachment_bytes,
            "indexCount": len(manifest.indices),
            "designDocCount": len(manifest.design_docs),
            "skipped": skipped,
            "elapsedSeconds": round(time.monotonic() - started, 3),
        }
        logger.info(
            f"Packed {course_id}: {summary['documentCount']} documents in "
            f"{summary['chunkCount']} chunks, {attachment_count} attachments, "
            f"{len(warnings)} warnings"
        )
        return PackResult(
            manifest=manifest,
            summary=summary,
            warnings=warnings,
            files=sink.written_paths(),
        )

    def _snapshot_form(self, doc: Document) -> Dict[str, Any]:
        """
        Snapshot JSON for one document, verified to serialize.

        Raises:
            DocumentError if the payload is not JSON-serializable
        """
        stubs = None
        if self.config.include_attachments:
            stubs = [
                stub_for(doc, att)
                for _, att in sorted(doc.attachments.items())
                if att.data is not None
            ]
        snapshot = doc.to_snapshot(stubs)
        try:
            json.dumps(snapshot, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise DocumentError(f"Document {doc.doc_id} is not serializable: {e}", doc_id=doc.doc_id) from e
        return snapshot
