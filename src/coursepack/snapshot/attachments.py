"""
Attachment extraction for packed courses.

Each attachment is written to its own file at a path derived from the
owning document id and the attachment name, and the document keeps a stub
pointing at it. Files for one chunk are written in parallel; chunks
themselves stay sequential.
"""

import hashlib
import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor, Future
from typing import Dict, List, Optional, Tuple

from ..core.models import Attachment, AttachmentStub, Document
from .manifest import ATTACHMENTS_DIR

logger = logging.getLogger(__name__)


EXTENSION_BY_CONTENT_TYPE: Dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/wav": ".wav",
    "audio/ogg": ".ogg",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "application/pdf": ".pdf",
    "text/plain": ".txt",
    "application/json": ".json",
}

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_path_segment(value: str) -> str:
    """
    Turn an arbitrary id or name into a single safe path segment.

    Characters outside [A-Za-z0-9._-] become '_'. When anything had to be
    replaced, a short hash of the original is appended so that distinct
    inputs never share a segment.
    """
    cleaned = _UNSAFE_CHARS.sub("_", value)
    if cleaned in ("", ".", ".."):
        cleaned = cleaned.replace(".", "_") or "_"
    if cleaned != value:
        suffix = hashlib.sha1(value.encode("utf-8")).hexdigest()[:8]
        cleaned = f"{cleaned}-{suffix}"
    return cleaned


def extension_for(content_type: Optional[str]) -> str:
    """File extension for a MIME type, or '' when unknown."""
    if not content_type:
        return ""
    base = content_type.split(";", 1)[0].strip().lower()
    return EXTENSION_BY_CONTENT_TYPE.get(base, "")


def attachment_path(doc_id: str, name: str, content_type: Optional[str]) -> str:
    """Relative snapshot path: attachments/{doc id}/{name}{ext}."""
    return (
        f"{ATTACHMENTS_DIR}/{sanitize_path_segment(doc_id)}/"
        f"{sanitize_path_segment(name)}{extension_for(content_type)}"
    )


def stub_for(doc: Document, att: Attachment) -> AttachmentStub:
    """Stub describing where an attachment's bytes live in the snapshot."""
    length = len(att.data) if att.data is not None else att.length
    return AttachmentStub(
        name=att.name,
        content_type=att.content_type,
        length=length,
        path=attachment_path(doc.doc_id, att.name, att.content_type),
        digest=att.digest,
    )


class AttachmentWriter:
    """
    Writes attachment files through an output sink with a thread pool.

    Usage:
        with AttachmentWriter(sink, workers=4) as writer:
            stubs = writer.queue(doc)
            ...
            writer.flush()   # once per chunk
    """

    def __init__(self, sink, workers: int = 4):
        self.sink = sink
        self.workers = max(1, workers)
        self.files_written = 0
        self.bytes_written = 0
        self._pending: List[Tuple[str, bytes]] = []
        self._stats_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    def __enter__(self) -> "AttachmentWriter":
        self._executor = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="coursepack-attachment"
        )
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._pending.clear()

    def queue(self, doc: Document) -> List[AttachmentStub]:
        """
        Queue every attachment of a document and return its stubs.

        Attachments without loaded bytes are skipped with a warning log;
        their stub would point at a file that never gets written.
        """
        stubs = []
        for name in sorted(doc.attachments):
            att = doc.attachments[name]
            if att.data is None:
                logger.warning(f"Attachment {name} on {doc.doc_id} has no data; skipping")
                continue
            stub = stub_for(doc, att)
            self._pending.append((stub.path, att.data))
            stubs.append(stub)
        return stubs

    def _write_one(self, path: str, data: bytes) -> None:
        self.sink.write(path, data)
        with self._stats_lock:
            self.files_written += 1
            self.bytes_written += len(data)

    def flush(self) -> int:
        """
        Write every queued file and wait for all of them.

        Raises the first write error after all submitted writes settle.

        Returns:
            Number of files written by this flush
        """
        batch, self._pending = self._pending, []
        if not batch:
            return 0
        if self._executor is None:
            for path, data in batch:
                self._write_one(path, data)
            return len(batch)

        futures: List[Future] = [
            self._executor.submit(self._write_one, path, data) for path, data in batch
        ]
        first_error: Optional[BaseException] = None
        for future in futures:
            error = future.exception()
            if error is not None and first_error is None:
                first_error = error
        if first_error is not None:
            raise first_error
        logger.debug(f"Wrote {len(batch)} attachment files")
        return len(batch)
