"""
Core subpackage for coursepack.

Contains document models, exceptions, file system adapters, logging,
progress reporting and retry utilities.
"""

from .exceptions import (
    CoursePackError,
    SourceConnectionError,
    SnapshotValidationError,
    DocumentError,
    PartialWriteError,
    FileSystemError,
    CoursePackConfigError,
)
from .models import Attachment, AttachmentStub, Document, BulkResult

__all__ = [
    # Exceptions
    "CoursePackError",
    "SourceConnectionError",
    "SnapshotValidationError",
    "DocumentError",
    "PartialWriteError",
    "FileSystemError",
    "CoursePackConfigError",
    # Models
    "Attachment",
    "AttachmentStub",
    "Document",
    "BulkResult",
]
