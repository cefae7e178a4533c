"""
Custom exceptions for the course pack/migrate engine.
"""

import builtins
from typing import Any, Dict, List, Optional


class CoursePackError(Exception):
    """Base exception for all coursepack errors."""
    pass


class SourceConnectionError(CoursePackError, builtins.ConnectionError):
    """
    A document source or migration target is unreachable.

    Raised when:
    - The connectivity probe fails
    - A request times out or the connection is refused
    - A whole bulk request fails at the transport level

    Always fatal for the run that encounters it.
    """

    def __init__(self, message: str, source: str = None, status_code: int = None):
        super().__init__(message)
        self.source = source
        self.status_code = status_code


class SnapshotValidationError(CoursePackError):
    """
    Structural defect in a static course snapshot, or a round-trip mismatch
    between a snapshot and the target it was migrated into.

    Raised when:
    - manifest.json is missing or unreadable
    - Chunk files are missing or their counts disagree with the manifest
    - Round-trip validation finds documents missing from the target
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        chunk_details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.errors = errors or []
        self.chunk_details = chunk_details or {}


class DocumentError(CoursePackError):
    """
    A single document failed to serialize, deserialize, or violates the
    shape constraints of a snapshot (missing id, inline bytes, etc.).
    """

    def __init__(self, message: str, doc_id: str = None):
        super().__init__(message)
        self.doc_id = doc_id


class PartialWriteError(CoursePackError):
    """
    A bulk write was partially rejected by the target.

    Never escapes a migration run: the rejections are recorded as warnings
    and the run continues with the next batch.
    """

    def __init__(self, message: str, rejections: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.rejections = rejections or []


class FileSystemError(CoursePackError):
    """
    A FileSystemAdapter operation failed.

    Carries the adapter operation name and the path it was applied to.
    """

    def __init__(self, message: str, operation: str, path: str):
        super().__init__(message)
        self.operation = operation
        self.path = path


class CoursePackConfigError(CoursePackError):
    """
    Error in coursepack configuration.

    Raised when:
    - Configuration file is missing or invalid
    - Configuration values are out of valid range
    """
    pass
