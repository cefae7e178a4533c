"""
Document sources: the live databases the Packer reads and the Migrator writes.
"""

from .base import DocumentSource
from .memory import MemoryDocumentSource
from .couchdb import CouchDocumentSource

__all__ = [
    "DocumentSource",
    "MemoryDocumentSource",
    "CouchDocumentSource",
]
