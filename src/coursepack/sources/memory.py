"""
In-memory document source.

Provides a deterministic database with CouchDB revision semantics and no
network dependency. Used by the test-suite and for in-process packing of
courses that are already loaded in memory.
"""

import copy
import logging
import threading
from typing import Dict, List, Optional

from ..core.exceptions import SourceConnectionError
from ..core.canonical import compute_content_hash
from ..core.models import Attachment, BulkResult, Document, is_design_id
from .base import DocumentSource


logger = logging.getLogger(__name__)


class MemoryDocumentSource(DocumentSource):
    """
    DocumentSource backed by a dict.

    Writes follow CouchDB rules: updating an existing document requires its
    current revision, otherwise the write is rejected as a conflict.

    Attributes:
        reachable: Set to False to simulate an unreachable database
        fail_bulk_after: Number of bulk_upsert calls that succeed before the
            next one raises SourceConnectionError (None disables)
        reject_ids: Ids that bulk_upsert rejects with a 'forbidden' error
    """

    def __init__(self, name: str = "memory", documents: Optional[List[Dict]] = None):
        self.name = name
        self.reachable = True
        self.fail_bulk_after: Optional[int] = None
        self.reject_ids: set = set()
        self.destroyed = False
        self.bulk_calls = 0
        self._docs: Dict[str, Document] = {}
        self._design: Dict[str, Dict] = {}
        self._lock = threading.Lock()
        for raw in documents or []:
            self.add(raw)

    def add(self, raw: Dict) -> None:
        """Seed a raw CouchDB-shaped document, bypassing revision checks."""
        if is_design_id(raw["_id"]):
            stored = copy.deepcopy(raw)
            stored["_rev"] = self._next_rev(None, stored)
            self._design[raw["_id"]] = stored
            return
        doc = Document.from_couch(copy.deepcopy(raw))
        doc.rev = self._next_rev(None, raw)
        self._docs[doc.doc_id] = doc

    def _check(self) -> None:
        if not self.reachable:
            raise SourceConnectionError(f"{self.name} is unreachable", source=self.name)

    @staticmethod
    def _next_rev(current: Optional[str], body) -> str:
        generation = int(current.split("-", 1)[0]) + 1 if current else 1
        return f"{generation}-{compute_content_hash(body)[:32]}"

    def ping(self) -> None:
        self._check()

    def list_document_ids(self, limit: int, start_after: Optional[str] = None) -> List[str]:
        self._check()
        with self._lock:
            ids = sorted(self._docs)
        if start_after is not None:
            ids = [i for i in ids if i > start_after]
        return ids[:limit]

    def get(self, doc_id: str, attachments: bool = False) -> Optional[Document]:
        self._check()
        with self._lock:
            doc = self._docs.get(doc_id)
            if doc is None:
                return None
            result = copy.deepcopy(doc)
        if not attachments:
            for att in result.attachments.values():
                att.data = None
        return result

    def list_design_documents(self) -> List[Dict]:
        self._check()
        with self._lock:
            return [copy.deepcopy(self._design[k]) for k in sorted(self._design)]

    def get_revisions(self, doc_ids: List[str]) -> Dict[str, str]:
        self._check()
        with self._lock:
            return {i: self._docs[i].rev for i in doc_ids if i in self._docs}

    def bulk_upsert(self, documents: List[Document]) -> List[BulkResult]:
        self._check()
        if self.fail_bulk_after is not None and self.bulk_calls >= self.fail_bulk_after:
            raise SourceConnectionError(f"{self.name} dropped the connection", source=self.name)
        self.bulk_calls += 1

        results = []
        with self._lock:
            for doc in documents:
                if doc.doc_id in self.reject_ids:
                    results.append(BulkResult(doc.doc_id, False, error="forbidden",
                                              reason="rejected by validation"))
                    continue
                existing = self._docs.get(doc.doc_id)
                if existing is not None and existing.rev != doc.rev:
                    results.append(BulkResult(doc.doc_id, False, error="conflict",
                                              reason="Document update conflict."))
                    continue
                stored = copy.deepcopy(doc)
                for att in stored.attachments.values():
                    if att.data is not None:
                        att.length = len(att.data)
                stored.rev = self._next_rev(existing.rev if existing else None, doc.to_snapshot())
                self._docs[doc.doc_id] = stored
                results.append(BulkResult(doc.doc_id, True, rev=stored.rev))
        return results

    def put_design_document(self, design_doc: Dict) -> str:
        self._check()
        with self._lock:
            existing = self._design.get(design_doc["_id"])
            stored = {k: copy.deepcopy(v) for k, v in design_doc.items() if k != "_rev"}
            stored["_rev"] = self._next_rev(existing["_rev"] if existing else None, design_doc)
            self._design[design_doc["_id"]] = stored
            return stored["_rev"]

    def get_design_document(self, doc_id: str) -> Optional[Dict]:
        with self._lock:
            doc = self._design.get(doc_id)
            return copy.deepcopy(doc) if doc else None

    def count(self) -> int:
        self._check()
        with self._lock:
            return len(self._docs)

    def destroy(self) -> None:
        self._check()
        with self._lock:
            self._docs.clear()
            self._design.clear()
        self.destroyed = True
        logger.info(f"Destroyed in-memory database {self.name}")

    def get_name(self) -> str:
        return self.name

    def add_attachment(self, doc_id: str, name: str, data: bytes, content_type: str) -> None:
        """Attach bytes to a seeded document (test helper)."""
        with self._lock:
            self._docs[doc_id].attachments[name] = Attachment(
                name=name, content_type=content_type, length=len(data), data=data,
            )
