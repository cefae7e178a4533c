"""
Document source interface for live course databases.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Iterator, List, Optional

from ..core.models import BulkResult, Document


class DocumentSource(ABC):
    """
    Abstract base class for live document databases.

    A DocumentSource is both what the Packer reads from and what the
    Migrator writes into. Implementations raise SourceConnectionError for
    transport-level failures; per-document problems are reported in return
    values instead.
    """

    @abstractmethod
    def ping(self) -> None:
        """
        Connectivity probe.

        Raises:
            SourceConnectionError if the database cannot be reached
        """
        pass

    @abstractmethod
    def list_document_ids(self, limit: int, start_after: Optional[str] = None) -> List[str]:
        """
        Return one page of non-design document ids in the database key order.

        Args:
            limit: Maximum ids to return
            start_after: Exclusive lower bound (the last id of the previous page)

        Returns:
            Up to `limit` ids; an empty list once exhausted
        """
        pass

    @abstractmethod
    def get(self, doc_id: str, attachments: bool = False) -> Optional[Document]:
        """
        Get a document by id.

        Args:
            doc_id: Document id
            attachments: Whether to load attachment bytes

        Returns:
            Document if found, None otherwise
        """
        pass

    @abstractmethod
    def list_design_documents(self) -> List[Dict]:
        """Return every design document as raw JSON (including _id)."""
        pass

    @abstractmethod
    def get_revisions(self, doc_ids: List[str]) -> Dict[str, str]:
        """Map each existing id to its current revision; absent ids are omitted."""
        pass

    @abstractmethod
    def bulk_upsert(self, documents: List[Document]) -> List[BulkResult]:
        """
        Write documents in one request.

        A document carrying `rev` updates that revision; one without creates
        a new document. Attachments with data are stored inline.

        Returns:
            One BulkResult per input document, in input order

        Raises:
            SourceConnectionError if the request as a whole fails
        """
        pass

    @abstractmethod
    def put_design_document(self, design_doc: Dict) -> str:
        """Create or replace a design document verbatim, reusing any existing revision; returns the new rev."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of non-design documents."""
        pass

    @abstractmethod
    def destroy(self) -> None:
        """Delete the whole database."""
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Return the source name/identifier."""
        pass

    def iter_document_ids(self, page_size: int) -> Iterator[str]:
        """Iterate all non-design ids, one page of `page_size` at a time."""
        start_after = None
        while True:
            page = self.list_document_ids(page_size, start_after=start_after)
            if not page:
                return
            yield from page
            if len(page) < page_size:
                return
            start_after = page[-1]

    def has_all(self, doc_ids: Iterable[str]) -> bool:
        """True when every id exists in this source."""
        ids = list(doc_ids)
        if not ids:
            return True
        return len(self.get_revisions(ids)) == len(set(ids))

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
