"""
Secondary indices for packed courses.

Indices map a secondary key to document ids so static consumers can answer
lookups without scanning every chunk. They are advisory: the Migrator
never replays them, and a missing index is only a warning.

Each builder is fed every document once, in pack order, then finalized to
the JSON body of `indices/{name}.json`. Field paths are dotted and looked
up on the payload; values are grouped, never interpreted.
"""

import logging
import math
from abc import ABC, abstractmethod
from numbers import Real
from typing import Any, Dict, List, Optional

from ..core.filesystem import dumps_json
from ..core.models import Document

logger = logging.getLogger(__name__)


class IndexBuilder(ABC):
    """
    Abstract base class for index builders.

    A builder instance accumulates state for exactly one pack run.
    """

    def __init__(self, name: str, doc_type: Optional[str] = None, type_field: str = "docType"):
        """
        Args:
            name: Index name; also the file stem under indices/
            doc_type: Only documents whose `type_field` equals this are indexed
            type_field: Payload field holding the document type
        """
        self.name = name
        self.doc_type = doc_type
        self.type_field = type_field

    def accepts(self, doc: Document) -> bool:
        return self.doc_type is None or doc.get_field(self.type_field) == self.doc_type

    def add(self, doc: Document) -> None:
        """Feed one document to the index."""
        if self.accepts(doc):
            self._add(doc)

    @abstractmethod
    def _add(self, doc: Document) -> None:
        pass

    @abstractmethod
    def finalize(self) -> Dict[str, Any]:
        """Return the JSON body of the finished index."""
        pass

    @abstractmethod
    def fresh(self) -> "IndexBuilder":
        """A new, empty builder with the same settings."""
        pass


class FieldIndexBuilder(IndexBuilder):
    """
    Exact-value index: field value -> ids carrying it.

    Output: {"field": ..., "values": {value: [ids...]}}. Non-string values
    are keyed by their JSON text; list values index each element.
    """

    def __init__(self, name: str, field: str, doc_type: Optional[str] = None):
        super().__init__(name, doc_type=doc_type)
        self.field = field
        self._values: Dict[str, List[str]] = {}

    def _add(self, doc: Document) -> None:
        value = doc.get_field(self.field)
        if value is None:
            return
        for item in value if isinstance(value, list) else [value]:
            key = item if isinstance(item, str) else _json_key(item)
            self._values.setdefault(key, []).append(doc.doc_id)

    def finalize(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "values": {key: sorted(ids) for key, ids in sorted(self._values.items())},
        }

    def fresh(self) -> "FieldIndexBuilder":
        return FieldIndexBuilder(self.name, self.field, doc_type=self.doc_type)


class BucketIndexBuilder(IndexBuilder):
    """
    Numeric range index.

    Output:
        sorted:  [{"value": v, "id": id}, ...] ascending by value, then id
        buckets: {floor(v / size) * size: [ids...]}
        stats:   {"min", "max", "count"}

    Documents with a missing or non-numeric value are skipped.
    """

    def __init__(self, name: str, field: str, bucket_size: int = 50, doc_type: Optional[str] = None):
        super().__init__(name, doc_type=doc_type)
        if bucket_size <= 0:
            raise ValueError("bucket_size must be positive")
        self.field = field
        self.bucket_size = bucket_size
        self._entries: List[tuple] = []

    def _add(self, doc: Document) -> None:
        value = doc.get_field(self.field)
        if isinstance(value, bool) or not isinstance(value, Real):
            return
        if math.isnan(value) or math.isinf(value):
            logger.debug(f"Skipping non-finite {self.field} on {doc.doc_id}")
            return
        self._entries.append((value, doc.doc_id))

    def finalize(self) -> Dict[str, Any]:
        entries = sorted(self._entries)
        buckets: Dict[str, List[str]] = {}
        for value, doc_id in entries:
            bucket = int(math.floor(value / self.bucket_size) * self.bucket_size)
            buckets.setdefault(str(bucket), []).append(doc_id)

        return {
            "field": self.field,
            "bucketSize": self.bucket_size,
            "sorted": [{"value": value, "id": doc_id} for value, doc_id in entries],
            "buckets": buckets,
            "stats": {
                "min": entries[0][0] if entries else 0,
                "max": entries[-1][0] if entries else 0,
                "count": len(entries),
            },
        }

    def fresh(self) -> "BucketIndexBuilder":
        return BucketIndexBuilder(self.name, self.field, self.bucket_size, doc_type=self.doc_type)


class TagIndexBuilder(IndexBuilder):
    """
    Inverted tag index built from tag documents.

    A tag document names a tag and lists the ids it is applied to.
    Output:
        byTag:  {tag: {"cardIds": [...], "snippet": str, "count": n}}
        byCard: {id: [tags...]}
    """

    def __init__(
        self,
        name: str = "tags",
        doc_type: Optional[str] = "TAG",
        name_field: str = "name",
        members_field: str = "taggedCards",
        snippet_field: str = "snippet",
    ):
        super().__init__(name, doc_type=doc_type)
        self.name_field = name_field
        self.members_field = members_field
        self.snippet_field = snippet_field
        self._by_tag: Dict[str, Dict[str, Any]] = {}

    def _add(self, doc: Document) -> None:
        tag = doc.get_field(self.name_field)
        if not isinstance(tag, str):
            return
        members = doc.get_field(self.members_field)
        members = [m for m in members if isinstance(m, str)] if isinstance(members, list) else []
        snippet = doc.get_field(self.snippet_field)
        self._by_tag[tag] = {
            "cardIds": members,
            "snippet": snippet if isinstance(snippet, str) else "",
            "count": len(members),
        }

    def finalize(self) -> Dict[str, Any]:
        by_tag = {tag: self._by_tag[tag] for tag in sorted(self._by_tag)}
        by_card: Dict[str, List[str]] = {}
        for tag, entry in by_tag.items():
            for card_id in entry["cardIds"]:
                by_card.setdefault(card_id, []).append(tag)
        return {
            "byTag": by_tag,
            "byCard": {card_id: by_card[card_id] for card_id in sorted(by_card)},
        }

    def fresh(self) -> "TagIndexBuilder":
        return TagIndexBuilder(
            self.name,
            doc_type=self.doc_type,
            name_field=self.name_field,
            members_field=self.members_field,
            snippet_field=self.snippet_field,
        )


def default_index_builders() -> List[IndexBuilder]:
    """docType, elo and tags indices."""
    return [
        FieldIndexBuilder("docType", "docType"),
        BucketIndexBuilder("elo", "elo.global.score", bucket_size=50, doc_type="CARD"),
        TagIndexBuilder("tags"),
    ]


def _json_key(value: Any) -> str:
    return dumps_json(value, indent=None).strip()
