"""
Core data models for course documents.

Documents are carried as an opaque payload plus the handful of reserved
CouchDB fields the engine needs (_id, _rev, _attachments). Payload fields
are never interpreted.
"""

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .exceptions import DocumentError


DESIGN_PREFIX = "_design/"
RESERVED_FIELDS = ("_id", "_rev", "_attachments")


def is_design_id(doc_id: str) -> bool:
    """True for reserved design-document identifiers."""
    return doc_id.startswith(DESIGN_PREFIX)


@dataclass
class Attachment:
    """
    Binary blob bound to one (document id, attachment name) pair.

    Attributes:
        name: Attachment name, unique within its document
        content_type: MIME type reported by the database
        length: Byte length
        data: Raw bytes, when loaded
        digest: Database-provided digest, if any
    """
    name: str
    content_type: str
    length: int
    data: Optional[bytes] = None
    digest: Optional[str] = None

    @classmethod
    def from_couch(cls, name: str, meta: Dict[str, Any]) -> "Attachment":
        """
        Build from a CouchDB _attachments entry, decoding inline base64 data
        when the entry is not a stub.
        """
        data = None
        if meta.get("data") is not None:
            raw = meta["data"]
            data = raw if isinstance(raw, bytes) else base64.b64decode(raw)
        length = meta.get("length")
        if length is None and data is not None:
            length = len(data)
        return cls(
            name=name,
            content_type=meta.get("content_type", "application/octet-stream"),
            length=int(length or 0),
            data=data,
            digest=meta.get("digest"),
        )

    def to_couch(self) -> Dict[str, Any]:
        """Inline CouchDB form: base64 data with its content type."""
        if self.data is None:
            raise DocumentError(f"Attachment {self.name} has no data to inline")
        return {
            "content_type": self.content_type,
            "data": base64.b64encode(self.data).decode("ascii"),
        }


@dataclass
class AttachmentStub:
    """
    Snapshot-side reference to an attachment file.

    Stubs never carry bytes; `path` is relative to the snapshot root.
    """
    name: str
    content_type: str
    length: int
    path: str
    digest: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "contentType": self.content_type,
            "length": self.length,
            "path": self.path,
        }
        if self.digest:
            data["digest"] = self.digest
        return data

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "AttachmentStub":
        """
        Parse one stub.

        Raises:
            DocumentError if the stub is not an object, carries inline data,
            has no path, or has a length that is not a non-negative integer
        """
        if not isinstance(data, dict):
            raise DocumentError(f"Attachment stub {name} is not an object")
        if "data" in data:
            raise DocumentError(f"Attachment {name} carries inline data in a snapshot")
        if "path" not in data:
            raise DocumentError(f"Attachment stub {name} has no path")
        length = data.get("length", 0)
        if isinstance(length, bool) or not isinstance(length, int) or length < 0:
            raise DocumentError(f"Attachment stub {name} has invalid length {length!r}")
        return cls(
            name=data.get("name", name),
            content_type=data.get("contentType", "application/octet-stream"),
            length=length,
            path=data["path"],
            digest=data.get("digest"),
        )


@dataclass
class Document:
    """
    A course document.

    Attributes:
        doc_id: Stable identifier, unique within a course
        payload: All non-reserved fields, in source order
        rev: Revision in the database it came from (never snapshotted)
        attachments: Attachments keyed by name
    """
    doc_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    rev: Optional[str] = None
    attachments: Dict[str, Attachment] = field(default_factory=dict)

    @property
    def is_design(self) -> bool:
        return is_design_id(self.doc_id)

    @classmethod
    def from_couch(cls, data: Dict[str, Any]) -> "Document":
        """Create from a CouchDB JSON document."""
        doc_id = data.get("_id")
        if not isinstance(doc_id, str) or not doc_id:
            raise DocumentError("Document has no _id")
        attachments = {
            name: Attachment.from_couch(name, meta)
            for name, meta in (data.get("_attachments") or {}).items()
        }
        return cls(
            doc_id=doc_id,
            payload={k: v for k, v in data.items() if k not in RESERVED_FIELDS},
            rev=data.get("_rev"),
            attachments=attachments,
        )

    def to_couch(self, include_rev: bool = True) -> Dict[str, Any]:
        """CouchDB JSON form with attachments inlined as base64."""
        data: Dict[str, Any] = {"_id": self.doc_id}
        if include_rev and self.rev:
            data["_rev"] = self.rev
        data.update(self.payload)
        if self.attachments:
            data["_attachments"] = {
                name: att.to_couch() for name, att in self.attachments.items()
            }
        return data

    def to_snapshot(self, stubs: Optional[List[AttachmentStub]] = None) -> Dict[str, Any]:
        """
        Snapshot form: _id and payload, _rev dropped, attachments as stubs.

        With no stubs the _attachments key is omitted entirely.
        """
        data: Dict[str, Any] = {"_id": self.doc_id}
        data.update(self.payload)
        if stubs:
            data["_attachments"] = {stub.name: stub.to_dict() for stub in stubs}
        return data

    @staticmethod
    def stubs_from_snapshot(data: Dict[str, Any]) -> List[AttachmentStub]:
        """
        Parse the attachment stubs of a snapshot document.

        Raises:
            DocumentError if _attachments or any stub in it is malformed
        """
        raw = data.get("_attachments")
        if raw is None:
            return []
        if not isinstance(raw, dict):
            raise DocumentError(f"_attachments of {data.get('_id')} is not an object")
        return [AttachmentStub.from_dict(name, meta) for name, meta in raw.items()]

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "Document":
        """Create from snapshot form; attachments are left to rehydration."""
        doc_id = data.get("_id")
        if not isinstance(doc_id, str) or not doc_id:
            raise DocumentError("Snapshot document has no _id")
        return cls(
            doc_id=doc_id,
            payload={k: v for k, v in data.items() if k not in RESERVED_FIELDS},
        )

    def get_field(self, dotted: str) -> Any:
        """Look up a dotted payload path, or None when any segment is absent."""
        value: Any = self.payload
        for part in dotted.split("."):
            if not isinstance(value, dict):
                return None
            value = value.get(part)
        return value


@dataclass
class BulkResult:
    """Outcome of one document in a bulk upsert."""
    doc_id: str
    ok: bool
    rev: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None
