"""
Canonical JSON serialization and content hashing.

Provides stable, platform-independent serialization for content hashing.
The canonicalization ensures:
- Keys are sorted recursively
- Unicode is normalized (NFC)
- No insignificant whitespace

Snapshot files themselves are written with `dumps_json` and keep document
key order; canonical form is only used where two documents (or two file
sets) must compare equal regardless of key order.
"""

import hashlib
import json
import unicodedata
from typing import Any, Dict, Mapping


def canonicalize(obj: Any) -> str:
    """
    Canonicalize a Python object to a stable JSON string.

    Args:
        obj: The object to canonicalize

    Returns:
        Canonical JSON string
    """
    return json.dumps(
        _normalize_for_canonical(obj),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=_canonical_default,
    )


def _normalize_for_canonical(obj: Any) -> Any:
    if obj is None or isinstance(obj, (bool, int, float)):
        return obj

    if isinstance(obj, str):
        return unicodedata.normalize("NFC", obj)

    if isinstance(obj, bytes):
        return hashlib.sha256(obj).hexdigest()

    if isinstance(obj, dict):
        return {
            _normalize_for_canonical(k): _normalize_for_canonical(v)
            for k, v in obj.items()
        }

    if isinstance(obj, (list, tuple)):
        return [_normalize_for_canonical(item) for item in obj]

    return unicodedata.normalize("NFC", str(obj))


def _canonical_default(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return str(obj)


def compute_content_hash(obj: Any) -> str:
    """
    SHA256 of an object's canonical form.

    Args:
        obj: JSON-like object (documents, stubs, manifests)

    Returns:
        Hex-encoded SHA256 hash string
    """
    return hashlib.sha256(canonicalize(obj).encode("utf-8")).hexdigest()


def compute_files_hash(files: Mapping[str, bytes], exclude: tuple = ()) -> str:
    """
    SHA256 over a set of files keyed by relative path.

    Paths are visited in sorted order so the result does not depend on the
    order files were produced in.
    """
    digest = hashlib.sha256()
    for path in sorted(files):
        if path in exclude:
            continue
        digest.update(path.encode("utf-8"))
        digest.update(b"\0")
        digest.update(hashlib.sha256(files[path]).digest())
    return digest.hexdigest()


def documents_equal(left: Dict[str, Any], right: Dict[str, Any]) -> bool:
    """True when two JSON documents have the same canonical form."""
    return canonicalize(left) == canonicalize(right)
