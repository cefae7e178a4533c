"""
CouchDB document source over the HTTP API.
"""

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

try:
    import requests
except ImportError:
    requests = None

from ..config.config_loader import ServerSettings
from ..core.exceptions import SourceConnectionError
from ..core.retry import RetryConfig, retry_with_backoff
from ..core.models import DESIGN_PREFIX, BulkResult, Document, is_design_id
from .base import DocumentSource


logger = logging.getLogger(__name__)


class _TransientHttpError(Exception):
    """A 5xx response; retried like a dropped connection."""

    def __init__(self, status_code: int, text: str):
        super().__init__(f"HTTP {status_code}: {text[:200]}")
        self.status_code = status_code


class CouchDocumentSource(DocumentSource):
    """
    DocumentSource for one CouchDB database.

    Supports:
    - Paged _all_docs listing with design documents filtered out
    - Inline attachment retrieval (attachments=true)
    - _bulk_docs writes with per-document results
    - Retries with exponential backoff on connection errors and 5xx
    """

    def __init__(
        self,
        settings: ServerSettings,
        database: str,
        create_if_missing: bool = False,
        session: Optional[Any] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        """
        Initialize the CouchDB source.

        Args:
            settings: Server URL, credentials and timeouts
            database: Database name
            create_if_missing: Create the database on the first probe if absent
            session: Optional pre-built requests.Session
            retry_config: Backoff settings (defaults from settings.max_retries)
        """
        if requests is None and session is None:
            raise ImportError(
                "requests library is required for CouchDocumentSource. "
                "Install with: pip install requests"
            )

        self.settings = settings
        self.database = database
        self.create_if_missing = create_if_missing
        self.session = session or requests.Session()
        if settings.auth:
            self.session.auth = settings.auth
        self.session.headers.update({"Accept": "application/json"})
        self.retry_config = retry_config or RetryConfig(max_attempts=max(1, settings.max_retries))
        self.db_url = f"{settings.url.rstrip('/')}/{quote(database, safe='')}"

    def _doc_url(self, doc_id: str) -> str:
        if is_design_id(doc_id):
            return f"{self.db_url}/{DESIGN_PREFIX}{quote(doc_id[len(DESIGN_PREFIX):], safe='')}"
        return f"{self.db_url}/{quote(doc_id, safe='')}"

    def _request(self, method: str, url: str, **kwargs) -> Any:
        """
        Issue one HTTP request with retries.

        Returns the response for any status below 500; connection failures
        and 5xx responses that outlive the retry limit become
        SourceConnectionError.
        """
        transport_errors = (requests.ConnectionError, requests.Timeout) if requests else ()

        def do_request():
            response = self.session.request(method, url, timeout=self.settings.timeout, **kwargs)
            if response.status_code >= 500:
                raise _TransientHttpError(response.status_code, response.text)
            return response

        result = retry_with_backoff(
            do_request,
            self.retry_config,
            retry_on=transport_errors + (_TransientHttpError,),
            operation_name=f"{method} {url}",
        )
        if result.success:
            return result.result

        status = getattr(result.error, "status_code", None)
        raise SourceConnectionError(
            f"{method} {url} failed: {result.error}",
            source=self.get_name(),
            status_code=status,
        ) from result.error

    def _expect_ok(self, response, what: str) -> Dict[str, Any]:
        if response.status_code in (401, 403):
            raise SourceConnectionError(
                f"{what}: not authorized ({response.status_code})",
                source=self.get_name(),
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise SourceConnectionError(
                f"{what}: HTTP {response.status_code} {response.text[:200]}",
                source=self.get_name(),
                status_code=response.status_code,
            )
        return response.json()

    def ping(self) -> None:
        response = self._request("GET", self.db_url)
        if response.status_code == 404 and self.create_if_missing:
            logger.info(f"Creating database {self.database}")
            created = self._request("PUT", self.db_url)
            if created.status_code not in (201, 202, 412):
                self._expect_ok(created, f"create {self.database}")
            return
        self._expect_ok(response, f"probe {self.database}")

    def list_document_ids(self, limit: int, start_after: Optional[str] = None) -> List[str]:
        ids: List[str] = []
        cursor = start_after
        while len(ids) < limit:
            params = {"limit": limit}
            if cursor is not None:
                # startkey is inclusive; the cursor row is dropped below when it still exists
                params["startkey"] = json.dumps(cursor)
                params["limit"] = limit + 1
            response = self._request("GET", f"{self.db_url}/_all_docs", params=params)
            rows = self._expect_ok(response, "list documents").get("rows", [])
            fresh = [row for row in rows if row["id"] != cursor]
            if not fresh:
                break
            for row in fresh:
                if not is_design_id(row["id"]) and len(ids) < limit:
                    ids.append(row["id"])
            cursor = fresh[-1]["id"]
            if len(rows) < params["limit"]:
                break
        return ids

    def get(self, doc_id: str, attachments: bool = False) -> Optional[Document]:
        params = {"attachments": "true"} if attachments else None
        response = self._request("GET", self._doc_url(doc_id), params=params)
        if response.status_code == 404:
            return None
        return Document.from_couch(self._expect_ok(response, f"get {doc_id}"))

    def list_design_documents(self) -> List[Dict]:
        params = {
            "startkey": json.dumps(DESIGN_PREFIX),
            "endkey": json.dumps(DESIGN_PREFIX + "\ufff0"),
            "include_docs": "true",
        }
        response = self._request("GET", f"{self.db_url}/_all_docs", params=params)
        rows = self._expect_ok(response, "list design documents").get("rows", [])
        return [row["doc"] for row in rows if row.get("doc")]

    def get_revisions(self, doc_ids: List[str]) -> Dict[str, str]:
        if not doc_ids:
            return {}
        response = self._request("POST", f"{self.db_url}/_all_docs", json={"keys": doc_ids})
        rows = self._expect_ok(response, "get revisions").get("rows", [])
        revisions = {}
        for row in rows:
            value = row.get("value") or {}
            if "error" in row or value.get("deleted"):
                continue
            revisions[row["id"]] = value["rev"]
        return revisions

    def bulk_upsert(self, documents: List[Document]) -> List[BulkResult]:
        if not documents:
            return []
        body = {"docs": [doc.to_couch() for doc in documents]}
        response = self._request("POST", f"{self.db_url}/_bulk_docs", json=body)
        rows = self._expect_ok(response, "bulk write")

        results = []
        for doc, row in zip(documents, rows):
            if "error" in row:
                results.append(BulkResult(doc.doc_id, False, error=row["error"], reason=row.get("reason")))
            else:
                results.append(BulkResult(doc.doc_id, True, rev=row.get("rev")))
        return results

    def put_design_document(self, design_doc: Dict) -> str:
        doc = {k: v for k, v in design_doc.items() if k != "_rev"}
        url = self._doc_url(doc["_id"])
        existing = self._request("GET", url)
        if existing.status_code == 200:
            doc["_rev"] = existing.json()["_rev"]
        response = self._request("PUT", url, json=doc)
        if response.status_code >= 400:
            raise ValueError(
                f"Design document {doc['_id']} rejected: HTTP {response.status_code} {response.text[:200]}"
            )
        return response.json().get("rev")

    def count(self) -> int:
        info = self._expect_ok(self._request("GET", self.db_url), "database info")
        design_count = len(self.list_design_documents())
        return int(info.get("doc_count", 0)) - design_count

    def destroy(self) -> None:
        response = self._request("DELETE", self.db_url)
        if response.status_code not in (200, 202, 404):
            self._expect_ok(response, f"destroy {self.database}")
        logger.info(f"Destroyed database {self.database}")

    def get_name(self) -> str:
        return f"couchdb:{self.database}"

    def close(self) -> None:
        self.session.close()
