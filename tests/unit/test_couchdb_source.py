"""
Unit tests for the CouchDB document source.

The HTTP session is a MagicMock returning canned responses, so these
tests need no server.
"""

import base64
import json
from unittest.mock import MagicMock

import pytest
import requests

from coursepack.config.config_loader import ServerSettings
from coursepack.core.exceptions import SourceConnectionError
from coursepack.core.models import Attachment, Document
from coursepack.core.retry import RetryConfig
from coursepack.sources.couchdb import CouchDocumentSource


def response(status_code=200, body=None):
    """Fake requests.Response."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body if body is not None else {}
    resp.text = json.dumps(body) if body is not None else ""
    return resp


def make_source(*responses, database="course_intro", **kwargs):
    session = MagicMock()
    session.request.side_effect = list(responses)
    source = CouchDocumentSource(
        ServerSettings(url="http://couch:5984/", username="admin", password="pw"),
        database,
        session=session,
        retry_config=RetryConfig(max_attempts=2, initial_delay_ms=0.0, jitter=False),
        **kwargs,
    )
    return source, session


def call(session, index=0):
    """(method, url, kwargs) of one recorded request."""
    args, kwargs = session.request.call_args_list[index]
    return args[0], args[1], kwargs


class TestConnection:
    """Tests for probing and request handling."""

    def test_auth_and_name(self):
        source, session = make_source()

        assert session.auth == ("admin", "pw")
        assert source.db_url == "http://couch:5984/course_intro"
        assert source.get_name() == "couchdb:course_intro"

    def test_ping(self):
        source, session = make_source(response(200, {"db_name": "course_intro"}))

        source.ping()

        method, url, kwargs = call(session)
        assert (method, url) == ("GET", "http://couch:5984/course_intro")
        assert kwargs["timeout"] == 30.0

    def test_ping_creates_missing_database(self):
        source, session = make_source(response(404), response(201, {"ok": True}), create_if_missing=True)

        source.ping()

        assert call(session, 1)[0] == "PUT"

    def test_ping_missing_database_without_create(self):
        source, _ = make_source(response(404, {"error": "not_found"}))

        with pytest.raises(SourceConnectionError) as exc_info:
            source.ping()
        assert exc_info.value.status_code == 404

    def test_unauthorized(self):
        source, _ = make_source(response(401, {"error": "unauthorized"}))

        with pytest.raises(SourceConnectionError) as exc_info:
            source.ping()
        assert "not authorized" in str(exc_info.value)

    def test_server_error_is_retried(self):
        source, session = make_source(response(503, {"error": "busy"}), response(200, {}))

        source.ping()

        assert session.request.call_count == 2

    def test_server_error_exhausts_retries(self):
        source, _ = make_source(response(500), response(502))

        with pytest.raises(SourceConnectionError) as exc_info:
            source.ping()
        assert exc_info.value.status_code == 502

    def test_transport_error(self):
        source, session = make_source(requests.ConnectionError("refused"), requests.ConnectionError("refused"))

        with pytest.raises(SourceConnectionError):
            source.ping()
        assert session.request.call_count == 2

    def test_connection_error_is_builtin_connection_error(self):
        source, _ = make_source(requests.ConnectionError("refused"), requests.ConnectionError("refused"))

        with pytest.raises(ConnectionError):
            source.ping()


class TestReads:
    """Tests for listing and fetching documents."""

    def test_list_document_ids_pages_and_skips_design_docs(self):
        first = response(200, {"rows": [{"id": "a"}, {"id": "_design/x"}, {"id": "b"}]})
        second = response(200, {"rows": []})
        source, session = make_source(first, second)

        ids = source.list_document_ids(3)

        assert ids == ["a", "b"]
        _, url, kwargs = call(session, 1)
        assert url.endswith("/_all_docs")
        assert kwargs["params"] == {"limit": 4, "startkey": '"b"'}

    def test_list_document_ids_drops_cursor_row(self):
        source, _ = make_source(response(200, {"rows": [{"id": "b"}, {"id": "c"}, {"id": "d"}]}))

        assert source.list_document_ids(2, start_after="b") == ["c", "d"]

    def test_list_document_ids_after_deleted_cursor(self):
        """Test the first row after a cursor that no longer exists is kept."""
        source, session = make_source(response(200, {"rows": [{"id": "c"}, {"id": "d"}, {"id": "e"}]}))

        assert source.list_document_ids(2, start_after="b") == ["c", "d"]
        assert "skip" not in call(session)[2]["params"]

    def test_iter_document_ids(self):
        source, _ = make_source(
            response(200, {"rows": [{"id": "a"}, {"id": "b"}]}),
            response(200, {"rows": [{"id": "c"}]}),
        )

        assert list(source.iter_document_ids(2)) == ["a", "b", "c"]

    def test_get_with_inline_attachment(self):
        body = {
            "_id": "card 1",
            "_rev": "4-abc",
            "docType": "CARD",
            "_attachments": {
                "front.png": {
                    "content_type": "image/png",
                    "data": base64.b64encode(b"png-bytes").decode("ascii"),
                    "digest": "md5-xyz",
                },
            },
        }
        source, session = make_source(response(200, body))

        doc = source.get("card 1", attachments=True)

        _, url, kwargs = call(session)
        assert url == "http://couch:5984/course_intro/card%201"
        assert kwargs["params"] == {"attachments": "true"}
        assert doc.rev == "4-abc"
        assert doc.payload == {"docType": "CARD"}
        assert doc.attachments["front.png"].data == b"png-bytes"
        assert doc.attachments["front.png"].length == len(b"png-bytes")

    def test_get_missing(self):
        source, _ = make_source(response(404, {"error": "not_found"}))

        assert source.get("nope") is None

    def test_list_design_documents(self):
        rows = [{"id": "_design/elo", "doc": {"_id": "_design/elo", "_rev": "1-a", "views": {}}}]
        source, session = make_source(response(200, {"rows": rows}))

        docs = source.list_design_documents()

        assert docs == [{"_id": "_design/elo", "_rev": "1-a", "views": {}}]
        params = call(session)[2]["params"]
        assert params["startkey"] == '"_design/"'
        assert params["endkey"] == json.dumps("_design/\ufff0")

    def test_get_revisions_skips_missing_and_deleted(self):
        rows = [
            {"id": "a", "value": {"rev": "1-a"}},
            {"key": "b", "error": "not_found"},
            {"id": "c", "value": {"rev": "2-c", "deleted": True}},
        ]
        source, session = make_source(response(200, {"rows": rows}))

        assert source.get_revisions(["a", "b", "c"]) == {"a": "1-a"}
        assert call(session)[2]["json"] == {"keys": ["a", "b", "c"]}

    def test_get_revisions_empty(self):
        source, session = make_source()

        assert source.get_revisions([]) == {}
        session.request.assert_not_called()

    def test_count_excludes_design_docs(self):
        design_rows = {"rows": [{"id": "_design/a", "doc": {"_id": "_design/a"}},
                                {"id": "_design/b", "doc": {"_id": "_design/b"}}]}
        source, _ = make_source(response(200, {"doc_count": 10}), response(200, design_rows))

        assert source.count() == 8


class TestWrites:
    """Tests for bulk and design document writes."""

    def test_bulk_upsert(self):
        docs = [
            Document("a", {"x": 1}, rev="1-a",
                     attachments={"f.txt": Attachment("f.txt", "text/plain", 2, data=b"hi")}),
            Document("b", {"x": 2}),
        ]
        rows = [{"id": "a", "rev": "2-a"}, {"id": "b", "error": "forbidden", "reason": "no"}]
        source, session = make_source(response(201, rows))

        results = source.bulk_upsert(docs)

        sent = call(session)[2]["json"]["docs"]
        assert sent[0]["_rev"] == "1-a"
        assert sent[0]["_attachments"]["f.txt"] == {"content_type": "text/plain", "data": "aGk="}
        assert "_rev" not in sent[1]
        assert results[0].ok and results[0].rev == "2-a"
        assert not results[1].ok
        assert (results[1].error, results[1].reason) == ("forbidden", "no")

    def test_bulk_upsert_empty(self):
        source, session = make_source()

        assert source.bulk_upsert([]) == []
        session.request.assert_not_called()

    def test_put_design_document_reuses_current_rev(self):
        source, session = make_source(
            response(200, {"_id": "_design/elo", "_rev": "3-old"}),
            response(201, {"ok": True, "rev": "4-new"}),
        )

        rev = source.put_design_document({"_id": "_design/elo", "_rev": "1-stale", "views": {}})

        assert rev == "4-new"
        method, url, kwargs = call(session, 1)
        assert method == "PUT"
        assert url == "http://couch:5984/course_intro/_design/elo"
        assert kwargs["json"] == {"_id": "_design/elo", "views": {}, "_rev": "3-old"}

    def test_put_new_design_document(self):
        source, session = make_source(response(404), response(201, {"ok": True, "rev": "1-new"}))

        source.put_design_document({"_id": "_design/validation", "validate_doc_update": "function () {}"})

        assert "_rev" not in call(session, 1)[2]["json"]

    def test_rejected_design_document(self):
        source, _ = make_source(response(404), response(400, {"error": "compilation_error"}))

        with pytest.raises(ValueError):
            source.put_design_document({"_id": "_design/bad", "views": {"v": {"map": "nope"}}})

    def test_destroy_tolerates_missing_database(self):
        source, session = make_source(response(404))

        source.destroy()

        assert call(session)[0] == "DELETE"
