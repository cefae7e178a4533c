"""
Shared test fixtures and configuration for pytest.
"""

import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


logger = logging.getLogger(__name__)


# ============================================================================
# Environment detection
# ============================================================================

def couchdb_url() -> Optional[str]:
    return os.environ.get("COURSEPACK_COUCHDB_URL") or os.environ.get("COUCHDB_URL")


def is_couchdb_available() -> bool:
    """Check if a CouchDB server is available for testing."""
    url = couchdb_url()
    if not url:
        return False

    try:
        import requests

        auth = None
        user = os.environ.get("COURSEPACK_COUCHDB_USER") or os.environ.get("COUCHDB_USER")
        password = os.environ.get("COURSEPACK_COUCHDB_PASSWORD") or os.environ.get("COUCHDB_PASSWORD")
        if user and password:
            auth = (user, password)
        response = requests.get(url, auth=auth, timeout=5)
        return response.status_code == 200

    except Exception as e:
        logger.debug(f"CouchDB not available: {e}")
        return False


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (requires CouchDB)")
    config.addinivalue_line("markers", "slow: Tests that take a long time to run")


def pytest_collection_modifyitems(config, items):
    """Automatically skip integration tests if CouchDB is not available."""
    if is_couchdb_available():
        return

    skip_couchdb = pytest.mark.skip(
        reason="CouchDB not available (set COURSEPACK_COUCHDB_URL and ensure CouchDB is running)"
    )

    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_couchdb)


# ============================================================================
# Helpers
# ============================================================================

def make_documents(count: int, prefix: str = "card") -> List[Dict]:
    """Raw CouchDB-shaped card documents with zero-padded ids."""
    return [
        {
            "_id": f"{prefix}-{i:05d}",
            "docType": "CARD",
            "elo": {"global": {"score": 900 + (i * 37) % 400}},
            "question": f"Question {i}",
        }
        for i in range(count)
    ]


def make_course_source(
    count: int = 5,
    name: str = "memory",
    course_name: Optional[str] = "Intro Course",
    with_design_doc: bool = True,
):
    """MemoryDocumentSource seeded with cards, a tag, course config and a design doc."""
    from coursepack.sources.memory import MemoryDocumentSource

    docs = make_documents(count)
    if course_name is not None:
        docs.append({"_id": "CourseConfig", "docType": "COURSE_CONFIG", "name": course_name})
    if count:
        docs.append({
            "_id": "TAG-basics",
            "docType": "TAG",
            "name": "basics",
            "snippet": "Basic cards",
            "taggedCards": [d["_id"] for d in docs[: min(count, 2)]],
        })
    if with_design_doc:
        docs.append({
            "_id": "_design/elo",
            "_rev": "3-abc",
            "views": {"elo": {"map": "function (doc) { emit(doc.elo, null); }"}},
        })
    return MemoryDocumentSource(name=name, documents=docs)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def memory_fs():
    """Fixture providing an empty in-memory file system."""
    from coursepack.core.filesystem import MemoryFileSystemAdapter

    return MemoryFileSystemAdapter()


@pytest.fixture
def local_fs():
    """Fixture providing the local disk adapter."""
    from coursepack.core.filesystem import LocalFileSystemAdapter

    return LocalFileSystemAdapter()


@pytest.fixture
def course_source():
    """Fixture providing a small seeded course database."""
    return make_course_source()


@pytest.fixture
def packed_course(memory_fs, course_source):
    """Fixture providing a course packed into memory_fs at /course."""
    from coursepack.snapshot.packer import CoursePacker, PackerConfig
    from coursepack.snapshot.sinks import AdapterSink

    course_source.add_attachment("card-00001", "image.png", b"\x89PNG\r\n" + b"\x00" * 64, "image/png")
    packer = CoursePacker(PackerConfig(chunk_size=2))
    result = packer.pack(course_source, "intro", AdapterSink(memory_fs, "/course"))
    return "/course", result


@pytest.fixture
def couchdb_settings():
    """Fixture providing ServerSettings for a live CouchDB server."""
    from coursepack.config.config_loader import ServerSettings

    return ServerSettings(
        url=couchdb_url() or "http://localhost:5984",
        username=os.environ.get("COURSEPACK_COUCHDB_USER") or os.environ.get("COUCHDB_USER"),
        password=os.environ.get("COURSEPACK_COUCHDB_PASSWORD") or os.environ.get("COUCHDB_PASSWORD"),
    )


@pytest.fixture
def scratch_database(couchdb_settings):
    """Fixture providing a throwaway CouchDB database, destroyed afterwards."""
    from coursepack.sources.couchdb import CouchDocumentSource

    source = CouchDocumentSource(
        couchdb_settings, f"coursepack_test_{uuid.uuid4().hex[:8]}", create_if_missing=True
    )
    source.ping()
    yield source
    try:
        source.destroy()
    except Exception as e:
        logger.warning(f"Failed to drop scratch database: {e}")
    source.close()


@pytest.fixture
def make_source():
    """Fixture providing the make_course_source factory."""
    return make_course_source


@pytest.fixture
def make_docs():
    """Fixture providing the make_documents factory."""
    return make_documents
