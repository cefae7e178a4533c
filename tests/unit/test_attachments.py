"""
Unit tests for attachment extraction and output sinks.
"""

import pytest

from coursepack.core.exceptions import FileSystemError
from coursepack.core.filesystem import MemoryFileSystemAdapter
from coursepack.core.models import Attachment, Document
from coursepack.snapshot.attachments import (
    AttachmentWriter,
    attachment_path,
    extension_for,
    sanitize_path_segment,
)
from coursepack.snapshot.sinks import AdapterSink, MemorySink


class TestPathDerivation:
    """Tests for deterministic attachment paths."""

    def test_safe_segments_unchanged(self):
        assert sanitize_path_segment("card-00001") == "card-00001"
        assert sanitize_path_segment("image.v2_final") == "image.v2_final"

    def test_unsafe_segments_are_replaced_and_disambiguated(self):
        first = sanitize_path_segment("a/b")
        second = sanitize_path_segment("a_b-x")

        assert "/" not in first
        assert first.startswith("a_b-")
        assert first != sanitize_path_segment("a b")
        assert second == "a_b-x"

    def test_dot_segments(self):
        assert sanitize_path_segment("..") not in (".", "..")
        assert sanitize_path_segment("") != ""

    def test_extensions(self):
        assert extension_for("image/jpeg") == ".jpg"
        assert extension_for("audio/mp3") == ".mp3"
        assert extension_for("application/json; charset=utf-8") == ".json"
        assert extension_for("application/x-unknown") == ""
        assert extension_for(None) == ""

    def test_attachment_path(self):
        assert attachment_path("card-1", "front", "image/png") == "attachments/card-1/front.png"


class TestAttachmentWriter:
    """Tests for parallel attachment writes."""

    def test_queue_and_flush(self):
        sink = MemorySink()
        doc = Document(
            "card-1",
            attachments={
                "b": Attachment("b", "text/plain", 2, data=b"bb"),
                "a": Attachment("a", "image/png", 1, data=b"a"),
                "lazy": Attachment("lazy", "image/png", 10),
            },
        )

        with AttachmentWriter(sink, workers=3) as writer:
            stubs = writer.queue(doc)
            written = writer.flush()

        assert [s.name for s in stubs] == ["a", "b"]
        assert written == 2
        assert sink.files == {
            "attachments/card-1/a.png": b"a",
            "attachments/card-1/b.txt": b"bb",
        }
        assert writer.files_written == 2
        assert writer.bytes_written == 3

    def test_write_error_propagates(self):
        class BrokenSink(MemorySink):
            def write(self, relative_path, data):
                raise FileSystemError("disk full", "write_file", relative_path)

        doc = Document("d", attachments={"a": Attachment("a", "text/plain", 1, data=b"x")})

        with AttachmentWriter(BrokenSink(), workers=2) as writer:
            writer.queue(doc)
            with pytest.raises(FileSystemError):
                writer.flush()


class TestSinks:
    """Tests for output sinks."""

    def test_adapter_sink_creates_directories(self):
        fs = MemoryFileSystemAdapter()
        sink = AdapterSink(fs, "/out")

        sink.write_json("chunks/chunk-0000.json", [{"_id": "a"}])
        sink.write("attachments/a/b.bin", b"\x00")

        assert fs.read_binary("/out/attachments/a/b.bin") == b"\x00"
        assert sink.written_paths() == ["chunks/chunk-0000.json", "attachments/a/b.bin"]

    def test_sinks_receive_identical_bytes(self):
        fs = MemoryFileSystemAdapter()
        adapter_sink = AdapterSink(fs, "/out")
        memory_sink = MemorySink()
        payload = [{"_id": "a", "text": "ünïcode"}]

        adapter_sink.write_json("chunks/chunk-0000.json", payload)
        memory_sink.write_json("chunks/chunk-0000.json", payload)

        assert fs.read_binary("/out/chunks/chunk-0000.json") == memory_sink.read("chunks/chunk-0000.json")

    def test_memory_sink_write_to_puts_manifest_last(self):
        memory_sink = MemorySink()
        memory_sink.write_json("manifest.json", {"courseId": "c"})
        memory_sink.write_json("chunks/chunk-0000.json", [])
        order = []

        class RecordingFs(MemoryFileSystemAdapter):
            def write_file(self, path, data):
                order.append(path)
                super().write_file(path, data)

        fs = RecordingFs()
        memory_sink.write_to(fs, "/copy")

        assert order[-1] == "/copy/manifest.json"
        assert fs.exists("/copy/chunks/chunk-0000.json")
