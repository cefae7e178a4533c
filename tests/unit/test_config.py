"""
Unit tests for configuration loading.
"""

import logging

import pytest

from coursepack.config.config_loader import PACKAGED_ASSET_ROOT, CoursePackSettings, ServerSettings
from coursepack.core.exceptions import CoursePackConfigError
from coursepack.snapshot.migrator import MigratorConfig
from coursepack.snapshot.packer import PackerConfig

ENV_KEYS = [
    "COURSEPACK_COUCHDB_URL", "COUCHDB_URL",
    "COURSEPACK_COUCHDB_USER", "COUCHDB_USER",
    "COURSEPACK_COUCHDB_PASSWORD", "COUCHDB_PASSWORD",
    "COURSEPACK_COUCHDB_TIMEOUT", "COURSEPACK_CHUNK_SIZE",
    "COURSEPACK_CHUNK_BATCH_SIZE", "COURSEPACK_LOG_LEVEL", "COURSEPACK_ASSET_ROOT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def write_yaml(tmp_path, text):
    path = tmp_path / "coursepack.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    """Tests for configuration without a file."""

    def test_defaults(self):
        settings = CoursePackSettings(load_env_file=False)

        assert settings.server_settings() == ServerSettings()
        assert settings.packer_config() == PackerConfig()
        assert settings.migrator_config() == MigratorConfig()
        assert settings.logging_level() == logging.INFO
        assert settings.structured_logging() is False
        assert settings.asset_root == PACKAGED_ASSET_ROOT

    def test_packaged_asset_exists(self):
        assert (PACKAGED_ASSET_ROOT / "validate_doc_update.js").is_file()

    def test_get_dotted(self):
        settings = CoursePackSettings(load_env_file=False)

        assert settings.get("packer.chunk_size") == 1000
        assert settings.get("packer.missing", "fallback") == "fallback"
        assert settings.get("server.url.deeper", 1) == 1


class TestYamlFile:
    """Tests for YAML configuration files."""

    def test_values_merge_over_defaults(self, tmp_path):
        path = write_yaml(tmp_path, """
server:
  url: http://db.internal:5984/
  username: packer
packer:
  chunk_size: 250
  include_attachments: false
migrator:
  validate_round_trip: true
  validation_design_doc: validate_doc_update.js
logging:
  level: debug
  structured: true
""")

        settings = CoursePackSettings(config_path=path, load_env_file=False)

        server = settings.server_settings()
        assert server.url == "http://db.internal:5984"
        assert server.username == "packer"
        assert server.auth is None
        assert server.timeout == 30.0
        packer = settings.packer_config()
        assert packer.chunk_size == 250
        assert packer.include_attachments is False
        assert packer.attachment_workers == 4
        migrator = settings.migrator_config()
        assert migrator.validate_round_trip is True
        assert migrator.validation_design_doc == PACKAGED_ASSET_ROOT / "validate_doc_update.js"
        assert settings.logging_level() == logging.DEBUG
        assert settings.structured_logging() is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(CoursePackConfigError):
            CoursePackSettings(config_path=tmp_path / "absent.yaml", load_env_file=False)

    def test_invalid_yaml(self, tmp_path):
        path = write_yaml(tmp_path, "packer: [unclosed\n")

        with pytest.raises(CoursePackConfigError):
            CoursePackSettings(config_path=path, load_env_file=False)

    def test_root_must_be_mapping(self, tmp_path):
        path = write_yaml(tmp_path, "- just\n- a list\n")

        with pytest.raises(CoursePackConfigError):
            CoursePackSettings(config_path=path, load_env_file=False)

    def test_empty_file(self, tmp_path):
        path = write_yaml(tmp_path, "")

        settings = CoursePackSettings(config_path=path, load_env_file=False)

        assert settings.packer_config().chunk_size == 1000

    def test_invalid_chunk_size(self, tmp_path):
        path = write_yaml(tmp_path, "packer:\n  chunk_size: 0\n")

        with pytest.raises(CoursePackConfigError):
            CoursePackSettings(config_path=path, load_env_file=False)

    def test_unknown_log_level(self, tmp_path):
        path = write_yaml(tmp_path, "logging:\n  level: chatty\n")
        settings = CoursePackSettings(config_path=path, load_env_file=False)

        with pytest.raises(CoursePackConfigError):
            settings.logging_level()


class TestEnvironmentOverrides:
    """Tests for COURSEPACK_* environment variables."""

    def test_env_wins_over_file(self, tmp_path, monkeypatch):
        path = write_yaml(tmp_path, "server:\n  url: http://file:5984\npacker:\n  chunk_size: 10\n")
        monkeypatch.setenv("COURSEPACK_COUCHDB_URL", "http://env:5984")
        monkeypatch.setenv("COURSEPACK_COUCHDB_USER", "admin")
        monkeypatch.setenv("COURSEPACK_COUCHDB_PASSWORD", "secret")
        monkeypatch.setenv("COURSEPACK_CHUNK_SIZE", "500")
        monkeypatch.setenv("COURSEPACK_CHUNK_BATCH_SIZE", "25")
        monkeypatch.setenv("COURSEPACK_LOG_LEVEL", "warning")

        settings = CoursePackSettings(config_path=path, load_env_file=False)

        server = settings.server_settings()
        assert server.url == "http://env:5984"
        assert server.auth == ("admin", "secret")
        assert server.redacted()["password"] == "***"
        assert settings.packer_config().chunk_size == 500
        assert settings.migrator_config().chunk_batch_size == 25
        assert settings.logging_level() == logging.WARNING

    def test_fallback_env_names(self, monkeypatch):
        monkeypatch.setenv("COUCHDB_URL", "http://fallback:5984")

        settings = CoursePackSettings(load_env_file=False)

        assert settings.server_settings().url == "http://fallback:5984"

    def test_blank_env_is_ignored(self, monkeypatch):
        monkeypatch.setenv("COURSEPACK_COUCHDB_URL", "   ")

        settings = CoursePackSettings(load_env_file=False)

        assert settings.server_settings().url == "http://localhost:5984"

    def test_asset_root_override(self, tmp_path, monkeypatch):
        (tmp_path / "validate.js").write_text("function () {}", encoding="utf-8")
        monkeypatch.setenv("COURSEPACK_ASSET_ROOT", str(tmp_path))
        path = write_yaml(tmp_path, "migrator:\n  validation_design_doc: validate.js\n")

        settings = CoursePackSettings(config_path=path, load_env_file=False)

        assert settings.asset_root == tmp_path
        assert settings.migrator_config().validation_design_doc == tmp_path / "validate.js"

    def test_asset_root_must_exist(self, tmp_path, monkeypatch):
        monkeypatch.setenv("COURSEPACK_ASSET_ROOT", str(tmp_path / "nope"))

        with pytest.raises(CoursePackConfigError):
            CoursePackSettings(load_env_file=False)
