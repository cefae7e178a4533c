"""
Configuration loader for coursepack.

Settings come from an optional YAML file, then `COURSEPACK_*` environment
variables (a local .env file is loaded first; the shell environment wins).
Everything is returned as explicit objects that callers pass into the
Packer, Migrator and CouchDB source. Nothing here mutates shared state.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import yaml
except ImportError:
    yaml = None

try:
    from dotenv import load_dotenv
except ImportError:
    load_dotenv = None

from ..core.exceptions import CoursePackConfigError


logger = logging.getLogger(__name__)

PACKAGED_ASSET_ROOT = Path(__file__).resolve().parent.parent / "assets"


def _first_non_empty_env(*keys: str) -> Optional[str]:
    """Return the first non-empty env var value for the given keys."""
    for key in keys:
        value = os.environ.get(key)
        if value is not None and value.strip() != "":
            return value
    return None


@dataclass(frozen=True)
class ServerSettings:
    """
    Connection settings for one CouchDB server.

    Passed explicitly to each CouchDocumentSource, so two runs against
    different servers never share connection state.
    """
    url: str = "http://localhost:5984"
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: float = 30.0
    max_retries: int = 3

    @property
    def auth(self):
        if self.username and self.password:
            return (self.username, self.password)
        return None

    def redacted(self) -> Dict[str, Any]:
        """Settings safe to log."""
        return {
            "url": self.url,
            "username": self.username,
            "password": "***" if self.password else None,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
        }


class CoursePackSettings:
    """
    Configuration for pack and migrate runs.

    Loads and validates a YAML configuration file, then applies environment
    overrides. The asset root is resolved once, here.
    """

    def __init__(self, config_path: Optional[Path] = None, load_env_file: bool = True):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)
            load_env_file: Whether to load a .env file from the working directory
        """
        if load_env_file and load_dotenv is not None:
            load_dotenv(override=False)

        self.config_path = Path(config_path) if config_path else None
        self.config = self._default_config()
        if self.config_path:
            self._merge(self.config, self._load_config())
        self._apply_env_overrides()
        self._validate()
        self.asset_root = self._resolve_asset_root()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if yaml is None:
            raise ImportError(
                "pyyaml is required for config loading. "
                "Install with: pip install pyyaml"
            )

        if not self.config_path.exists():
            raise CoursePackConfigError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        with open(self.config_path, "r", encoding="utf-8") as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise CoursePackConfigError(f"Invalid YAML in {self.config_path}: {e}") from e

        if config is not None and not isinstance(config, dict):
            raise CoursePackConfigError(f"Config root must be a mapping: {self.config_path}")
        return config or {}

    def _default_config(self) -> Dict[str, Any]:
        """Return default configuration."""
        return {
            "server": {
                "url": "http://localhost:5984",
                "username": None,
                "password": None,
                "timeout": 30.0,
                "max_retries": 3,
            },
            "packer": {
                "chunk_size": 1000,
                "include_attachments": True,
                "best_effort": False,
                "attachment_workers": 4,
                "course_config_id": "CourseConfig",
            },
            "migrator": {
                "chunk_batch_size": 100,
                "validate_round_trip": False,
                "cleanup_on_failure": False,
                "round_trip_sample_size": None,
                "resume": False,
                "validation_design_doc": None,
            },
            "logging": {
                "level": "INFO",
                "structured": False,
            },
            "asset_root": None,
        }

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> None:
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                self._merge(base[key], value)
            else:
                base[key] = value

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to loaded config."""
        server = self.config["server"]
        url = _first_non_empty_env("COURSEPACK_COUCHDB_URL", "COUCHDB_URL")
        if url:
            server["url"] = url
        username = _first_non_empty_env("COURSEPACK_COUCHDB_USER", "COUCHDB_USER")
        if username:
            server["username"] = username
        password = _first_non_empty_env("COURSEPACK_COUCHDB_PASSWORD", "COUCHDB_PASSWORD")
        if password:
            server["password"] = password
        timeout = _first_non_empty_env("COURSEPACK_COUCHDB_TIMEOUT")
        if timeout:
            server["timeout"] = float(timeout)

        chunk_size = _first_non_empty_env("COURSEPACK_CHUNK_SIZE")
        if chunk_size:
            self.config["packer"]["chunk_size"] = int(chunk_size)
        batch_size = _first_non_empty_env("COURSEPACK_CHUNK_BATCH_SIZE")
        if batch_size:
            self.config["migrator"]["chunk_batch_size"] = int(batch_size)

        level = _first_non_empty_env("COURSEPACK_LOG_LEVEL")
        if level:
            self.config["logging"]["level"] = level.upper()

        asset_root = _first_non_empty_env("COURSEPACK_ASSET_ROOT")
        if asset_root:
            self.config["asset_root"] = asset_root

    def _validate(self) -> None:
        if int(self.config["packer"]["chunk_size"]) < 1:
            raise CoursePackConfigError("packer.chunk_size must be >= 1")
        if int(self.config["migrator"]["chunk_batch_size"]) < 1:
            raise CoursePackConfigError("migrator.chunk_batch_size must be >= 1")
        if int(self.config["packer"]["attachment_workers"]) < 1:
            raise CoursePackConfigError("packer.attachment_workers must be >= 1")

    def _resolve_asset_root(self) -> Path:
        configured = self.config.get("asset_root")
        root = Path(configured) if configured else PACKAGED_ASSET_ROOT
        if not root.is_dir():
            raise CoursePackConfigError(f"Asset root is not a directory: {root}")
        logger.debug(f"Asset root resolved to {root}")
        return root

    def server_settings(self) -> ServerSettings:
        """Get CouchDB server settings."""
        server = self.config["server"]
        return ServerSettings(
            url=server["url"].rstrip("/"),
            username=server.get("username"),
            password=server.get("password"),
            timeout=float(server.get("timeout", 30.0)),
            max_retries=int(server.get("max_retries", 3)),
        )

    def packer_config(self):
        """Build a PackerConfig from the packer section."""
        from ..snapshot.packer import PackerConfig

        section = self.config["packer"]
        return PackerConfig(
            chunk_size=int(section["chunk_size"]),
            include_attachments=bool(section["include_attachments"]),
            best_effort=bool(section["best_effort"]),
            attachment_workers=int(section["attachment_workers"]),
            course_config_id=section.get("course_config_id"),
        )

    def migrator_config(self):
        """Build a MigratorConfig from the migrator section."""
        from ..snapshot.migrator import MigratorConfig

        section = self.config["migrator"]
        validation_doc = section.get("validation_design_doc")
        return MigratorConfig(
            chunk_batch_size=int(section["chunk_batch_size"]),
            validate_round_trip=bool(section["validate_round_trip"]),
            cleanup_on_failure=bool(section["cleanup_on_failure"]),
            round_trip_sample_size=section.get("round_trip_sample_size"),
            resume=bool(section["resume"]),
            validation_design_doc=self.asset_root / validation_doc if validation_doc else None,
        )

    def logging_level(self) -> int:
        level = self.config["logging"]["level"]
        value = logging.getLevelName(str(level).upper())
        if not isinstance(value, int):
            raise CoursePackConfigError(f"Unknown log level: {level}")
        return value

    def structured_logging(self) -> bool:
        return bool(self.config["logging"]["structured"])

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key."""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default
