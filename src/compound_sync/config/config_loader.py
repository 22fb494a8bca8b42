"""
Configuration loader for compound synchronization.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..core.exceptions import SyncConfigError


logger = logging.getLogger(__name__)


SOURCE_TYPES = ("ftp", "http")
STRATEGIES = ("stamped", "set_difference")
RECORD_POLICIES = ("scanning", "structured")
BACKENDS = ("sqlite", "sqlserver")


class SyncConfig:
    """
    Configuration for a compound synchronization run.

    Loads a YAML file over built-in defaults, then applies environment
    variable overrides.
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)

        Raises:
            SyncConfigError: If the file does not exist or is not a mapping
        """
        self.config_path = Path(config_path) if config_path else None
        self.config = self._default_config()
        if self.config_path:
            _merge(self.config, self._load_config())
        self._apply_env_overrides()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise SyncConfigError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        with open(self.config_path, "r", encoding="utf-8") as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise SyncConfigError(f"Invalid YAML in {self.config_path}: {e}") from e

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise SyncConfigError(f"Config file must contain a mapping: {self.config_path}")
        return config

    def _default_config(self) -> Dict[str, Any]:
        """Return default configuration."""
        return {
            "database": {
                "backend": "sqlite",
                "sqlite": {
                    "db_path": "local/state/compounds.db",
                },
                "sqlserver": {
                    "host": "localhost",
                    "port": 1433,
                    "database": "Compounds",
                    "user": "sa",
                    "schema": "compound_sync",
                    "driver": "ODBC Driver 18 for SQL Server",
                },
            },
            "dataset": {
                "name": "compounds",
                "strategy": "stamped",
                "batch_size": 1000,
                "delete_batch_size": 10000,
                "encoding": "latin-1",
                "record_policy": "scanning",
            },
            "sdf": {
                "id_tag": None,
                "id_prefix": "",
                "file_pattern": r".*\.sdf\.gz",
                "member_suffix": ".sdf",
            },
            "source": {
                "type": "ftp",
                "timeout": 60,
                "ftp": {
                    "host": None,
                    "port": 21,
                    "username": "anonymous",
                    "password": "",
                    "path": "",
                },
                "http": {
                    "server": None,
                    "username": None,
                    "password": None,
                    "file_name": None,
                },
            },
            "paths": {
                "work_directory": "local/work",
                "base_directory": None,
                "base_version": None,
            },
            "enrichment": {
                "transform": None,
                "context_factory": None,
                "workers": 1,
            },
        }

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to loaded config."""
        backend = os.environ.get("COMPOUND_SYNC_DB_BACKEND") or os.environ.get("DB_BACKEND")
        if backend:
            self.set("database.backend", backend.lower())

        work_dir = os.environ.get("COMPOUND_SYNC_WORK_DIR")
        if work_dir:
            self.set("paths.work_directory", work_dir)

        overrides = {
            "COMPOUND_SYNC_SQLSERVER_PASSWORD": "database.sqlserver.password",
            "COMPOUND_SYNC_FTP_PASSWORD": "source.ftp.password",
            "COMPOUND_SYNC_HTTP_PASSWORD": "source.http.password",
        }
        for env_name, key in overrides.items():
            value = os.environ.get(env_name)
            if value:
                self.set(key, value)

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by dotted key."""
        keys = key.split(".")
        section = self.config
        for k in keys[:-1]:
            section = section.setdefault(k, {})
        section[keys[-1]] = value

    def validate(self, require_source: bool = True) -> None:
        """
        Check that every required value is present and allowed.

        Args:
            require_source: Whether the remote source section must be complete

        Raises:
            SyncConfigError: Listing every missing key
        """
        missing: List[str] = []
        for key in ("dataset.name", "sdf.id_tag"):
            if self.get(key) in (None, ""):
                missing.append(key)

        self._check_choice("database.backend", BACKENDS)
        self._check_choice("dataset.strategy", STRATEGIES)
        self._check_choice("dataset.record_policy", RECORD_POLICIES)

        if require_source:
            source_type = self._check_choice("source.type", SOURCE_TYPES)
            required = {
                "ftp": ["source.ftp.host"],
                "http": ["source.http.server", "source.http.file_name"],
            }[source_type]
            missing.extend(key for key in required if self.get(key) in (None, ""))

        if missing:
            raise SyncConfigError(
                f"Missing required configuration: {', '.join(missing)}",
                missing_keys=missing,
            )

    def _check_choice(self, key: str, choices: tuple) -> str:
        value = self.get(key)
        if value not in choices:
            raise SyncConfigError(
                f"Invalid value for {key}: {value!r}. Allowed: {', '.join(choices)}"
            )
        return value

    def get_database_config(self) -> Dict[str, Any]:
        """Get database configuration."""
        return self.config.get("database", {})

    def get_dataset_config(self) -> Dict[str, Any]:
        """Get dataset configuration."""
        return self.config.get("dataset", {})

    def get_sdf_config(self) -> Dict[str, Any]:
        """Get record format configuration."""
        return self.config.get("sdf", {})

    def get_source_config(self) -> Dict[str, Any]:
        """Get remote source configuration."""
        return self.config.get("source", {})

    def get_paths_config(self) -> Dict[str, Any]:
        """Get local paths configuration."""
        return self.config.get("paths", {})

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


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Recursively merge ``override`` into ``base``."""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
