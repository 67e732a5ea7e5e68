"""
Configuration Loader Module.

Provides a loader for reporter settings files that handles:
- Loading YAML and JSON configuration files.
- Schema validation using JSON Schema.
- Conversion into a ReportConfig.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import jsonschema
import yaml
from loguru import logger

from product_report.config.settings import ConfigurationError, ReportConfig, parse_tags


REPORT_CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Report Portal reporter settings",
    "type": "object",
    "required": ["project"],
    "properties": {
        "project": {"type": "string", "minLength": 1},
        "endpoint": {"type": "string"},
        "token": {"type": "string"},
        "launch_name": {"type": "string"},
        "description": {"type": "string"},
        "tags": {
            "oneOf": [
                {"type": "string"},
                {"type": "array", "items": {"type": "string"}},
            ]
        },
        "launch_id": {"type": "string"},
        "timeout_sec": {"type": "integer", "minimum": 1},
        "verify_ssl": {"type": "boolean"},
        "max_workers": {"type": "integer", "minimum": 1},
    },
    "additionalProperties": False,
}


class ConfigLoader:
    """
    Loads reporter settings files with schema validation.

    A settings file holds the same options as the REPORT_PORTAL_* environment
    variables, either at the top level or under a ``report_portal`` key::

        report_portal:
          endpoint: https://rp.example.com
          token: 0c3a...
          project: demo
          tags: [nightly, smoke]

    Attributes:
        config_dir: Base directory for configuration files.
    """

    SUPPORTED_EXTENSIONS = {".yaml", ".yml", ".json"}
    SECTION_KEY = "report_portal"

    def __init__(self, config_dir: str | Path = "config") -> None:
        """
        Initialize the configuration loader.

        Args:
            config_dir: Path to the directory containing configuration files.
        """
        self.config_dir = Path(config_dir)
        logger.info(f"ConfigLoader initialized — config_dir={self.config_dir}")

    def load(self, filename: str) -> ReportConfig:
        """
        Load a reporter settings file.

        Args:
            filename: Name or relative path of the file within config_dir.

        Returns:
            ReportConfig built from the file.

        Raises:
            ConfigurationError: If the file cannot be parsed or fails validation.
            FileNotFoundError: If the file does not exist.
        """
        file_path = self._resolve_path(filename)
        logger.info(f"Loading reporter configuration: {file_path}")

        data = self._read_file(file_path)
        if isinstance(data.get(self.SECTION_KEY), dict):
            data = data[self.SECTION_KEY]
        self._validate(data)

        config = ReportConfig(
            project=data["project"],
            endpoint=data.get("endpoint", ""),
            token=data.get("token", ""),
            launch_name=data.get("launch_name", ""),
            description=data.get("description"),
            tags=parse_tags(data.get("tags")),
            launch_id_override=data.get("launch_id"),
            timeout_sec=data.get("timeout_sec", 30),
            verify_ssl=data.get("verify_ssl", True),
            max_workers=data.get("max_workers", 8),
        )
        logger.info(f"Configuration loaded successfully: {filename}")
        return config

    def _resolve_path(self, filename: str) -> Path:
        """Resolve a filename to a full path, checking config_dir first."""
        path = Path(filename)
        if path.is_absolute() and path.exists():
            return path

        config_path = self.config_dir / filename
        if config_path.exists():
            return config_path

        if path.exists():
            return path

        raise FileNotFoundError(
            f"Configuration file not found: {filename} "
            f"(searched in {self.config_dir} and current directory)"
        )

    def _read_file(self, file_path: Path) -> Dict[str, Any]:
        """Read and parse a YAML or JSON file."""
        suffix = file_path.suffix.lower()
        if suffix not in self.SUPPORTED_EXTENSIONS:
            raise ConfigurationError(
                f"Unsupported file format '{suffix}'. "
                f"Supported: {self.SUPPORTED_EXTENSIONS}"
            )

        try:
            content = file_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Failed to read file {file_path}: {e}") from e

        try:
            if suffix in {".yaml", ".yml"}:
                data = yaml.safe_load(content)
            else:
                data = json.loads(content)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to parse {file_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping (dict), "
                f"got {type(data).__name__}: {file_path}"
            )

        return data

    @staticmethod
    def _validate(data: Dict[str, Any]) -> None:
        """Validate settings against the reporter settings schema."""
        try:
            jsonschema.validate(instance=data, schema=REPORT_CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            raise ConfigurationError(
                f"Reporter configuration is invalid: {e.message}"
            ) from e
        logger.debug("Schema validation passed: reporter settings")
