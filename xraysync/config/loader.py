"""
Configuration Loader Module.

Loads the connector configuration file that an automation engine hands to
xraysync:
- YAML and JSON files.
- Schema validation using JSON Schema.
- Version-aware migration of older configuration layouts.
- Credential overrides from the environment.
"""

from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger

from xraysync.config.capabilities import Capabilities, resolve_capabilities
from xraysync.config.schema_registry import PACKAGED_SCHEMA_DIR, SchemaRegistry
from xraysync.config.version_compat import VersionCompatManager
from xraysync.jira_client.transport import ClientConfig, XrayClientError


ENV_OVERRIDES = {
    "XRAYSYNC_PASSWORD": "password",
    "XRAYSYNC_API_TOKEN": "api_token",
}


class ConfigurationError(Exception):
    """Raised when a configuration file is invalid or cannot be loaded."""

    pass


@dataclass(frozen=True)
class ConnectorSettings:
    """Everything needed to open a synchronization session."""

    client: ClientConfig
    capabilities: Capabilities
    raw: Dict[str, Any]


class ConfigLoader:
    """
    Configuration loader with schema validation and backward compatibility.

    Attributes:
        config_dir: Base directory for configuration files.
        schema_registry: Registry of JSON schemas for validation.
        version_manager: Handles version-aware migrations.
    """

    SUPPORTED_EXTENSIONS = {".yaml", ".yml", ".json"}

    def __init__(
        self,
        config_dir: str | Path = "config",
        schema_dir: str | Path | None = None,
    ) -> None:
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing configuration files.
            schema_dir: Directory containing JSON schema files.
                        Defaults to the schemas shipped with the package.
        """
        self.config_dir = Path(config_dir)
        self.schema_registry = SchemaRegistry(schema_dir or PACKAGED_SCHEMA_DIR)
        self.version_manager = VersionCompatManager()
        self._cache: Dict[str, Dict[str, Any]] = {}

        logger.info(f"ConfigLoader initialized - config_dir={self.config_dir}")

    def load(
        self,
        filename: str,
        schema_name: Optional[str] = None,
        *,
        validate: bool = True,
        use_cache: bool = True,
    ) -> Dict[str, Any]:
        """
        Load a configuration file with optional schema validation.

        Args:
            filename: Name or relative path of the config file within config_dir.
            schema_name: JSON schema name to validate against (without extension).
            validate: Whether to validate against the schema.
            use_cache: Whether to use cached config if available.

        Returns:
            Parsed, migrated configuration. Callers get their own copy.

        Raises:
            ConfigurationError: If the file cannot be loaded or fails validation.
            FileNotFoundError: If the configuration file does not exist.
        """
        file_path = self._resolve_path(filename)
        cache_key = str(file_path.resolve())

        if use_cache and cache_key in self._cache:
            logger.debug(f"Returning cached config for: {filename}")
            return copy.deepcopy(self._cache[cache_key])

        logger.info(f"Loading configuration: {file_path}")
        data = self.version_manager.migrate(self._read_file(file_path))

        if validate and schema_name:
            self._validate(data, schema_name)

        if use_cache:
            self._cache[cache_key] = copy.deepcopy(data)

        logger.info(f"Configuration loaded successfully: {filename}")
        return data

    def load_connector(self, filename: str = "connector.yaml") -> ConnectorSettings:
        """
        Load connector settings and resolve capabilities.

        Args:
            filename: Connector config filename (default: connector.yaml).

        Returns:
            ConnectorSettings with an immutable client config.

        Raises:
            ConfigurationError: If the file is invalid.
        """
        data = self.load(filename, schema_name="connector_config_schema")
        connector = dict(data.get("connector", {}))

        for env_name, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                connector[key] = value
                logger.debug(f"connector.{key} overridden from {env_name}")

        try:
            client = ClientConfig(**connector)
        except (TypeError, XrayClientError) as e:
            raise ConfigurationError(f"Invalid connector section in {filename}: {e}") from e

        return ConnectorSettings(
            client=client,
            capabilities=resolve_capabilities(data.get("capabilities")),
            raw=data,
        )

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.debug("Configuration cache cleared.")

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
                f"Supported: {sorted(self.SUPPORTED_EXTENSIONS)}"
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

    def _validate(self, data: Dict[str, Any], schema_name: str) -> None:
        try:
            self.schema_registry.validate(data, schema_name)
        except Exception as e:
            raise ConfigurationError(
                f"Configuration validation failed against schema '{schema_name}': {e}"
            ) from e
