"""
Configuration Management Module.

Handles loading and validation of:
- Connector configuration files (JSON/YAML).
- Connector capabilities with documented defaults.
- Older configuration layouts via version migrations.
"""

from xraysync.config.capabilities import Capabilities, resolve_capabilities
from xraysync.config.loader import ConfigLoader, ConfigurationError, ConnectorSettings
from xraysync.config.schema_registry import SchemaRegistry, SchemaValidationError

__all__ = [
    "Capabilities",
    "ConfigLoader",
    "ConfigurationError",
    "ConnectorSettings",
    "SchemaRegistry",
    "SchemaValidationError",
    "resolve_capabilities",
]
