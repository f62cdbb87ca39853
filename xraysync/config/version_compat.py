"""
Version Compatibility Manager.

Migrates connector configuration files written for older schema versions
to the current layout, so existing configuration keeps working unchanged.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Tuple

from loguru import logger


# (config_data) -> config_data
MigrationFunc = Callable[[Dict[str, Any]], Dict[str, Any]]


class VersionCompatManager:
    """
    Applies registered migrations in version order.

    Example:
        manager = VersionCompatManager()

        @manager.register_migration("1.0.0", "1.1.0")
        def add_timeout(config):
            config["connector"].setdefault("timeout_sec", 30)
            return config
    """

    CURRENT_VERSION = "1.0.0"

    def __init__(self) -> None:
        self._migrations: List[Tuple[str, str, MigrationFunc]] = []
        self._register_builtin_migrations()

    def register_migration(
        self, from_version: str, to_version: str
    ) -> Callable[[MigrationFunc], MigrationFunc]:
        """
        Decorator to register a migration function.

        Args:
            from_version: Source schema version (semver string).
            to_version: Target schema version (semver string).
        """

        def decorator(func: MigrationFunc) -> MigrationFunc:
            self._migrations.append((from_version, to_version, func))
            self._migrations.sort(key=lambda m: self._version_tuple(m[0]))
            logger.debug(f"Registered migration: {from_version} -> {to_version}")
            return func

        return decorator

    def migrate(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Bring a configuration to the current schema version.

        A config without ``schema_version`` is assumed current.
        """
        current_version = config.get("schema_version")

        if current_version is None:
            logger.debug("No schema_version found - assuming current version.")
            config["schema_version"] = self.CURRENT_VERSION
            return config

        if current_version == self.CURRENT_VERSION:
            return config

        path = self.get_migration_path(current_version)
        if not path:
            logger.warning(
                f"No migration path from v{current_version} to v{self.CURRENT_VERSION}, "
                f"using config as-is"
            )
            return config

        logger.info(f"Migrating config from v{current_version} to v{self.CURRENT_VERSION}")

        functions = {(f, t): func for f, t, func in self._migrations}
        for from_ver, to_ver in path:
            logger.debug(f"Applying migration: {from_ver} -> {to_ver}")
            try:
                config = functions[(from_ver, to_ver)](config)
                config["schema_version"] = to_ver
            except Exception as e:
                logger.error(f"Migration {from_ver} -> {to_ver} failed: {e}")
                raise

        return config

    def get_migration_path(self, from_version: str) -> List[Tuple[str, str]]:
        return [
            (from_ver, to_ver)
            for from_ver, to_ver, _ in self._migrations
            if self._version_tuple(from_ver) >= self._version_tuple(from_version)
            and self._version_tuple(to_ver) <= self._version_tuple(self.CURRENT_VERSION)
        ]

    def _register_builtin_migrations(self) -> None:

        @self.register_migration("0.1.0", "1.0.0")
        def _migrate_0_1_to_1_0(config: Dict[str, Any]) -> Dict[str, Any]:
            """
            Migrate from schema v0.1.0 to v1.0.0.

            Changes:
            - 'connector.collection' renamed to 'connector.base_url'.
            - 'connector.user_name' renamed to 'connector.username'.
            - Capabilities nested under '<connector>:options' moved to a
              top-level 'capabilities' section.
            """
            connector = config.setdefault("connector", {})
            for old, new in (("collection", "base_url"), ("user_name", "username")):
                if old in connector and new not in connector:
                    connector[new] = connector.pop(old)
                    logger.debug(f"Migrated connector.{old} -> {new}")

            capabilities = config.setdefault("capabilities", {})
            for key in [k for k in capabilities if k.endswith(":options")]:
                options = capabilities.pop(key)
                if isinstance(options, dict):
                    for name, value in options.items():
                        capabilities.setdefault(name, value)
                    logger.debug(f"Flattened capabilities '{key}'")

            return config

    @staticmethod
    def _version_tuple(version_str: str) -> Tuple[int, ...]:
        try:
            return tuple(int(part) for part in version_str.split("."))
        except (ValueError, AttributeError):
            logger.warning(f"Invalid version string: {version_str}, treating as (0, 0, 0)")
            return (0, 0, 0)
