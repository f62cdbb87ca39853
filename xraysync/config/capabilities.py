"""
Capability Registry.

Resolves the connector's configurable behavior (issue type names, bucket
size, dry-run flag, inconclusive status, Jira API version) from a sparse
capability map, applying fixed defaults for every absent key.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from loguru import logger


DEFAULT_BUCKET_SIZE = 15

# raw capability key -> (field name, default)
CAPABILITY_DEFAULTS: Dict[str, Tuple[str, Any]] = {
    "testType": ("test_type", "Test"),
    "setType": ("set_type", "Test Set"),
    "planType": ("plan_type", "Test Plan"),
    "preconditionsType": ("precondition_type", "Pre-Condition"),
    "executionType": ("execution_type", "Test Execution"),
    "bugType": ("bug_type", "Bug"),
    "bucketSize": ("bucket_size", DEFAULT_BUCKET_SIZE),
    "inconclusiveStatus": ("inconclusive_status", "ABORTED"),
    "dryRun": ("dry_run", False),
    "jiraApiVersion": ("jira_api_version", "latest"),
    "testPlans": ("test_plans", ()),
}


@dataclass(frozen=True)
class Capabilities:
    """Resolved, immutable connector capabilities for one session."""

    test_type: str = "Test"
    set_type: str = "Test Set"
    plan_type: str = "Test Plan"
    precondition_type: str = "Pre-Condition"
    execution_type: str = "Test Execution"
    bug_type: str = "Bug"
    bucket_size: int = DEFAULT_BUCKET_SIZE
    inconclusive_status: str = "ABORTED"
    dry_run: bool = False
    jira_api_version: str = "latest"
    test_plans: Tuple[str, ...] = ()
    extras: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def issue_types(self) -> Dict[str, str]:
        """Map of entity role to the configured Jira issue type name."""
        return {
            "test": self.test_type,
            "set": self.set_type,
            "plan": self.plan_type,
            "precondition": self.precondition_type,
            "execution": self.execution_type,
            "bug": self.bug_type,
        }

    def role_of(self, type_name: Optional[str]) -> Optional[str]:
        """
        Find the entity role whose configured type name matches ``type_name``.

        Matching ignores case and surrounding whitespace.

        Returns:
            Role name (e.g., "set"), or None for an unconfigured type.
        """
        wanted = (type_name or "").strip().lower()
        if not wanted:
            return None
        for role, name in self.issue_types().items():
            if name.strip().lower() == wanted:
                return role
        return None


def resolve_capabilities(raw: Optional[Mapping[str, Any]] = None) -> Capabilities:
    """
    Resolve a sparse capability map into a Capabilities value.

    The raw map is copied before it is read and is never mutated.

    Args:
        raw: Capability map keyed by the connector's camelCase names.

    Returns:
        Capabilities with defaults applied for absent keys.
    """
    source = dict(raw or {})
    values: Dict[str, Any] = {}

    for key, (name, default) in CAPABILITY_DEFAULTS.items():
        value = source.pop(key, None)
        values[name] = default if value is None else value

    values["bucket_size"] = _resolve_bucket_size(values["bucket_size"])
    values["dry_run"] = _resolve_flag(values["dry_run"])
    values["test_plans"] = _resolve_plans(values["test_plans"])
    for name in ("test_type", "set_type", "plan_type", "precondition_type",
                 "execution_type", "bug_type", "inconclusive_status",
                 "jira_api_version"):
        values[name] = str(values[name])

    return Capabilities(extras=MappingProxyType(source), **values)


def _resolve_bucket_size(value: Any) -> int:
    """Parse a bucket size; anything but a positive integer gives the default."""
    if isinstance(value, bool):
        size = 0
    else:
        try:
            size = int(str(value).strip())
        except (TypeError, ValueError):
            size = 0

    if size <= 0:
        logger.debug(
            f"Bucket size '{value}' is not a positive integer, "
            f"using default {DEFAULT_BUCKET_SIZE}"
        )
        return DEFAULT_BUCKET_SIZE
    return size


def _resolve_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def _resolve_plans(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(v).strip() for v in value if str(v).strip())
