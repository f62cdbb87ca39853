"""
Unit Tests for the Capability Registry.

Covers:
- Defaults for every recognized capability.
- Preservation of explicit values.
- Bucket size and dry-run parsing.
- Idempotent, non-mutating resolution.
"""

from __future__ import annotations

import pytest

from xraysync.config.capabilities import (
    CAPABILITY_DEFAULTS,
    DEFAULT_BUCKET_SIZE,
    Capabilities,
    resolve_capabilities,
)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    """Resolving an empty map yields the documented defaults."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("test_type", "Test"),
            ("set_type", "Test Set"),
            ("plan_type", "Test Plan"),
            ("precondition_type", "Pre-Condition"),
            ("execution_type", "Test Execution"),
            ("bug_type", "Bug"),
            ("bucket_size", 15),
            ("inconclusive_status", "ABORTED"),
            ("dry_run", False),
            ("jira_api_version", "latest"),
            ("test_plans", ()),
        ],
    )
    def test_default_value(self, name: str, expected: object) -> None:
        assert getattr(resolve_capabilities({}), name) == expected

    def test_none_input(self) -> None:
        assert resolve_capabilities(None) == Capabilities()

    def test_none_value_uses_default(self) -> None:
        assert resolve_capabilities({"testType": None}).test_type == "Test"

    def test_every_raw_key_has_a_field(self) -> None:
        fields = set(Capabilities.__dataclass_fields__)
        for name, _ in CAPABILITY_DEFAULTS.values():
            assert name in fields


# ---------------------------------------------------------------------------
# Explicit Values
# ---------------------------------------------------------------------------


class TestExplicitValues:
    """Explicit non-default values are preserved."""

    def test_issue_types_preserved(self) -> None:
        caps = resolve_capabilities({
            "testType": "Xray Test",
            "setType": "Suite",
            "bugType": "Defect",
        })
        assert caps.test_type == "Xray Test"
        assert caps.set_type == "Suite"
        assert caps.bug_type == "Defect"
        assert caps.issue_types()["bug"] == "Defect"

    def test_bucket_size_preserved(self) -> None:
        assert resolve_capabilities({"bucketSize": 4}).bucket_size == 4

    def test_numeric_string_bucket_size(self) -> None:
        assert resolve_capabilities({"bucketSize": " 8 "}).bucket_size == 8

    def test_inconclusive_status_preserved(self) -> None:
        caps = resolve_capabilities({"inconclusiveStatus": "TODO"})
        assert caps.inconclusive_status == "TODO"

    def test_api_version_stringified(self) -> None:
        assert resolve_capabilities({"jiraApiVersion": 2}).jira_api_version == "2"

    def test_test_plans_from_list_and_string(self) -> None:
        assert resolve_capabilities({"testPlans": ["RA-1", "RA-2"]}).test_plans == ("RA-1", "RA-2")
        assert resolve_capabilities({"testPlans": "RA-1, RA-2"}).test_plans == ("RA-1", "RA-2")

    def test_unknown_keys_kept_in_extras(self) -> None:
        caps = resolve_capabilities({"customField": "x"})
        assert caps.extras["customField"] == "x"


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


class TestBucketSizeGuard:
    """Values that are not positive integers fall back to the default."""

    @pytest.mark.parametrize("value", [0, -3, "abc", "0", "", True, 2.5j])
    def test_invalid_bucket_size(self, value: object) -> None:
        assert resolve_capabilities({"bucketSize": value}).bucket_size == DEFAULT_BUCKET_SIZE


class TestDryRun:
    """Dry-run flag parsing."""

    @pytest.mark.parametrize(
        "value, expected",
        [(True, True), (False, False), ("true", True), ("TRUE", True),
         ("false", False), ("yes", False), (1, False)],
    )
    def test_dry_run_values(self, value: object, expected: bool) -> None:
        assert resolve_capabilities({"dryRun": value}).dry_run is expected


class TestResolution:
    """Resolution is reproducible and does not touch the caller's map."""

    def test_idempotent(self) -> None:
        raw = {"bucketSize": "abc", "dryRun": "true", "testType": "T"}
        assert resolve_capabilities(raw) == resolve_capabilities(raw)

    def test_raw_map_not_mutated(self) -> None:
        raw = {"bucketSize": 0, "extra": 1}
        snapshot = dict(raw)
        resolve_capabilities(raw)
        assert raw == snapshot

    def test_resolved_is_frozen(self) -> None:
        caps = resolve_capabilities({})
        with pytest.raises(Exception):
            caps.bucket_size = 1  # type: ignore[misc]

    def test_role_of_type_name(self) -> None:
        caps = resolve_capabilities({"setType": "Suite"})
        assert caps.role_of("suite ") == "set"
        assert caps.role_of("Test Execution") == "execution"
        assert caps.role_of("Test Set") is None
        assert caps.role_of(None) is None
