"""
Canonical Test Model.

Vendor-neutral in-memory representation of a test case and its steps, plus
the typed session state that threads tracker correlation ids (issue id,
run id, step runtime ids, execution key) between synchronization stages.

Session state is additive: a stage may add or overwrite its own keys but
never clears a value another stage wrote.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, List, Mapping, Optional

from loguru import logger


JIRA_EXAMPLES_LINK = (
    "https://developer.atlassian.com/server/jira/platform/jira-rest-api-examples/"
)


class ContextValidationError(ValueError):
    """Raised when a session state key required by an operation is absent."""

    def __init__(self, key: str, help_link: str = JIRA_EXAMPLES_LINK) -> None:
        super().__init__(
            f"Test case context must have a key [{key}] with a valid value. "
            f"Please check [{help_link}] for available values."
        )
        self.key = key
        self.help_link = help_link


# ---------------------------------------------------------------------------
# Session State
# ---------------------------------------------------------------------------


# canonical context key -> SessionState attribute
CONTEXT_KEYS: Dict[str, str] = {
    "issuetype-id": "issue_type_id",
    "project-key": "project_key",
    "jira-issue-id": "issue_id",
    "runtimeid": "run_id",
    "testRunKey": "execution_key",
    "testExecIssueId": "execution_id",
    "description": "description",
    "test-sets-custom-field": "test_sets_field",
    "test-plan-custom-field": "test_plan_field",
    "outcome": "outcome",
}


@dataclass
class SessionState:
    """
    Typed correlation state for one test case during one session.

    Attributes are addressable both by name and by their canonical context
    key (see ``CONTEXT_KEYS``). Unknown keys land in ``extras``.
    """

    issue_type_id: Optional[str] = None
    project_key: Optional[str] = None
    issue_id: Optional[str] = None
    run_id: Optional[str] = None
    execution_key: Optional[str] = None
    execution_id: Optional[str] = None
    description: Optional[str] = None
    test_sets_field: Optional[str] = None
    test_plan_field: Optional[str] = None
    outcome: Optional[str] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "SessionState":
        """Build session state from a plain context map."""
        state = cls()
        state.update(data or {})
        return state

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a value by canonical context key or attribute name."""
        name = CONTEXT_KEYS.get(key, key)
        if name in _STATE_FIELDS:
            value = getattr(self, name)
            return default if value is None else value
        return self.extras.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Write one key. ``None`` is ignored so existing values are kept."""
        if value is None:
            return
        name = CONTEXT_KEYS.get(key, key)
        if name in _STATE_FIELDS:
            setattr(self, name, value if name == "outcome" else str(value))
        else:
            self.extras[key] = value

    def update(self, data: Mapping[str, Any]) -> None:
        for key, value in data.items():
            self.set(key, value)

    def has(self, key: str) -> bool:
        value = self.get(key)
        return value is not None and value != ""

    def require(self, *keys: str) -> None:
        """
        Validate that every key is present with a non-empty value.

        Raises:
            ContextValidationError: Naming the first missing key.
        """
        for key in keys:
            if not self.has(key):
                raise ContextValidationError(key)

    def as_dict(self) -> Dict[str, Any]:
        data = {
            key: getattr(self, name)
            for key, name in CONTEXT_KEYS.items()
            if getattr(self, name) is not None
        }
        data.update(self.extras)
        return data


_STATE_FIELDS = {f.name for f in fields(SessionState)} - {"extras"}


@dataclass
class StepState:
    """Per-step correlation state; the runtime id is write-once."""

    test_step: Optional[Dict[str, Any]] = None
    actual_result_written: bool = False
    extras: Dict[str, Any] = field(default_factory=dict)
    _runtime_id: Optional[str] = field(default=None, repr=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    @property
    def runtime_id(self) -> Optional[str]:
        return self._runtime_id

    def assign_runtime_id(self, runtime_id: Any) -> bool:
        """
        Record the tracker-assigned runtime id for this step.

        Args:
            runtime_id: Identifier returned by the tracker.

        Returns:
            True if the id is now set to ``runtime_id``, False if a different
            id was already recorded and the write was refused.
        """
        if runtime_id is None or str(runtime_id) == "":
            return False
        value = str(runtime_id)
        with self._lock:
            if self._runtime_id is None:
                self._runtime_id = value
                return True
            if self._runtime_id != value:
                logger.warning(
                    f"Refusing to replace step runtime id {self._runtime_id} "
                    f"with {value}"
                )
                return False
            return True


# ---------------------------------------------------------------------------
# Test Case & Steps
# ---------------------------------------------------------------------------


@dataclass
class StepException:
    """Exception details captured when a step failed."""

    class_name: str = ""
    message: str = ""
    method: str = ""
    type: str = ""


@dataclass
class CanonicalTestStep:
    """A single test step. Its position in the test case is its identity."""

    action: str = ""
    expected_results: List[str] = field(default_factory=list)
    actual: bool = False
    reason_phrase: str = ""
    exception: Optional[StepException] = None
    evidence: List[str] = field(default_factory=list)
    context: StepState = field(default_factory=StepState)

    @property
    def runtime_id(self) -> Optional[str]:
        return self.context.runtime_id


@dataclass
class CanonicalTestCase:
    """
    Vendor-neutral test case handed in and back by the automation engine.

    Attributes:
        key: Tracker issue key; empty until the tracker assigns one.
        scenario: Free-text summary.
        priority: ``"{id} - {name}"`` when known, else empty.
        steps: Ordered steps.
        test_suites: Test set/plan keys to associate, without duplicates.
        test_plans: Test plans the issue is associated with on the tracker.
        iteration: Iteration number of the run that produced the outcome.
        actual: A test-level actual result has already been recorded.
        inconclusive: No pass/fail determination could be made.
        environment: Application under test, reported in failure comments.
        link: Tracker link to the issue.
        defects: Bug keys to link to the execution run.
        context: Typed session state.
    """

    key: str = ""
    scenario: str = ""
    priority: str = ""
    steps: List[CanonicalTestStep] = field(default_factory=list)
    test_suites: List[str] = field(default_factory=list)
    test_plans: List[str] = field(default_factory=list)
    iteration: int = 0
    actual: bool = False
    inconclusive: bool = False
    environment: str = ""
    link: str = ""
    defects: List[str] = field(default_factory=list)
    context: SessionState = field(default_factory=SessionState)

    def __post_init__(self) -> None:
        self.test_suites = _unique(self.test_suites)
        self.test_plans = _unique(self.test_plans)

    @property
    def outcome(self) -> str:
        return str(self.context.outcome or "").upper()

    def add_test_suites(self, suites: Iterable[str]) -> None:
        self.test_suites = _unique(list(self.test_suites) + list(suites))

    def add_test_plans(self, plans: Iterable[str]) -> None:
        self.test_plans = _unique(list(self.test_plans) + list(plans))


@dataclass
class CanonicalTestRun:
    """
    A test execution issue and the test cases it runs.

    Attributes:
        title: Execution summary.
        key: Execution issue key; empty until created.
        link: Tracker link to the execution issue.
        issue_id: Execution issue id.
        test_cases: Test cases on the execution. Data-driven tests appear
            once per iteration under the same key.
    """

    title: str = ""
    key: str = ""
    link: str = ""
    issue_id: str = ""
    test_cases: List[CanonicalTestCase] = field(default_factory=list)

    @property
    def test_keys(self) -> List[str]:
        return _unique(tc.key for tc in self.test_cases)

    @property
    def test_plans(self) -> List[str]:
        return _unique(plan for tc in self.test_cases for plan in tc.test_plans)


def _unique(values: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen
