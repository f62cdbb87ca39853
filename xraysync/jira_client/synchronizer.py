"""
Xray Synchronizer.

Session-level orchestration: creates and updates test issues and their
steps, loads test cases (expanding sets, plans and executions into their
tests), creates test executions and loads their run identity, propagates
results, and tears a finished run down (re-propagation, plan association,
closing transition). Mapping and command construction live in the
response_mapper and command_builder modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from loguru import logger

from xraysync.config.capabilities import Capabilities
from xraysync.jira_client.command_builder import (
    action_signature,
    build_add_issue_comment,
    build_add_tests_to_execution,
    build_associate_executions,
    build_create_test_execution,
    build_create_test_issue,
    build_create_test_steps,
    build_get_issue,
    build_get_issue_types,
    build_get_member_tests,
    build_get_run_details,
    build_get_test_statuses,
    build_get_transitions,
    build_set_test_run_status,
    build_transition,
    build_update_test_issue,
)
from xraysync.jira_client.coordinator import BucketedCoordinator, send_commands
from xraysync.jira_client.propagator import PropagationReport, ResultPropagator
from xraysync.jira_client.response_mapper import (
    NOT_FOUND,
    MemberTest,
    apply_run_details,
    find_issue_type_id,
    find_status_id,
    find_transition_id,
    issue_type_name,
    parse_created_issue,
    parse_member_tests,
    parse_run_details,
    parse_search_result,
    select_issue,
)
from xraysync.model.canonical import CanonicalTestCase, CanonicalTestRun, SessionState


LOADABLE_ROLES = ("test", "set", "plan", "execution")
PENDING_RUN_STATUSES = {"TODO", "EXECUTING"}
CLOSED_STATUS = "Closed"
CLOSED_RESOLUTION = "Done"


@dataclass
class TeardownReport:
    """What closing a test run re-sent to the tracker."""

    key: str
    dry_run: bool = False
    updated: List[str] = field(default_factory=list)
    aligned: List[str] = field(default_factory=list)
    plans: int = 0
    closed: bool = False


class XraySynchronizer:
    """
    Synchronizes canonical test cases with Jira/Xray for one session.

    Usage::

        sync = XraySynchronizer(transport, resolve_capabilities(raw), "RA")
        test_cases = sync.get_test_cases("RA-10")
        test_run = sync.create_test_run(test_cases, "Nightly")
        for test_case in test_run.test_cases:
            sync.update_test_result(test_case)
        sync.run_teardown(test_run)

    Args:
        transport: Object with ``send(HttpCommand) -> TransportResult``.
        capabilities: Resolved session capabilities.
        project_key: Jira project the test issues belong to.
        context: Session-wide context (e.g., custom field ids) applied to
            every test case this synchronizer creates or loads, without
            overriding values the test case already has.
    """

    def __init__(
        self,
        transport: Any,
        capabilities: Capabilities,
        project_key: str = "",
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._transport = transport
        self._capabilities = capabilities
        self._project_key = project_key or getattr(
            getattr(transport, "config", None), "project_key", ""
        )
        self._context: Dict[str, Any] = dict(context or {})
        self._coordinator = BucketedCoordinator(capabilities.bucket_size)
        self._propagator = ResultPropagator(transport, capabilities)

    @property
    def capabilities(self) -> Capabilities:
        return self._capabilities

    def _apply_session_context(self, state: SessionState) -> SessionState:
        for key, value in self._context.items():
            if not state.has(key):
                state.set(key, value)
        return state

    # ------------------------------------------------------------------
    # Test cases
    # ------------------------------------------------------------------

    def create_test_case(self, test_case: CanonicalTestCase) -> CanonicalTestCase:
        """
        Create the test issue, then its steps in step order.

        The issue type id is looked up when the context lacks one. Steps are
        sent one at a time because the tracker numbers them by arrival. A dry
        run validates the project key and sends nothing.

        Returns:
            The test case; ``key`` stays empty if the issue was not created.

        Raises:
            ContextValidationError: If required context is still missing.
        """
        context = self._apply_session_context(test_case.context)
        context.set("project-key", context.project_key or self._project_key or None)

        if self._capabilities.dry_run:
            context.require("project-key")
            logger.info(f"Dry run - not creating test issue '{test_case.scenario}'")
            return test_case

        if not context.has("issuetype-id"):
            type_id = self.get_issue_type_id(self._capabilities.test_type)
            if not type_id:
                logger.error(
                    f"Cannot create test issue '{test_case.scenario}': issue type "
                    f"'{self._capabilities.test_type}' could not be resolved"
                )
                return test_case
            context.set("issuetype-id", type_id)

        command = build_create_test_issue(test_case, self._capabilities)
        result = self._transport.send(command)
        created = parse_created_issue(result.payload) if result.ok else NOT_FOUND
        if created is NOT_FOUND:
            logger.error(f"Failed to create test issue '{test_case.scenario}': {result.reason}")
            return test_case

        test_case.key = created.key
        test_case.link = created.link or test_case.link
        context.set("jira-issue-id", created.id)
        logger.info(f"Test issue created: {created.key} (id={created.id})")

        if test_case.steps:
            outcome = send_commands(
                self._transport,
                build_create_test_steps(test_case),
                bucket_size=1,
                name=f"{created.key}:steps",
            )
            logger.info(
                f"Created {outcome.success_count}/{len(test_case.steps)} steps "
                f"for {created.key}"
            )
        return test_case

    def update_test_case(self, test_case: CanonicalTestCase) -> bool:
        """
        Update an existing test issue's fields and stamp it with a comment.

        Returns:
            True if the issue fields were updated.
        """
        if self._capabilities.dry_run:
            logger.info(f"Dry run - not updating test issue {test_case.key}")
            return False

        self._apply_session_context(test_case.context)
        result = self._transport.send(build_update_test_issue(test_case, self._capabilities))
        if not result.ok:
            logger.error(f"Failed to update test issue {test_case.key}: {result.reason}")
            return False

        self._transport.send(
            build_add_issue_comment(test_case.key, action_signature("updated"), self._capabilities)
        )
        logger.info(f"Test issue updated: {test_case.key}")
        return True

    def get_test_cases(self, *keys: str) -> List[CanonicalTestCase]:
        """
        Fetch test cases by issue key, routed by issue type.

        A test key gives its own test case. A test set or test execution key
        gives its member tests; a test plan key gives its tests and the tests
        of its sets. Keys that are not found, or whose type is none of the
        configured test, set, plan or execution types, are dropped. An issue
        without a type is read as a test.

        Returns:
            Test cases unique by key, in the order their keys were given.
        """
        outcome = self._coordinator.run(
            keys, lambda key: self._collect(key, LOADABLE_ROLES), name="get-test-cases"
        )

        test_cases: List[CanonicalTestCase] = []
        seen = set()
        for item_result in outcome.results:
            if not item_result.value:
                logger.warning(f"No test cases found for {item_result.item}")
                continue
            for test_case in item_result.value:
                if test_case.key not in seen:
                    seen.add(test_case.key)
                    test_cases.append(test_case)
        return test_cases

    def _collect(self, key: str, roles: Sequence[str]) -> List[CanonicalTestCase]:
        result = self._transport.send(build_get_issue(key, self._capabilities))
        issue = select_issue(result.payload, key) if result.ok else NOT_FOUND
        if issue is NOT_FOUND:
            logger.warning(f"Issue {key} not found")
            return []

        type_name = issue_type_name(issue)
        role = self._capabilities.role_of(type_name) if type_name else "test"
        if role not in roles:
            logger.error(
                f"Cannot load tests from {key}: issue type '{type_name}' is not loadable here"
            )
            return []

        if role == "test":
            into = CanonicalTestCase(context=self._apply_session_context(SessionState()))
            test_case = parse_search_result(result.payload, key, into)
            return [test_case] if test_case else []

        members = self.get_member_tests(role, key)
        logger.debug(f"Listed {len(members)} member tests of {role} {key}")
        member_roles = ("test", "set") if role == "plan" else ("test",)
        outcome = self._coordinator.run(
            [m.key for m in members],
            lambda member: self._collect(member, member_roles),
            name=f"{key}:members",
        )
        return [tc for item_result in outcome.results for tc in item_result.value or []]

    def get_member_tests(self, role: str, key: str) -> List[MemberTest]:
        """List the tests of a set, plan or execution; empty on failure."""
        result = self._transport.send(build_get_member_tests(role, key))
        if not result.ok:
            logger.warning(f"Failed to list tests of {key}: {result.reason}")
            return []
        return parse_member_tests(result.payload)

    def get_issue_type_id(self, name: str) -> str:
        """Resolve an issue type name to its id; empty string when unknown."""
        result = self._transport.send(build_get_issue_types(self._capabilities))
        type_id = find_issue_type_id(result.payload, name) if result.ok else NOT_FOUND
        if type_id is NOT_FOUND:
            logger.warning(f"Issue type '{name}' not found")
            return ""
        return type_id

    # ------------------------------------------------------------------
    # Test runs
    # ------------------------------------------------------------------

    def create_test_run(
        self, test_cases: Iterable[CanonicalTestCase], title: str
    ) -> CanonicalTestRun:
        """
        Create a test execution for ``test_cases`` and load their runtime keys.

        The execution issue is created first, then the tests are added to it,
        then each test case's run id and step runtime ids are loaded.

        Returns:
            The test run; ``key`` stays empty on a dry run or if the
            execution could not be created.
        """
        test_run = CanonicalTestRun(title=title, test_cases=list(test_cases))
        if self._capabilities.dry_run:
            logger.info(f"Dry run - not creating test execution '{title}'")
            return test_run

        command = build_create_test_execution(test_run, self._project_key, self._capabilities)
        result = self._transport.send(command)
        created = parse_created_issue(result.payload) if result.ok else NOT_FOUND
        if created is NOT_FOUND:
            logger.error(f"Failed to create test execution '{title}': {result.reason}")
            return test_run

        test_run.key = created.key
        test_run.link = created.link
        test_run.issue_id = created.id
        logger.info(f"Test execution created: {created.key} (id={created.id})")
        self._transport.send(
            build_add_issue_comment(created.key, action_signature("created"), self._capabilities)
        )

        keys = test_run.test_keys
        if keys:
            result = self._transport.send(build_add_tests_to_execution(created.key, keys))
            if not result.ok:
                logger.error(f"Failed to add {len(keys)} tests to {created.key}: {result.reason}")

        for test_case in test_run.test_cases:
            test_case.context.set("testExecIssueId", created.id)
        outcome = self._coordinator.run(
            test_run.test_cases,
            lambda tc: self.load_runtime_keys(tc, created.key),
            check=bool,
            name=f"{created.key}:runtime-keys",
        )
        logger.info(
            f"Runtime keys loaded for {outcome.success_count}/"
            f"{len(test_run.test_cases)} test cases on {created.key}"
        )
        return test_run

    def load_runtime_keys(self, test_case: CanonicalTestCase, execution_key: str) -> bool:
        """
        Load the run id and step runtime ids of a test on an execution.

        Returns:
            True if run details were found and applied.
        """
        test_case.context.set("testRunKey", execution_key)
        result = self._transport.send(build_get_run_details(test_case))
        details = parse_run_details(result.payload)
        if details is NOT_FOUND:
            logger.warning(
                f"No test run for {test_case.key} on {execution_key}: {result.reason}"
            )
            return False

        assigned = apply_run_details(test_case, details, execution_key)
        logger.info(
            f"Runtime keys loaded for {test_case.key} on {execution_key}: "
            f"run={details.run_id}, steps={assigned}"
        )
        return True

    def update_test_result(self, test_case: CanonicalTestCase) -> PropagationReport:
        return self._propagator.propagate(test_case)

    def set_run_status(self, test_case: CanonicalTestCase, status: str) -> bool:
        """Set the test's status on its execution by status name. Best effort."""
        if self._capabilities.dry_run:
            return False

        result = self._transport.send(build_get_test_statuses())
        status_id = find_status_id(result.payload, status) if result.ok else NOT_FOUND
        if status_id is NOT_FOUND:
            logger.warning(f"Test status '{status}' not found")
            return False

        result = self._transport.send(build_set_test_run_status(test_case, status_id))
        return result.ok

    def associate_with_plans(
        self, execution_key: str, plans: Optional[Iterable[str]] = None
    ) -> int:
        """
        Associate an execution with the configured test plans plus ``plans``.

        Returns:
            Number of plans the execution was associated with.
        """
        keys = list(self._capabilities.test_plans)
        keys.extend(p for p in (plans or []) if p not in keys)
        if not keys or self._capabilities.dry_run:
            return 0

        outcome = send_commands(
            self._transport,
            [build_associate_executions(plan, [execution_key]) for plan in keys],
            self._capabilities.bucket_size,
            name=f"{execution_key}:plans",
        )
        logger.info(
            f"Execution {execution_key} associated with "
            f"{outcome.success_count}/{len(keys)} test plans"
        )
        return outcome.success_count

    def transition_issue(
        self, key: str, to_status: str, resolution: str = "", comment: str = ""
    ) -> bool:
        """Move an issue to ``to_status`` if its workflow offers that transition."""
        result = self._transport.send(build_get_transitions(key, self._capabilities))
        transition_id = find_transition_id(result.payload, to_status) if result.ok else NOT_FOUND
        if transition_id is NOT_FOUND:
            logger.info(f"No transition to '{to_status}' available for {key}")
            return False

        command = build_transition(
            key, transition_id, self._capabilities, resolution=resolution, comment=comment
        )
        return self._transport.send(command).ok

    def run_teardown(self, test_run: CanonicalTestRun) -> TeardownReport:
        """
        Complete a finished test run on the tracker.

        1. Re-propagate results of tests the execution still lists as TODO
           or EXECUTING (inconclusive tests excluded).
        2. Align data-driven tests: a test run in several iterations is
           FAIL if any iteration failed, else PASS.
        3. Propagate inconclusive tests.
        4. Associate the execution with the configured and the tests' plans.
        5. Close the execution issue.

        Returns:
            TeardownReport; nothing is sent on a dry run.
        """
        report = TeardownReport(key=test_run.key, dry_run=self._capabilities.dry_run)
        if report.dry_run or not test_run.key:
            logger.info(f"Skipping teardown of test run '{test_run.title}'")
            return report

        pending = {
            m.key for m in self.get_member_tests("execution", test_run.key)
            if m.status.upper() in PENDING_RUN_STATUSES
        }
        for test_case in test_run.test_cases:
            if test_case.key in pending and not test_case.inconclusive:
                self.update_test_result(test_case)
                report.updated.append(test_case.key)

        for key in _unique_keys(tc.key for tc in test_run.test_cases if tc.iteration > 0):
            iterations = [tc for tc in test_run.test_cases if tc.key == key]
            failed = [tc for tc in iterations if not tc.actual]
            outcome, representative = ("FAIL", failed[0]) if failed else ("PASS", iterations[0])
            if self.set_run_status(representative, outcome):
                report.aligned.append(key)

        for test_case in test_run.test_cases:
            if test_case.inconclusive:
                self.update_test_result(test_case)

        report.plans = self.associate_with_plans(test_run.key, test_run.test_plans)
        report.closed = self.transition_issue(
            test_run.key, CLOSED_STATUS, CLOSED_RESOLUTION, action_signature("closed")
        )
        logger.info(
            f"Test run {test_run.key} torn down: {len(report.updated)} re-updated, "
            f"{len(report.aligned)} aligned, {report.plans} plans, closed={report.closed}"
        )
        return report


def _unique_keys(keys: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(k for k in keys if k))
