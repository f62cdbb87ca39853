"""
Command Builder.

Pure functions that turn a canonical test case (plus resolved capabilities)
into immutable HttpCommand descriptors. Each function validates the session
state keys it needs before building anything and raises
ContextValidationError naming the first missing key.

No function here performs I/O.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from xraysync.config.capabilities import Capabilities
from xraysync.jira_client.commands import (
    XRAY_STEPS_API_VERSION,
    HttpCommand,
    jira_route,
    xray_route,
)
from xraysync.model.canonical import (
    CanonicalTestCase,
    CanonicalTestRun,
    CanonicalTestStep,
    ContextValidationError,
)


ORDINAL_PREFIX = re.compile(r"^\d+\.\s+")

EXCEPTION_TEMPLATE = (
    "Class:   {class_name}  \n"
    "Message: {message}  \n"
    "Method:  {method}  \n"
    "Type:    {type}"
)

TERMINAL_STATUSES = {"PASS", "PASSED", "FAIL", "FAILED"}


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def strip_ordinal(text: str) -> str:
    """Remove a leading ordinal such as ``"1. "`` from step text."""
    return ORDINAL_PREFIX.sub("", text or "", count=1)


def format_actual_result(step: CanonicalTestStep) -> str:
    """
    Render the actual-result text of a step.

    Exception details use a fixed multi-line template; otherwise the step's
    reason phrase is used. The text is wrapped in a Jira ``{noformat}`` block.
    """
    if step.exception is not None:
        text = EXCEPTION_TEMPLATE.format(
            class_name=step.exception.class_name,
            message=step.exception.message,
            method=step.exception.method,
            type=step.exception.type,
        )
    else:
        text = step.reason_phrase or ""
    return "{noformat}" + text + "{noformat}"


def action_signature(action: str, timestamp: Optional[datetime] = None) -> str:
    """Comment line stamping an automated change, e.g. ``"created"``."""
    timestamp = timestamp or datetime.now(timezone.utc)
    return f"*{timestamp.strftime('%Y-%m-%d %H:%M:%S')} UTC* Issue {action} by automation."


def _require_key(test_case: CanonicalTestCase) -> str:
    if not test_case.key:
        raise ContextValidationError("key")
    return test_case.key


def _require_step_runtime_id(test_case: CanonicalTestCase, index: int) -> str:
    try:
        runtime_id = test_case.steps[index].runtime_id
    except IndexError:
        runtime_id = None
    if not runtime_id:
        raise ContextValidationError(f"steps[{index}].runtimeid")
    return runtime_id


# ---------------------------------------------------------------------------
# Test issue & steps
# ---------------------------------------------------------------------------


def build_create_test_issue(
    test_case: CanonicalTestCase, capabilities: Capabilities
) -> HttpCommand:
    """
    Build the Jira create-issue command for a test case.

    Requires ``issuetype-id`` and ``project-key``. The description, test-set
    custom field and test-plan custom field are added only when present.

    Raises:
        ContextValidationError: If a required key is missing.
    """
    context = test_case.context
    context.require("issuetype-id", "project-key")

    fields: Dict[str, Any] = {"summary": test_case.scenario}
    if context.description:
        fields["description"] = context.description
    fields["issuetype"] = {"id": context.issue_type_id}
    fields["project"] = {"key": context.project_key}

    if context.test_sets_field and test_case.test_suites:
        fields[context.test_sets_field] = list(test_case.test_suites)
    if context.test_plan_field and capabilities.test_plans:
        fields[context.test_plan_field] = list(capabilities.test_plans)

    return HttpCommand(
        method="POST",
        route=jira_route("create_issue", capabilities.jira_api_version),
        body={"fields": fields},
    )


def build_update_test_issue(
    test_case: CanonicalTestCase, capabilities: Capabilities
) -> HttpCommand:
    """
    Build the field update for an existing test issue.

    Summary is always sent; description and test sets only when present.
    Steps are not touched.
    """
    key = _require_key(test_case)
    context = test_case.context

    fields: Dict[str, Any] = {"summary": test_case.scenario}
    if context.description:
        fields["description"] = context.description
    if context.test_sets_field and test_case.test_suites:
        fields[context.test_sets_field] = list(test_case.test_suites)

    return HttpCommand(
        method="PUT",
        route=jira_route("issue", capabilities.jira_api_version, issue=key),
        body={"fields": fields},
    )


def build_create_test_steps(test_case: CanonicalTestCase) -> List[HttpCommand]:
    """
    Build one create-step command per step, in step order.

    Requires ``jira-issue-id``. Bodies carry the zero-based ordinal index;
    leading ordinals are stripped from the action text because the tracker
    numbers steps itself.
    """
    test_case.context.require("jira-issue-id")
    route = xray_route(
        "create_step",
        version=XRAY_STEPS_API_VERSION,
        issue_id=test_case.context.issue_id,
    )

    return [
        HttpCommand(
            method="POST",
            route=route,
            body={
                "index": index,
                "action": strip_ordinal(step.action),
                "result": "\n".join(step.expected_results),
            },
        )
        for index, step in enumerate(test_case.steps)
    ]


# ---------------------------------------------------------------------------
# Test run
# ---------------------------------------------------------------------------


def build_get_run_details(test_case: CanonicalTestCase) -> HttpCommand:
    """Requires ``testRunKey`` (execution key) and the test case key."""
    test_case.context.require("testRunKey")
    key = _require_key(test_case)
    return HttpCommand(
        method="GET",
        route=xray_route(
            "run_details",
            execution_key=test_case.context.execution_key,
            test_key=key,
        ),
    )


def build_update_run(test_case: CanonicalTestCase, body: Any) -> HttpCommand:
    test_case.context.require("runtimeid")
    return HttpCommand(
        method="PUT",
        route=xray_route("test_run", run_id=test_case.context.run_id),
        body=body,
    )


def build_set_actual_result(test_case: CanonicalTestCase, index: int) -> HttpCommand:
    """
    Build the actual-result update for the step at ``index``.

    Requires ``runtimeid`` and the step's runtime id.
    """
    test_case.context.require("runtimeid")
    runtime_id = _require_step_runtime_id(test_case, index)
    step = test_case.steps[index]
    return build_update_run(
        test_case,
        {"steps": [{"id": runtime_id, "actualResult": format_actual_result(step)}]},
    )


def build_update_steps_outcome(
    test_case: CanonicalTestCase, capabilities: Capabilities
) -> HttpCommand:
    """
    Build a run update that sets every step's status in one call.

    Step status is PASS/FAIL from the step's ``actual`` flag, unless the run
    outcome is neither terminal nor the inconclusive status, in which case
    the outcome itself is applied to every step. Steps without a runtime id
    are left out. Actual-result text is written separately, per step.
    """
    test_case.context.require("runtimeid")
    outcome = test_case.outcome
    inconclusive = capabilities.inconclusive_status.upper()
    use_outcome = bool(outcome) and outcome not in TERMINAL_STATUSES | {inconclusive}

    steps = []
    for step in test_case.steps:
        if not step.runtime_id:
            continue
        if use_outcome:
            status = outcome
        else:
            status = "PASS" if step.actual else "FAIL"
        steps.append({"id": step.runtime_id, "status": status})

    return build_update_run(test_case, {"steps": steps})


def build_attach_evidence(
    test_case: CanonicalTestCase, index: int, evidence: Dict[str, Any]
) -> HttpCommand:
    """Requires ``runtimeid`` and the runtime id of the step at ``index``."""
    test_case.context.require("runtimeid")
    step_id = _require_step_runtime_id(test_case, index)
    return HttpCommand(
        method="POST",
        route=xray_route(
            "attachment", run_id=test_case.context.run_id, step_id=step_id
        ),
        body=evidence,
    )


def build_add_defect(test_case: CanonicalTestCase, bug_key: str) -> HttpCommand:
    test_case.context.require("runtimeid")
    return HttpCommand(
        method="POST",
        route=xray_route("run_defect", run_id=test_case.context.run_id),
        body=[bug_key],
    )


def build_set_run_comment(test_case: CanonicalTestCase, comment: str) -> HttpCommand:
    return build_update_run(test_case, {"comment": comment})


def build_set_test_run_status(
    test_case: CanonicalTestCase, status_id: int
) -> HttpCommand:
    """Set a test's status on an execution directly, without step results."""
    test_case.context.require("testRunKey")
    key = _require_key(test_case)
    return HttpCommand(
        method="POST",
        route=xray_route(
            "execute",
            version=XRAY_STEPS_API_VERSION,
            execution_key=test_case.context.execution_key,
            test_key=key,
        ),
        body=status_id,
    )


def build_get_test_statuses() -> HttpCommand:
    return HttpCommand(method="GET", route=xray_route("test_statuses"))


# ---------------------------------------------------------------------------
# Executions & members
# ---------------------------------------------------------------------------


MEMBER_ROUTES = {
    "set": "set_tests",
    "plan": "plan_tests",
    "execution": "execution_tests",
}


def build_create_test_execution(
    test_run: CanonicalTestRun, project_key: str, capabilities: Capabilities
) -> HttpCommand:
    """
    Build the create-issue command for a test execution.

    The issue type is given by name (``executionType``); tests are added
    with a separate call once the execution key is known.
    """
    if not project_key:
        raise ContextValidationError("project-key")
    return HttpCommand(
        method="POST",
        route=jira_route("create_issue", capabilities.jira_api_version),
        body={
            "fields": {
                "summary": test_run.title,
                "project": {"key": project_key},
                "issuetype": {"name": capabilities.execution_type},
            }
        },
    )


def build_add_tests_to_execution(
    execution_key: str, test_keys: Iterable[str]
) -> HttpCommand:
    return HttpCommand(
        method="POST",
        route=xray_route(
            "execution_tests", version=XRAY_STEPS_API_VERSION, key=execution_key
        ),
        body={"add": list(test_keys)},
    )


def build_get_member_tests(role: str, key: str) -> HttpCommand:
    """
    List the tests of a test set, test plan or test execution.

    Raises:
        ValueError: If ``role`` has no member tests.
    """
    if role not in MEMBER_ROUTES:
        raise ValueError(f"Issues of role '{role}' have no member tests")
    return HttpCommand(method="GET", route=xray_route(MEMBER_ROUTES[role], key=key))


def build_get_transitions(issue: str, capabilities: Capabilities) -> HttpCommand:
    return HttpCommand(
        method="GET",
        route=jira_route("transitions", capabilities.jira_api_version, issue=issue),
    )


def build_transition(
    issue: str,
    transition_id: str,
    capabilities: Capabilities,
    *,
    resolution: str = "",
    comment: str = "",
) -> HttpCommand:
    """Move an issue through a workflow transition, optionally resolving and commenting."""
    body: Dict[str, Any] = {"transition": {"id": transition_id}}
    if comment:
        body["update"] = {"comment": [{"add": {"body": comment}}]}
    if resolution:
        body["fields"] = {"resolution": {"name": resolution}}
    return HttpCommand(
        method="POST",
        route=jira_route("transitions", capabilities.jira_api_version, issue=issue),
        body=body,
    )


# ---------------------------------------------------------------------------
# Plans, issues & comments
# ---------------------------------------------------------------------------


def build_associate_executions(
    plan_key: str, execution_keys: Iterable[str]
) -> HttpCommand:
    return HttpCommand(
        method="POST",
        route=xray_route("plan_executions", plan_key=plan_key),
        body={"add": list(execution_keys)},
    )


def build_add_issue_comment(
    issue: str, comment: str, capabilities: Capabilities
) -> HttpCommand:
    return HttpCommand(
        method="POST",
        route=jira_route(
            "issue_comment", capabilities.jira_api_version, issue=issue
        ),
        body={"body": comment},
    )


def build_get_issue(key: str, capabilities: Capabilities) -> HttpCommand:
    return HttpCommand(
        method="GET",
        route=jira_route("search", capabilities.jira_api_version, key=key),
    )


def build_get_issue_types(capabilities: Capabilities) -> HttpCommand:
    return HttpCommand(
        method="GET",
        route=jira_route("issue_types", capabilities.jira_api_version),
    )


def build_inconclusive_comment(
    test_case: CanonicalTestCase, capabilities: Capabilities
) -> Optional[str]:
    """Explanatory comment for an inconclusive iteration, or None if not inconclusive."""
    if not test_case.inconclusive:
        return None
    return (
        f"Test iteration {test_case.iteration} on test run "
        f"[{test_case.key}] marked with default status "
        f"[{capabilities.inconclusive_status}]. "
        f"Reason: test result is inconclusive."
    )


def build_fail_comment(
    test_case: CanonicalTestCase, timestamp: Optional[datetime] = None
) -> str:
    """
    Compose the run comment for a failed iteration.

    Lists the 1-based numbers of steps without a recorded actual result.
    Returns an empty string when every step has one.
    """
    failed = [str(i + 1) for i, step in enumerate(test_case.steps) if not step.actual]
    if not failed:
        return ""

    timestamp = timestamp or datetime.now(timezone.utc)
    return (
        "----\r\n"
        f"*{timestamp.strftime('%Y-%m-%d %H:%M:%S')} UTC* \r\n"
        f"*Failed On Iteration:* {test_case.iteration}\r\n"
        f"*On Steps:* {', '.join(failed)}\r\n"
        f"*On Application:* {test_case.environment}\r\n"
    )
