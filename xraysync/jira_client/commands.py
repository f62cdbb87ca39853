"""
HTTP command descriptors and Jira/Xray route templates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


XRAY_API_VERSION = "2.0"
XRAY_STEPS_API_VERSION = "1.0"

# Jira REST API (Server/DC and Cloud)
JIRA_ROUTES = {
    "create_issue": "/rest/api/{version}/issue",
    "issue": "/rest/api/{version}/issue/{issue}",
    "issue_comment": "/rest/api/{version}/issue/{issue}/comment",
    "search": "/rest/api/{version}/search?jql=key={key}",
    "issue_types": "/rest/api/{version}/issuetype",
    "transitions": "/rest/api/{version}/issue/{issue}/transitions",
}

# Xray (raven) REST API
XRAY_ROUTES = {
    "create_step": "/rest/raven/{version}/customFields/createStep?testId={issue_id}",
    "run_details": (
        "/rest/raven/{version}/api/testrun/"
        "?testExecIssueKey={execution_key}&testIssueKey={test_key}"
    ),
    "test_run": "/rest/raven/{version}/api/testrun/{run_id}",
    "attachment": "/rest/raven/{version}/api/testrun/{run_id}/step/{step_id}/attachment",
    "plan_executions": "/rest/raven/{version}/api/testplan/{plan_key}/testexecution",
    "run_defect": "/rest/raven/{version}/api/testrun/{run_id}/defect",
    "test_statuses": "/rest/raven/{version}/api/settings/teststatuses",
    "execute": "/rest/raven/{version}/testexec/{execution_key}/execute/{test_key}",
    "set_tests": "/rest/raven/{version}/api/testset/{key}/test",
    "plan_tests": "/rest/raven/{version}/api/testplan/{key}/test",
    "execution_tests": "/rest/raven/{version}/api/testexec/{key}/test",
}


@dataclass(frozen=True)
class HttpCommand:
    """
    Immutable, transport-agnostic description of one tracker call.

    Attributes:
        method: HTTP method (GET, POST, PUT).
        route: Fully resolved route, relative to the tracker base URL.
        body: JSON-serializable payload, or None.
        headers: Extra request headers.
    """

    method: str
    route: str
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def __str__(self) -> str:
        return f"{self.method} {self.route}"


def jira_route(name: str, version: str, **params: Any) -> str:
    return JIRA_ROUTES[name].format(version=version, **params)


def xray_route(name: str, version: str = XRAY_API_VERSION, **params: Any) -> str:
    return XRAY_ROUTES[name].format(version=version, **params)
