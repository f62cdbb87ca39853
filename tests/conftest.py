"""
Root conftest.py - Shared Pytest fixtures.

Provides fixtures for:
- A scripted fake transport that records every command it is sent.
- Resolved capabilities.
- Canonical test cases with steps and correlation ids.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

import pytest

from xraysync.config.capabilities import Capabilities, resolve_capabilities
from xraysync.jira_client.commands import HttpCommand
from xraysync.jira_client.transport import TransportResult
from xraysync.model.canonical import (
    CanonicalTestCase,
    CanonicalTestStep,
    SessionState,
)


# ---------------------------------------------------------------------------
# Fake Transport
# ---------------------------------------------------------------------------


Responder = Callable[[HttpCommand], Optional[TransportResult]]


class FakeTransport:
    """
    Records sent commands and answers from a list of responders.

    Each responder receives the command and returns a TransportResult or
    None to defer to the next one. Unanswered commands succeed with ``{}``.
    """

    def __init__(self) -> None:
        self.sent: List[HttpCommand] = []
        self._responders: List[Responder] = []
        self._lock = threading.Lock()

    def respond(
        self,
        method: str,
        route_contains: str,
        payload: Any = None,
        *,
        ok: bool = True,
        status_code: int = 200,
    ) -> "FakeTransport":
        def responder(command: HttpCommand) -> Optional[TransportResult]:
            if command.method != method or route_contains not in command.route:
                return None
            if ok:
                return TransportResult(True, status_code, "OK", payload if payload is not None else {}, command)
            return TransportResult.failure(command, status_code, "Bad Request")

        self._responders.append(responder)
        return self

    def fail_when(self, predicate: Callable[[HttpCommand], bool]) -> "FakeTransport":
        def responder(command: HttpCommand) -> Optional[TransportResult]:
            if predicate(command):
                return TransportResult.failure(command, 500, "Internal Server Error")
            return None

        self._responders.append(responder)
        return self

    def send(self, command: HttpCommand) -> TransportResult:
        with self._lock:
            self.sent.append(command)
        for responder in self._responders:
            result = responder(command)
            if result is not None:
                return result
        return TransportResult(True, 200, "OK", {}, command)

    def sent_to(self, method: str, route_contains: str = "") -> List[HttpCommand]:
        return [
            c for c in self.sent
            if c.method == method and route_contains in c.route
        ]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


# ---------------------------------------------------------------------------
# Capability & Test Case Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def capabilities() -> Capabilities:
    return resolve_capabilities({"bucketSize": 3, "jiraApiVersion": "2"})


def make_test_case(
    steps: int = 3,
    *,
    key: str = "RA-101",
    outcome: Optional[str] = None,
    run_id: Optional[str] = "5001",
    execution_key: Optional[str] = "RA-200",
    with_runtime_ids: bool = True,
) -> CanonicalTestCase:
    """Build a test case with ``steps`` failed steps and correlation ids."""
    context: Dict[str, Any] = {
        "project-key": "RA",
        "runtimeid": run_id,
        "testRunKey": execution_key,
        "outcome": outcome,
    }
    test_case = CanonicalTestCase(
        key=key,
        scenario="Demo",
        iteration=1,
        environment="https://app.example.com",
        context=SessionState.from_mapping(context),
    )
    for index in range(steps):
        step = CanonicalTestStep(
            action=f"{index + 1}. do thing {index + 1}",
            expected_results=[f"thing {index + 1} done"],
            reason_phrase=f"step {index + 1} failed",
        )
        if with_runtime_ids:
            step.context.assign_runtime_id(str(9000 + index))
        test_case.steps.append(step)
    return test_case


@pytest.fixture
def test_case() -> CanonicalTestCase:
    return make_test_case()
