"""
Response Mapper.

Pure functions that turn Jira/Xray JSON payloads into canonical model
values. Lookups never raise: anything missing from the token tree comes
back as the ``NOT_FOUND`` sentinel, so callers make one decision (default
or fatal) instead of handling a different failure shape per field.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from loguru import logger

from xraysync.jira_client.autolink import normalize_auto_link
from xraysync.model.canonical import CanonicalTestCase, CanonicalTestStep


class _NotFound:
    """Falsy singleton returned by every lookup that finds nothing."""

    _instance: Optional["_NotFound"] = None

    def __new__(cls) -> "_NotFound":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _NotFound()

_INDEXED_PART = re.compile(r"^(?P<name>[^\[]*)\[(?P<index>-?\d+)\]$")
_DOUBLE_BRACES = re.compile(r"{{(?!\$).*?}}")


@dataclass
class CreatedIssue:
    id: str
    key: str
    link: str = ""


@dataclass
class RunDetails:
    """Execution-run identity and the tracker step ids, in step order."""

    run_id: str
    step_ids: List[str] = field(default_factory=list)
    status: str = ""


# ---------------------------------------------------------------------------
# Token selection
# ---------------------------------------------------------------------------


def select_token(token: Any, path: str) -> Any:
    """
    Select a value from a JSON token tree.

    Supports dotted names (``fields.summary``), list indices
    (``issues[0].key``) and a leading ``..name`` for recursive descent to
    the first ``name`` found anywhere in the tree.

    Args:
        token: Parsed JSON (dicts and lists).
        path: Selection path.

    Returns:
        The selected value, or NOT_FOUND.
    """
    if token is None or token is NOT_FOUND:
        return NOT_FOUND

    if path.startswith(".."):
        name, _, rest = path[2:].partition(".")
        found = _descend(token, name)
        if found is NOT_FOUND or not rest:
            return found
        return select_token(found, rest)

    current = token
    for part in path.split("."):
        if not part:
            continue
        match = _INDEXED_PART.match(part)
        name, index = (match.group("name"), int(match.group("index"))) if match else (part, None)

        if name:
            if not isinstance(current, dict) or name not in current:
                return NOT_FOUND
            current = current[name]
        if index is not None:
            if not isinstance(current, list):
                return NOT_FOUND
            try:
                current = current[index]
            except IndexError:
                return NOT_FOUND
        if current is None:
            return NOT_FOUND
    return current


def _descend(token: Any, name: str) -> Any:
    if isinstance(token, dict):
        if name in token and token[name] is not None:
            return token[name]
        children: Iterable[Any] = token.values()
    elif isinstance(token, list):
        children = token
    else:
        return NOT_FOUND

    for child in children:
        found = _descend(child, name)
        if found is not NOT_FOUND:
            return found
    return NOT_FOUND


def _text(token: Any, path: str) -> str:
    value = select_token(token, path)
    return "" if value is NOT_FOUND else str(value)


# ---------------------------------------------------------------------------
# Test cases
# ---------------------------------------------------------------------------


def parse_test_case(
    payload: Any, into: Optional[CanonicalTestCase] = None
) -> Union[CanonicalTestCase, _NotFound]:
    """
    Rebuild a canonical test case from a Jira issue payload.

    Values already on ``into`` are kept wherever the payload has nothing to
    say: priority is only replaced when ``fields.priority`` exists, and steps
    only when a ``steps`` collection is present.

    Args:
        payload: Jira issue JSON.
        into: Existing test case to enrich; a new one is created if None.

    Returns:
        The enriched test case, or NOT_FOUND if the payload is not an issue.
    """
    if not isinstance(payload, dict):
        return NOT_FOUND

    test_case = into if into is not None else CanonicalTestCase()
    test_case.context.set("testCase", payload)

    priority = _priority(payload)
    if priority:
        test_case.priority = priority

    test_case.key = _text(payload, "key") or test_case.key
    test_case.scenario = _text(payload, "fields.summary") or test_case.scenario
    test_case.link = _text(payload, "self") or test_case.link

    steps = select_token(payload, "..steps")
    if isinstance(steps, list):
        test_case.steps = [parse_test_step(step) for step in steps if isinstance(step, dict)]

    sets_field = test_case.context.test_sets_field
    if sets_field:
        test_case.add_test_suites(_issue_keys(select_token(payload, f"fields.{sets_field}")))

    plan_field = test_case.context.test_plan_field
    if plan_field:
        test_case.add_test_plans(_issue_keys(select_token(payload, f"fields.{plan_field}")))

    return test_case


def parse_test_step(token: Dict[str, Any]) -> CanonicalTestStep:
    """
    Parse one step in either the server (``fields.Action``) or the cloud
    (``action``/``result``) shape.
    """
    if isinstance(token.get("fields"), dict):
        action = _text(token, "fields.Action")
        expected = _text(token, "fields.Expected Result")
    else:
        action = _text(token, "action")
        expected = _text(token, "result")

    action = normalize_auto_link(_unescape(action))
    expected = normalize_auto_link(_unescape(expected))

    step = CanonicalTestStep(
        action=action,
        expected_results=[line.strip() for line in expected.splitlines() if line.strip()],
    )
    step.context.test_step = token
    return step


def select_issue(payload: Any, key: str = "") -> Any:
    """
    Pick the issue for ``key`` out of a Jira search response.

    Falls back to the first issue when none matches the key exactly. An
    empty or missing ``issues`` list is NOT_FOUND.
    """
    issues = select_token(payload, "issues")
    if not isinstance(issues, list) or not issues:
        logger.debug(f"No issues found for key '{key}'")
        return NOT_FOUND

    return next(
        (i for i in issues if isinstance(i, dict) and key and i.get("key") == key),
        issues[0],
    )


def parse_search_result(
    payload: Any, key: str = "", into: Optional[CanonicalTestCase] = None
) -> Union[CanonicalTestCase, _NotFound]:
    """
    Parse a Jira search response for one issue key.

    An empty or missing ``issues`` list is NOT_FOUND, never an empty test case.
    """
    issue = select_issue(payload, key)
    if issue is NOT_FOUND:
        return NOT_FOUND
    return parse_test_case(issue, into)


def issue_type_name(issue: Any) -> str:
    return _text(issue, "fields.issuetype.name")


def parse_created_issue(payload: Any) -> Union[CreatedIssue, _NotFound]:
    issue_id = select_token(payload, "id")
    key = select_token(payload, "key")
    if not issue_id or not key:
        return NOT_FOUND
    return CreatedIssue(id=str(issue_id), key=str(key), link=_text(payload, "self"))


# ---------------------------------------------------------------------------
# Test runs
# ---------------------------------------------------------------------------


def parse_run_details(payload: Any) -> Union[RunDetails, _NotFound]:
    """
    Parse a test-run response. An ``id`` of ``-1`` marks a failed call.
    """
    run_id = select_token(payload, "id")
    if run_id is NOT_FOUND or str(run_id) in ("", "-1"):
        return NOT_FOUND

    steps = select_token(payload, "steps")
    step_ids = []
    if isinstance(steps, list):
        step_ids = [str(s["id"]) for s in steps if isinstance(s, dict) and s.get("id") is not None]

    return RunDetails(run_id=str(run_id), step_ids=step_ids, status=_text(payload, "status"))


def apply_run_details(
    test_case: CanonicalTestCase, details: RunDetails, execution_key: str = ""
) -> int:
    """
    Write run identity into the test case session state.

    Step runtime ids are assigned by position and are write-once.

    Returns:
        Number of steps whose runtime id matches the run details.
    """
    test_case.context.set("runtimeid", details.run_id)
    test_case.context.set("testRunKey", execution_key or None)

    if len(details.step_ids) != len(test_case.steps):
        logger.warning(
            f"Run {details.run_id} has {len(details.step_ids)} steps, "
            f"test case {test_case.key} has {len(test_case.steps)}"
        )

    assigned = 0
    for step, step_id in zip(test_case.steps, details.step_ids):
        if step.context.assign_runtime_id(step_id):
            assigned += 1
    return assigned


# ---------------------------------------------------------------------------
# Members & transitions
# ---------------------------------------------------------------------------


@dataclass
class MemberTest:
    """A test listed on a set, plan or execution; status is only set on executions."""

    key: str
    status: str = ""


def parse_member_tests(payload: Any) -> List[MemberTest]:
    """
    Parse a raven member-tests response.

    Entries may be issue keys or objects with ``key`` (and ``status``);
    anything else is skipped.
    """
    if not isinstance(payload, list):
        return []
    members = []
    for entry in payload:
        if isinstance(entry, dict) and entry.get("key"):
            members.append(MemberTest(str(entry["key"]), str(entry.get("status") or "")))
        elif isinstance(entry, str) and entry:
            members.append(MemberTest(entry))
    return members


def find_transition_id(payload: Any, to_status: str) -> Union[str, _NotFound]:
    """Id of the transition leading to ``to_status`` (or named so); NOT_FOUND if none."""
    transitions = select_token(payload, "transitions")
    if not isinstance(transitions, list):
        return NOT_FOUND
    wanted = to_status.lower()
    for transition in transitions:
        if not isinstance(transition, dict) or transition.get("id") is None:
            continue
        names = (_text(transition, "to.name"), _text(transition, "name"))
        if wanted in (n.lower() for n in names):
            return str(transition["id"])
    return NOT_FOUND


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def find_issue_type_id(payload: Any, name: str) -> Union[str, _NotFound]:
    entry = _find_by_name(payload, name)
    if entry is NOT_FOUND or entry.get("id") is None:
        return NOT_FOUND
    return str(entry["id"])


def find_status_id(payload: Any, name: str) -> Union[int, _NotFound]:
    entry = _find_by_name(payload, name)
    if entry is NOT_FOUND:
        return NOT_FOUND
    try:
        return int(entry.get("id"))
    except (TypeError, ValueError):
        return NOT_FOUND


def _find_by_name(payload: Any, name: str) -> Any:
    if not isinstance(payload, list):
        return NOT_FOUND
    for entry in payload:
        if isinstance(entry, dict) and str(entry.get("name", "")).lower() == name.lower():
            return entry
    return NOT_FOUND


def _priority(payload: Dict[str, Any]) -> str:
    priority = select_token(payload, "fields.priority")
    if not isinstance(priority, dict):
        return ""
    return f"{priority.get('id', '')} - {priority.get('name', '')}"


def _unescape(text: str) -> str:
    text = (
        text.replace("\\{", "{")
        .replace("\\[", "[")
        .replace("{{{{", "{{")
        .replace("}}}}", "}}")
    )
    return _DOUBLE_BRACES.sub(
        lambda m: m.group(0).replace("{{", "{").replace("}}", "}"), text
    )


def _issue_keys(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        return []
    keys = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("key")
        if item:
            keys.append(str(item))
    return keys
