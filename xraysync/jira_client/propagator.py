"""
Evidence & Result Propagator.

Pushes a finished test case's results back to Jira/Xray in a fixed order:

1. Step statuses (PASS/FAIL per step, or the run outcome).
2. Evidence attachments (pass/fail outcomes only).
3. Actual results for steps without one.
4. Failure comment on the execution run.
5. Defect links on the execution run.
6. Inconclusive comment on the execution issue.

Propagation is best-effort bookkeeping. Every sub-operation is isolated:
its failure is logged and recorded in the PropagationReport, and the
remaining stages still run. ``propagate`` never raises.
"""

from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

from loguru import logger

from xraysync.config.capabilities import Capabilities
from xraysync.jira_client.command_builder import (
    TERMINAL_STATUSES,
    build_add_defect,
    build_add_issue_comment,
    build_attach_evidence,
    build_fail_comment,
    build_inconclusive_comment,
    build_set_actual_result,
    build_set_run_comment,
    build_update_steps_outcome,
)
from xraysync.jira_client.coordinator import BatchOutcome, BucketedCoordinator
from xraysync.model.canonical import CanonicalTestCase


FAILED_STATUSES = {"FAIL", "FAILED"}
DEFAULT_EVIDENCE_TYPE = "image/png"


@dataclass
class PropagationEntry:
    """One attempted tracker update."""

    stage: str
    target: str
    ok: bool
    detail: str = ""


@dataclass
class PropagationReport:
    """What propagation attempted, and which failures it suppressed."""

    key: str
    dry_run: bool = False
    entries: List[PropagationEntry] = field(default_factory=list)

    def record(self, stage: str, target: str, ok: bool, detail: str = "") -> None:
        self.entries.append(PropagationEntry(stage, target, ok, detail))

    def for_stage(self, stage: str) -> List[PropagationEntry]:
        return [e for e in self.entries if e.stage == stage]

    @property
    def suppressed(self) -> List[PropagationEntry]:
        return [e for e in self.entries if not e.ok]

    @property
    def ok(self) -> bool:
        return not self.suppressed


class ResultPropagator:
    """
    Reflects a finished test case's results onto its execution run.

    Args:
        transport: Object with ``send(HttpCommand) -> TransportResult``.
        capabilities: Resolved session capabilities.
    """

    def __init__(self, transport: Any, capabilities: Capabilities) -> None:
        self._transport = transport
        self._capabilities = capabilities
        self._coordinator = BucketedCoordinator(capabilities.bucket_size)

    def propagate(self, test_case: CanonicalTestCase) -> PropagationReport:
        """
        Apply every update relevant to the test case's current outcome.

        Returns:
            PropagationReport listing each attempted update.
        """
        report = PropagationReport(key=test_case.key, dry_run=self._capabilities.dry_run)
        if self._capabilities.dry_run:
            logger.info(f"Dry run - skipping result propagation for {test_case.key}")
            return report

        stages: List[Tuple[str, Callable[[CanonicalTestCase, PropagationReport], None]]] = [
            ("steps-outcome", self.set_steps_outcome),
            ("evidence", self.upload_evidence),
            ("actual", self.set_actual_results),
            ("fail-comment", self.set_fail_comment),
            ("defects", self.link_defects),
            ("inconclusive", self.add_inconclusive_comment),
        ]
        for stage, handler in stages:
            try:
                handler(test_case, report)
            except Exception as e:
                logger.error(f"Propagation stage '{stage}' failed for {test_case.key}: {e}")
                report.record(stage, test_case.key, False, str(e))

        logger.info(
            f"Propagated results for {test_case.key}: "
            f"{len(report.entries) - len(report.suppressed)} ok, "
            f"{len(report.suppressed)} suppressed"
        )
        return report

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def set_steps_outcome(
        self, test_case: CanonicalTestCase, report: PropagationReport
    ) -> None:
        """Set every step's status on the run in one update."""
        if not test_case.outcome:
            return
        run_id = test_case.context.run_id
        if not run_id:
            logger.warning(f"No execution run for {test_case.key}, step statuses not set")
            return
        if not any(step.runtime_id for step in test_case.steps):
            return

        command = build_update_steps_outcome(test_case, self._capabilities)
        result = self._transport.send(command)
        report.record("steps-outcome", f"run {run_id}", result.ok, result.reason)

    def upload_evidence(
        self, test_case: CanonicalTestCase, report: PropagationReport
    ) -> None:
        """Attach each step's evidence files to its step on the run."""
        if test_case.outcome not in TERMINAL_STATUSES:
            return
        if not test_case.context.run_id:
            logger.warning(f"No execution run for {test_case.key}, evidence not uploaded")
            return

        items = [
            (index, path)
            for index, step in enumerate(test_case.steps)
            if step.runtime_id
            for path in step.evidence
        ]
        if not items:
            return

        def attach(item: Tuple[int, str]) -> Any:
            index, path = item
            command = build_attach_evidence(test_case, index, read_evidence(path))
            return self._transport.send(command)

        outcome = self._coordinator.run(
            items, attach, check=lambda r: r.ok, name=f"{test_case.key}:evidence"
        )
        self._record(report, "evidence", outcome, lambda item: f"step {item[0] + 1}: {item[1]}")

    def set_actual_results(
        self, test_case: CanonicalTestCase, report: PropagationReport
    ) -> None:
        """
        Write actual-result text for steps that have none yet.

        Steps with ``actual`` set, or already written in this session, are
        skipped, so repeating the stage sends nothing new.
        """
        targets = [
            index
            for index, step in enumerate(test_case.steps)
            if not step.actual and not step.context.actual_result_written
        ]
        if not targets:
            return
        if not test_case.context.run_id:
            logger.warning(f"No execution run for {test_case.key}, actual results not set")
            return

        def write(index: int) -> Any:
            result = self._transport.send(build_set_actual_result(test_case, index))
            if result.ok:
                test_case.steps[index].context.actual_result_written = True
            return result

        outcome = self._coordinator.run(
            targets, write, check=lambda r: r.ok, name=f"{test_case.key}:actual"
        )
        self._record(report, "actual", outcome, lambda index: f"step {index + 1}")

    def set_fail_comment(
        self, test_case: CanonicalTestCase, report: PropagationReport
    ) -> None:
        if test_case.outcome not in FAILED_STATUSES or test_case.actual:
            return
        comment = build_fail_comment(test_case)
        if not comment:
            return

        result = self._transport.send(build_set_run_comment(test_case, comment))
        report.record("fail-comment", f"run {test_case.context.run_id}", result.ok, result.reason)

    def link_defects(
        self, test_case: CanonicalTestCase, report: PropagationReport
    ) -> None:
        if not test_case.defects:
            return

        outcome = self._coordinator.run(
            list(test_case.defects),
            lambda bug: self._transport.send(build_add_defect(test_case, bug)),
            check=lambda r: r.ok,
            name=f"{test_case.key}:defects",
        )
        self._record(report, "defects", outcome, str)

    def add_inconclusive_comment(
        self, test_case: CanonicalTestCase, report: PropagationReport
    ) -> None:
        comment = build_inconclusive_comment(test_case, self._capabilities)
        if comment is None:
            return
        execution = test_case.context.execution_key
        if not execution:
            logger.warning(f"No execution issue for {test_case.key}, inconclusive comment not added")
            return

        command = build_add_issue_comment(execution, comment, self._capabilities)
        result = self._transport.send(command)
        report.record("inconclusive", execution, result.ok, result.reason)

    # ------------------------------------------------------------------

    @staticmethod
    def _record(
        report: PropagationReport,
        stage: str,
        outcome: BatchOutcome,
        describe: Callable[[Any], str],
    ) -> None:
        for item_result in outcome.results:
            detail = item_result.error
            if item_result.value is not None:
                detail = getattr(item_result.value, "reason", "") or detail
            report.record(stage, describe(item_result.item), item_result.success, detail)


def read_evidence(path: str) -> Dict[str, str]:
    """
    Load an evidence file as an Xray attachment body.

    Raises:
        OSError: If the file cannot be read.
    """
    file_path = Path(path)
    content_type = mimetypes.guess_type(file_path.name)[0] or DEFAULT_EVIDENCE_TYPE
    return {
        "filename": file_path.name,
        "contentType": content_type,
        "data": base64.b64encode(file_path.read_bytes()).decode("ascii"),
    }
