"""
Bucketed Execution Coordinator.

Runs one operation per item with bounded parallelism. Failures are isolated
per item: an exception (or a result rejected by ``check``) is recorded on
that item's ItemResult and never affects the other items.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

from loguru import logger

from xraysync.jira_client.commands import HttpCommand


T = TypeVar("T")
R = TypeVar("R")


class BatchFailedError(Exception):
    """Raised when every item of a critical batch failed."""

    def __init__(self, message: str, outcome: "BatchOutcome") -> None:
        super().__init__(message)
        self.outcome = outcome


@dataclass
class ItemResult(Generic[T, R]):
    """The outcome of one item, paired with the item itself."""

    item: T
    success: bool
    value: Optional[R] = None
    error: str = ""


@dataclass
class BatchOutcome(Generic[T, R]):
    """Per-item results of one coordinator run, in input order."""

    name: str
    results: List[ItemResult[T, R]] = field(default_factory=list)
    execution_time: float = 0.0

    @property
    def succeeded(self) -> List[ItemResult[T, R]]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> List[ItemResult[T, R]]:
        return [r for r in self.results if not r.success]

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def all_failed(self) -> bool:
        return bool(self.results) and not self.succeeded


class BucketedCoordinator:
    """
    Executes independent operations with at most ``bucket_size`` in flight.

    Usage::

        coordinator = BucketedCoordinator(capabilities.bucket_size)
        outcome = coordinator.run(commands, transport.send, check=lambda r: r.ok)
        for result in outcome.failed:
            print(result.item, result.error)
    """

    def __init__(self, bucket_size: int) -> None:
        self.bucket_size = max(1, bucket_size if isinstance(bucket_size, int) else 1)

    def run(
        self,
        items: Iterable[T],
        operation: Callable[[T], R],
        *,
        check: Optional[Callable[[R], bool]] = None,
        critical: bool = False,
        name: str = "batch",
    ) -> BatchOutcome[T, R]:
        """
        Apply ``operation`` to every item.

        Args:
            items: Items to process; each carries its own correlation data.
            operation: Callable invoked once per item.
            check: Optional predicate; a False result marks the item failed.
            critical: Raise BatchFailedError when every item failed.
            name: Batch name used in log messages.

        Returns:
            BatchOutcome with one ItemResult per item, in input order.

        Raises:
            BatchFailedError: Only when ``critical`` and all items failed.
        """
        pending = list(items)
        outcome: BatchOutcome[T, R] = BatchOutcome(name=name)
        if not pending:
            return outcome

        start_time = time.time()
        results: List[Optional[ItemResult[T, R]]] = [None] * len(pending)
        workers = min(self.bucket_size, len(pending))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self._run_one, item, operation, check): index
                for index, item in enumerate(pending)
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()

        outcome.results = [r for r in results if r is not None]
        outcome.execution_time = time.time() - start_time

        logger.debug(
            f"Batch '{name}' finished: {outcome.success_count} succeeded, "
            f"{outcome.failure_count} failed in {outcome.execution_time:.2f}s "
            f"(bucket={self.bucket_size})"
        )

        if critical and outcome.all_failed:
            raise BatchFailedError(
                f"All {len(outcome.results)} items of batch '{name}' failed", outcome
            )
        return outcome

    @staticmethod
    def _run_one(
        item: T,
        operation: Callable[[T], R],
        check: Optional[Callable[[R], bool]],
    ) -> ItemResult[T, R]:
        try:
            value = operation(item)
            accepted = check is None or check(value)
        except Exception as e:
            logger.warning(f"Batch item {item!r} failed: {e}")
            return ItemResult(item=item, success=False, error=str(e))

        if not accepted:
            logger.warning(f"Batch item {item!r} was rejected: {value!r}")
            return ItemResult(item=item, success=False, value=value, error="rejected")
        return ItemResult(item=item, success=True, value=value)


def send_commands(
    transport: Any,
    commands: Iterable[HttpCommand],
    bucket_size: int,
    *,
    critical: bool = False,
    name: str = "commands",
) -> BatchOutcome[HttpCommand, Any]:
    """Dispatch descriptors through ``transport.send``; non-ok results count as failures."""
    return BucketedCoordinator(bucket_size).run(
        commands,
        transport.send,
        check=lambda result: bool(getattr(result, "ok", False)),
        critical=critical,
        name=name,
    )
