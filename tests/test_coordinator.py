"""
Unit Tests for the Bucketed Execution Coordinator.

Covers:
- Per-item failure isolation at several bucket sizes.
- Result pairing and input ordering.
- Bounded concurrency and degenerate bucket sizes.
- Critical batches.
"""

from __future__ import annotations

import threading
import time

import pytest

from xraysync.jira_client.commands import HttpCommand
from xraysync.jira_client.coordinator import (
    BatchFailedError,
    BucketedCoordinator,
    send_commands,
)

from tests.conftest import FakeTransport


def _fail_on_four(item: int) -> int:
    if item == 4:
        raise RuntimeError("item 4 always fails")
    return item * 10


class TestIsolation:
    """A failing item never affects the others."""

    @pytest.mark.parametrize("bucket_size", [1, 3, 10])
    def test_nine_successes_one_failure(self, bucket_size: int) -> None:
        outcome = BucketedCoordinator(bucket_size).run(range(10), _fail_on_four)

        assert len(outcome.results) == 10
        assert outcome.success_count == 9
        assert outcome.failure_count == 1
        assert outcome.failed[0].item == 4
        assert "always fails" in outcome.failed[0].error

    def test_results_paired_and_in_input_order(self) -> None:
        def slow_first(item: int) -> int:
            time.sleep(0.05 if item == 0 else 0)
            return item * 10

        outcome = BucketedCoordinator(5).run(range(5), slow_first)

        assert [r.item for r in outcome.results] == [0, 1, 2, 3, 4]
        assert all(r.value == r.item * 10 for r in outcome.results)

    def test_check_rejects_value(self) -> None:
        outcome = BucketedCoordinator(2).run([1, 2, 3], lambda i: i, check=lambda v: v != 2)
        assert [r.success for r in outcome.results] == [True, False, True]
        assert outcome.failed[0].value == 2

    def test_check_error_isolated(self) -> None:
        def bad_check(value: int) -> bool:
            raise ValueError("bad check")

        outcome = BucketedCoordinator(2).run([1, 2], lambda i: i, check=bad_check)
        assert outcome.failure_count == 2

    def test_empty_items(self) -> None:
        outcome = BucketedCoordinator(3).run([], _fail_on_four, critical=True)
        assert outcome.results == []
        assert not outcome.all_failed


class TestConcurrency:
    """Concurrency never exceeds the bucket size."""

    @pytest.mark.parametrize("bucket_size", [1, 3])
    def test_bounded(self, bucket_size: int) -> None:
        lock = threading.Lock()
        state = {"current": 0, "peak": 0}

        def track(item: int) -> int:
            with lock:
                state["current"] += 1
                state["peak"] = max(state["peak"], state["current"])
            time.sleep(0.01)
            with lock:
                state["current"] -= 1
            return item

        BucketedCoordinator(bucket_size).run(range(12), track)
        assert 1 <= state["peak"] <= bucket_size

    @pytest.mark.parametrize("bucket_size", [0, -5])
    def test_non_positive_bucket_uses_one_worker(self, bucket_size: int) -> None:
        coordinator = BucketedCoordinator(bucket_size)
        assert coordinator.bucket_size == 1
        assert coordinator.run(range(3), lambda i: i).success_count == 3


class TestCritical:
    """Critical batches raise only when every item failed."""

    def test_all_failed_raises(self) -> None:
        with pytest.raises(BatchFailedError) as excinfo:
            BucketedCoordinator(2).run([4, 4], _fail_on_four, critical=True, name="steps")
        assert excinfo.value.outcome.failure_count == 2

    def test_partial_failure_does_not_raise(self) -> None:
        outcome = BucketedCoordinator(2).run([1, 4], _fail_on_four, critical=True)
        assert outcome.success_count == 1

    def test_non_critical_all_failed_does_not_raise(self) -> None:
        outcome = BucketedCoordinator(2).run([4, 4], _fail_on_four)
        assert outcome.all_failed


class TestSendCommands:
    """Tests for the send_commands helper."""

    def test_non_ok_results_are_failures(self) -> None:
        transport = FakeTransport().fail_when(lambda c: c.route.endswith("/2"))
        commands = [HttpCommand("GET", f"/item/{i}") for i in range(4)]

        outcome = send_commands(transport, commands, bucket_size=2)

        assert outcome.success_count == 3
        assert outcome.failed[0].item.route == "/item/2"
        assert len(transport.sent) == 4
