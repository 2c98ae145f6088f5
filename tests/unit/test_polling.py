"""Unit tests for the polling coordinator (scheduler is recorded, not run)."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any
from unittest.mock import Mock

import pytest

from output_workflows.config import WorkflowSettings
from output_workflows.errors import APIError, ConcurrentUpdateError, StateFileError
from output_workflows.execution.polling import (
    MAX_RETRIES_REASON,
    PollingCoordinator,
    ThreadScheduler,
)
from output_workflows.execution.service import ExecutionService
from output_workflows.execution.state_machine import ExecutionStatus
from output_workflows.execution.store import ExecutionStore
from output_workflows.responses import StatusSnapshot


class RecordingScheduler:
    def __init__(self) -> None:
        self.jobs: list[tuple[float, Callable[..., Any], dict[str, Any]]] = []

    def schedule(self, delay: float, func: Callable[..., Any], **kwargs: Any) -> None:
        self.jobs.append((delay, func, kwargs))

    def run_next(self) -> None:
        _, func, kwargs = self.jobs.pop(0)
        func(**kwargs)


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def coordinator(
    service: ExecutionService,
    store: ExecutionStore,
    settings: WorkflowSettings,
    scheduler: RecordingScheduler,
) -> PollingCoordinator:
    return PollingCoordinator(
        service=service, store=store, settings=settings, scheduler=scheduler
    )


def _snapshot(name: str) -> StatusSnapshot:
    return StatusSnapshot(workflow_id="wf-1", status_name=name)


def test_missing_record_stops_silently(
    coordinator: PollingCoordinator, scheduler: RecordingScheduler, mock_client: Mock
) -> None:
    coordinator.perform("wf-unknown")

    assert scheduler.jobs == []
    mock_client.workflow_status.assert_not_called()


def test_terminal_record_stops_silently(
    coordinator: PollingCoordinator,
    scheduler: RecordingScheduler,
    service: ExecutionService,
    mock_client: Mock,
) -> None:
    service.track("wf-1", "summarize")
    service.mark_completed("wf-1")

    coordinator.perform("wf-1")

    assert scheduler.jobs == []
    mock_client.workflow_status.assert_not_called()


def test_reschedules_until_terminal(
    coordinator: PollingCoordinator,
    scheduler: RecordingScheduler,
    service: ExecutionService,
    mock_client: Mock,
    store: ExecutionStore,
) -> None:
    service.track("wf-1", "summarize")
    mock_client.workflow_status.side_effect = [
        _snapshot("PENDING"),
        _snapshot("RUNNING"),
        _snapshot("COMPLETED"),
    ]

    coordinator.schedule("wf-1")
    assert [delay for delay, _, _ in scheduler.jobs] == [1]

    scheduler.run_next()
    assert len(scheduler.jobs) == 1
    scheduler.run_next()
    assert store.get_or_raise("wf-1").status == ExecutionStatus.RUNNING
    scheduler.run_next()

    assert scheduler.jobs == []
    assert store.get_or_raise("wf-1").status == ExecutionStatus.COMPLETED


def test_errors_back_off_linearly_then_fail(
    coordinator: PollingCoordinator,
    scheduler: RecordingScheduler,
    service: ExecutionService,
    mock_client: Mock,
    store: ExecutionStore,
) -> None:
    service.track("wf-1", "summarize")
    mock_client.workflow_status.side_effect = APIError("Failed to get status: 503")

    coordinator.perform("wf-1")
    delays: list[float] = []
    while scheduler.jobs:
        delay, _, kwargs = scheduler.jobs[0]
        delays.append(delay)
        assert kwargs["retry_count"] == len(delays)
        scheduler.run_next()

    assert delays == [10, 20, 30]
    record = store.get_or_raise("wf-1")
    assert record.status == ExecutionStatus.FAILED
    assert record.error_message is not None
    assert record.error_message.startswith(MAX_RETRIES_REASON)


def test_successful_poll_after_retry_resets_to_normal_interval(
    coordinator: PollingCoordinator,
    scheduler: RecordingScheduler,
    service: ExecutionService,
    mock_client: Mock,
) -> None:
    service.track("wf-1", "summarize")
    mock_client.workflow_status.side_effect = [APIError("flaky"), _snapshot("RUNNING")]

    coordinator.perform("wf-1")
    assert scheduler.jobs[0][0] == 10

    scheduler.run_next()
    delay, _, kwargs = scheduler.jobs[0]
    assert delay == 1
    assert kwargs["retry_count"] == 0


def test_store_read_errors_are_retried_not_raised(
    coordinator: PollingCoordinator,
    scheduler: RecordingScheduler,
    service: ExecutionService,
    store: ExecutionStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service.track("wf-1", "summarize")

    def _unreadable(workflow_id: str) -> None:
        raise StateFileError("state file is not valid JSON")

    monkeypatch.setattr(store, "get", _unreadable)

    coordinator.perform("wf-1")

    delay, _, kwargs = scheduler.jobs[0]
    assert delay == 10
    assert kwargs["retry_count"] == 1


def test_failure_to_record_give_up_does_not_escape(
    coordinator: PollingCoordinator,
    scheduler: RecordingScheduler,
    service: ExecutionService,
    mock_client: Mock,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    service.track("wf-1", "summarize")
    mock_client.workflow_status.side_effect = APIError("Failed to get status: 503")

    def _conflict(workflow_id: str, reason: str | None = None) -> None:
        raise ConcurrentUpdateError("changed concurrently")

    monkeypatch.setattr(service, "mark_failed", _conflict)

    coordinator.perform("wf-1", retry_count=3)

    assert scheduler.jobs == []
    assert "Failed to record poll failure" in caplog.text


def test_thread_scheduler_runs_job() -> None:
    scheduler = ThreadScheduler()
    ran = threading.Event()
    received: dict[str, Any] = {}

    def _job(**kwargs: Any) -> None:
        received.update(kwargs)
        ran.set()

    scheduler.schedule(0, _job, workflow_id="wf-1", retry_count=0)

    assert ran.wait(timeout=5)
    assert received == {"workflow_id": "wf-1", "retry_count": 0}


def test_thread_scheduler_shutdown_cancels_pending_jobs() -> None:
    scheduler = ThreadScheduler()
    ran = threading.Event()

    scheduler.schedule(60, ran.set)
    assert scheduler.pending() == 1
    scheduler.shutdown()

    assert scheduler.pending() == 0
    scheduler.schedule(0, ran.set)
    assert not ran.wait(timeout=0.2)
