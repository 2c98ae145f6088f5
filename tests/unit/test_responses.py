from __future__ import annotations

import pytest

from output_workflows.responses import FAILED_STATUSES, StatusSnapshot, WorkflowResult


def test_snapshot_from_nested_status() -> None:
    snap = StatusSnapshot.from_json(
        {
            "workflowId": "wf-1",
            "runId": "run-1",
            "status": {"name": "COMPLETED", "code": 2},
            "historyUrl": "http://history/wf-1",
        }
    )
    assert snap.workflow_id == "wf-1"
    assert snap.run_id == "run-1"
    assert snap.status_code == 2
    assert snap.history_url == "http://history/wf-1"
    assert snap.completed and snap.terminal and not snap.failed


def test_snapshot_from_flat_status_keys() -> None:
    snap = StatusSnapshot.from_json(
        {"workflowId": "wf-1", "statusName": "running", "statusCode": "1"}
    )
    assert snap.status_name == "RUNNING"
    assert snap.running
    assert snap.status_code == 1


@pytest.mark.parametrize("name", sorted(FAILED_STATUSES))
def test_failed_family_is_terminal(name: str) -> None:
    snap = StatusSnapshot(workflow_id="wf-1", status_name=name)
    assert snap.failed
    assert snap.terminal
    assert not snap.completed


@pytest.mark.parametrize("name", ["PENDING", "RUNNING", "CONTINUED_AS_NEW", "", "PAUSED"])
def test_other_statuses_are_neither_terminal_nor_failed(name: str) -> None:
    snap = StatusSnapshot(workflow_id="wf-1", status_name=name)
    assert not snap.terminal
    assert not snap.failed


def test_workflow_result_defaults() -> None:
    result = WorkflowResult.from_json({"workflowId": "wf-1"})
    assert result.to_json() == {
        "workflow_id": "wf-1",
        "run_id": None,
        "input": None,
        "output": None,
        "trace": None,
    }
