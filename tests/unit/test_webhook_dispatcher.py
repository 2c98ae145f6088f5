from __future__ import annotations

import json
from typing import Any

import pytest

from output_workflows.errors import InvalidPayloadError
from output_workflows.execution.service import ExecutionService
from output_workflows.execution.state_machine import ExecutionRecord, ExecutionStatus
from output_workflows.execution.store import ExecutionStore
from output_workflows.webhooks.dispatcher import (
    PROGRESS_ACTION,
    WebhookDispatcher,
    normalize_payload,
)


@pytest.fixture
def dispatcher(service: ExecutionService, store: ExecutionStore) -> WebhookDispatcher:
    return WebhookDispatcher(service=service, store=store)


def _progress(workflow_id: str = "wf-1", **extra: Any) -> dict[str, Any]:
    return {"action": PROGRESS_ACTION, "workflowId": workflow_id, "name": "step 1", **extra}


def test_normalize_payload_accepts_json_text_and_bytes() -> None:
    text = json.dumps({"action": "x", "nested": {"a": 1}})
    assert normalize_payload(text) == {"action": "x", "nested": {"a": 1}}
    assert normalize_payload(text.encode("utf-8")) == {"action": "x", "nested": {"a": 1}}


def test_normalize_payload_stringifies_nested_keys() -> None:
    assert normalize_payload({1: "a", "b": {2: {3: "c"}}}) == {"1": "a", "b": {"2": {"3": "c"}}}


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", 42])
def test_normalize_payload_rejects_non_objects(raw: object) -> None:
    with pytest.raises(InvalidPayloadError):
        normalize_payload(raw)


def test_progress_webhook_appends_entry(
    dispatcher: WebhookDispatcher, service: ExecutionService, store: ExecutionStore
) -> None:
    service.track("wf-1", "summarize")

    handled = dispatcher.dispatch(json.dumps(_progress(extraInfo="page 3 of 10")))

    assert handled is True
    record = store.get_or_raise("wf-1")
    assert record.status == ExecutionStatus.RUNNING
    assert record.progress[0].name == "step 1"
    assert record.progress[0].extra_info == "page 3 of 10"


def test_unknown_workflow_is_ignored(dispatcher: WebhookDispatcher, store: ExecutionStore) -> None:
    assert dispatcher.dispatch(_progress("wf-unknown")) is False
    assert store.list() == []


def test_unhandled_action_is_ignored(
    dispatcher: WebhookDispatcher, service: ExecutionService, store: ExecutionStore
) -> None:
    service.track("wf-1", "summarize")

    assert dispatcher.dispatch({"action": "workflow_started", "workflowId": "wf-1"}) is False
    assert store.get_or_raise("wf-1").version == 0


def test_progress_for_terminal_execution_is_ignored(
    dispatcher: WebhookDispatcher, service: ExecutionService, store: ExecutionStore
) -> None:
    service.track("wf-1", "summarize")
    done = service.mark_completed("wf-1")

    dispatcher.dispatch(_progress())

    assert store.get_or_raise("wf-1") == done


def test_progress_without_name_is_ignored(
    dispatcher: WebhookDispatcher, service: ExecutionService, store: ExecutionStore
) -> None:
    service.track("wf-1", "summarize")

    dispatcher.dispatch({"action": PROGRESS_ACTION, "workflowId": "wf-1"})

    assert store.get_or_raise("wf-1").progress == []


def test_custom_handler_registration(
    dispatcher: WebhookDispatcher, service: ExecutionService
) -> None:
    seen: list[tuple[str, str]] = []

    class FailureHandler:
        def handle(
            self, payload: dict[str, Any], record: ExecutionRecord, service: ExecutionService
        ) -> None:
            seen.append((record.workflow_id, payload["reason"]))
            service.mark_failed(record.workflow_id, payload["reason"])

    dispatcher.register("workflow_failed", FailureHandler())
    service.track("wf-1", "summarize")

    assert dispatcher.dispatch({"action": "workflow_failed", "workflowId": "wf-1", "reason": "x"})
    assert seen == [("wf-1", "x")]
    assert dispatcher.actions == ["workflow_failed", PROGRESS_ACTION]
