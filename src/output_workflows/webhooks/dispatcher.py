"""Route verified webhook payloads to per-action handlers.

Expected progress payload::

    {
        "action": "workflow_progress",
        "workflowId": "wf-123",
        "name": "Processing step 1",
        "extraInfo": "Optional details"
    }

Unknown workflow ids and unregistered actions are ignored: the remote API may
report runs this process never created, or events it does not care about.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

from output_workflows.errors import InvalidPayloadError
from output_workflows.execution.service import ExecutionService
from output_workflows.execution.state_machine import ExecutionRecord
from output_workflows.execution.store import ExecutionStore

logger = logging.getLogger(__name__)

PROGRESS_ACTION = "workflow_progress"

Payload = dict[str, Any]


def _stringify_keys(data: Mapping[Any, Any]) -> Payload:
    return {
        str(key): _stringify_keys(value) if isinstance(value, Mapping) else value
        for key, value in data.items()
    }


def normalize_payload(data: object) -> Payload:
    """Convert JSON text or any mapping into a string-keyed nested dict."""

    if isinstance(data, bytes | bytearray):
        data = bytes(data).decode("utf-8", errors="replace")
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise InvalidPayloadError(f"Webhook payload is not valid JSON: {e.msg}") from e
    if not isinstance(data, Mapping):
        raise InvalidPayloadError("Webhook payload must be a JSON object")
    return _stringify_keys(data)


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


class WebhookHandler(Protocol):
    def handle(
        self, payload: Payload, record: ExecutionRecord, service: ExecutionService
    ) -> None: ...


class ProgressHandler:
    """Append a progress entry to an active execution."""

    def handle(
        self, payload: Payload, record: ExecutionRecord, service: ExecutionService
    ) -> None:
        if not record.active:
            return
        name = _optional_str(payload.get("name"))
        if not name:
            logger.warning(
                "Progress webhook without a step name",
                extra={"workflow_id": record.workflow_id},
            )
            return
        service.append_progress(
            record.workflow_id,
            name=name,
            extra_info=_optional_str(payload.get("extraInfo")),
        )


class WebhookDispatcher:
    def __init__(
        self,
        *,
        service: ExecutionService,
        store: ExecutionStore,
        handlers: Mapping[str, WebhookHandler] | None = None,
    ) -> None:
        self._service = service
        self._store = store
        self._handlers: dict[str, WebhookHandler] = (
            dict(handlers) if handlers is not None else {PROGRESS_ACTION: ProgressHandler()}
        )

    def register(self, action: str, handler: WebhookHandler) -> None:
        if not action:
            raise ValueError("action is required")
        self._handlers[action] = handler

    @property
    def actions(self) -> list[str]:
        return sorted(self._handlers)

    def dispatch(self, raw: object) -> bool:
        """Normalize ``raw`` and hand it to the handler for its action.

        Returns:
            True if a handler ran, False if the payload was ignored.
        """

        payload = normalize_payload(raw)
        action = _optional_str(payload.get("action"))
        workflow_id = _optional_str(payload.get("workflowId"))

        if not workflow_id:
            logger.info("Ignoring webhook without workflowId", extra={"action": action})
            return False

        record = self._store.get(workflow_id)
        if record is None:
            logger.info(
                "Ignoring webhook for unknown workflow",
                extra={"workflow_id": workflow_id, "action": action},
            )
            return False

        handler = self._handlers.get(action or "")
        if handler is None:
            logger.info(
                "Ignoring webhook with unhandled action",
                extra={"workflow_id": workflow_id, "action": action},
            )
            return False

        handler.handle(payload, record, self._service)
        return True
