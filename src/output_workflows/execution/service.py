"""Execution lifecycle service.

Reconciles locally persisted execution records with the remote workflow API.
All state changes go through :meth:`ExecutionStore.apply`, so concurrent
drivers (the polling coordinator and the webhook dispatcher) never clobber
each other and a terminal record is never moved again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from output_workflows.client import RemoteWorkflowClient
from output_workflows.config import WorkflowSettings
from output_workflows.errors import (
    APIError,
    ConfigurationError,
    WorkflowFailedError,
    WorkflowTimeoutError,
)
from output_workflows.execution import state_machine as sm
from output_workflows.execution.state_machine import (
    ExecutableRef,
    ExecutionRecord,
    ExecutionStatus,
)
from output_workflows.execution.store import ExecutionStore, Mutation
from output_workflows.responses import WorkflowResult

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[ExecutionRecord], None]

CANCELLED_BY_USER = "Cancelled by user"
CANCELLED_NOT_FOUND = "Cancelled (workflow not found remotely)"
TIMED_OUT = "timed_out"


class CompletionCallbacks:
    """Completion handlers keyed by the owning object's type.

    A record whose ``executable`` type has no registered handler is a normal
    case and is simply skipped.
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, CompletionCallback] = {}

    def register(self, executable_type: str, callback: CompletionCallback) -> None:
        if not executable_type:
            raise ValueError("executable_type is required")
        self._callbacks[executable_type] = callback

    def get(self, executable_type: str) -> CompletionCallback | None:
        return self._callbacks.get(executable_type)

    def notify(self, record: ExecutionRecord) -> None:
        if record.executable is None:
            return
        callback = self.get(record.executable.type)
        if callback is None:
            return
        try:
            callback(record)
        except Exception:
            logger.exception(
                "Completion callback failed",
                extra={
                    "workflow_id": record.workflow_id,
                    "executable_type": record.executable.type,
                    "executable_id": record.executable.id,
                },
            )


@dataclass(frozen=True, slots=True)
class CancelOutcome:
    """Best-effort cancellation result.

    ``ok`` is False only when the remote call failed and the record was marked
    failed because of it; the local record is terminal either way. ``status``
    and ``reason`` always describe the stored record, which may have finished
    on its own while the stop request was in flight.
    """

    ok: bool
    status: ExecutionStatus
    reason: str | None = None
    cause: Exception | None = None


class ExecutionService:
    def __init__(
        self,
        *,
        store: ExecutionStore,
        client: RemoteWorkflowClient | None = None,
        settings: WorkflowSettings | None = None,
        callbacks: CompletionCallbacks | None = None,
    ) -> None:
        if settings is None:
            if client is None:
                raise ValueError("settings are required when no client is given")
            settings = client.settings
        self._store = store
        self._client = client
        self._settings = settings
        self._callbacks = callbacks or CompletionCallbacks()

    @property
    def store(self) -> ExecutionStore:
        return self._store

    @property
    def client(self) -> RemoteWorkflowClient:
        if self._client is None:
            raise ConfigurationError("A remote workflow client is required for this operation")
        return self._client

    @property
    def callbacks(self) -> CompletionCallbacks:
        return self._callbacks

    def _write(self, workflow_id: str, mutate: Mutation) -> ExecutionRecord:
        before, after = self._store.apply(workflow_id, mutate)
        # Only the writer that lands the terminal transition sees an active "before".
        if after is not before and before.active and after.terminal:
            logger.info(
                "Execution reached terminal state",
                extra={
                    "workflow_id": workflow_id,
                    "status": after.status.value,
                    "error_message": after.error_message,
                },
            )
            self._callbacks.notify(after)
        return after

    def start(
        self,
        workflow_name: str,
        input: dict[str, Any] | None = None,
        *,
        executable: ExecutableRef | None = None,
        task_queue: str | None = None,
    ) -> ExecutionRecord:
        """Start a remote run and create its pending record."""

        workflow_id = self.client.start_workflow(workflow_name, input, task_queue=task_queue)
        return self.track(workflow_id, workflow_name, executable=executable)

    def track(
        self,
        workflow_id: str,
        workflow_name: str,
        *,
        executable: ExecutableRef | None = None,
    ) -> ExecutionRecord:
        record = ExecutionRecord(
            workflow_id=workflow_id,
            workflow_name=workflow_name,
            executable=executable,
        )
        return self._store.create(record)

    def mark_running(self, workflow_id: str) -> ExecutionRecord:
        def _mutate(record: ExecutionRecord) -> ExecutionRecord:
            if record.terminal:
                return record
            if record.status == ExecutionStatus.RUNNING and record.started_at is not None:
                return record
            return sm.mark_running(record)

        return self._write(workflow_id, _mutate)

    def mark_completed(self, workflow_id: str) -> ExecutionRecord:
        def _mutate(record: ExecutionRecord) -> ExecutionRecord:
            return record if record.terminal else sm.mark_completed(record)

        return self._write(workflow_id, _mutate)

    def mark_failed(self, workflow_id: str, reason: str | None = None) -> ExecutionRecord:
        def _mutate(record: ExecutionRecord) -> ExecutionRecord:
            return record if record.terminal else sm.mark_failed(record, reason)

        return self._write(workflow_id, _mutate)

    def append_progress(
        self, workflow_id: str, *, name: str, extra_info: str | None = None
    ) -> ExecutionRecord:
        max_entries = self._settings.max_progress_entries

        def _mutate(record: ExecutionRecord) -> ExecutionRecord:
            if record.terminal:
                logger.debug(
                    "Ignoring progress for terminal execution",
                    extra={"workflow_id": workflow_id, "progress_name": name},
                )
                return record
            return sm.append_progress(
                record, name=name, extra_info=extra_info, max_entries=max_entries
            )

        return self._write(workflow_id, _mutate)

    def clear_progress(self, workflow_id: str) -> ExecutionRecord:
        return self._write(workflow_id, sm.clear_progress)

    def fetch_output(self, workflow_id: str) -> Any:
        """Return the run's output without storing it locally."""

        return self.client.workflow_result(workflow_id).output

    def poll_status(self, workflow_id: str) -> bool:
        """Apply the remote status to the local record.

        Returns:
            True once a terminal state has been reached (stop polling), False
            when polling should continue. Already-terminal records return False
            without any remote call.
        """

        record = self._store.get_or_raise(workflow_id)
        if record.terminal:
            return False

        snapshot = self.client.workflow_status(workflow_id)
        if snapshot is None:
            logger.info("Workflow not found remotely yet", extra={"workflow_id": workflow_id})
            return False

        if snapshot.completed:
            self.fetch_output(workflow_id)
            self.mark_completed(workflow_id)
            return True
        if snapshot.failed:
            self.mark_failed(workflow_id, snapshot.status_name)
            return True
        if snapshot.running and record.status == ExecutionStatus.PENDING:
            self.mark_running(workflow_id)
        return False

    def cancel(self, workflow_id: str) -> CancelOutcome:
        """Cancel the remote run and mark the record failed locally.

        Best-effort: if the remote call fails the record is still marked
        failed, and the failure is reported through the outcome instead of
        being raised.
        """

        record = self._store.get_or_raise(workflow_id)
        if record.terminal:
            return CancelOutcome(ok=True, status=record.status, reason=record.error_message)

        try:
            cancelled = self.client.cancel_workflow(workflow_id)
        except APIError as e:
            logger.error(
                "Failed to cancel workflow",
                extra={"workflow_id": workflow_id, "response_status": e.response_status},
            )
            return self._record_cancel(workflow_id, f"Cancellation failed: {e}", cause=e)

        if cancelled:
            logger.info("Workflow cancelled", extra={"workflow_id": workflow_id})
            return self._record_cancel(workflow_id, CANCELLED_BY_USER)

        logger.warning(
            "Workflow not found remotely, marking as cancelled locally",
            extra={"workflow_id": workflow_id},
        )
        return self._record_cancel(workflow_id, CANCELLED_NOT_FOUND)

    def _record_cancel(
        self, workflow_id: str, reason: str, *, cause: Exception | None = None
    ) -> CancelOutcome:
        after = self.mark_failed(workflow_id, reason)
        if after.status == ExecutionStatus.FAILED and after.error_message == reason:
            return CancelOutcome(ok=cause is None, status=after.status, reason=reason, cause=cause)

        # Another driver landed a terminal state first; report what is stored.
        logger.info(
            "Execution finished before cancellation was recorded",
            extra={"workflow_id": workflow_id, "status": after.status.value},
        )
        return CancelOutcome(
            ok=True, status=after.status, reason=after.error_message, cause=cause
        )

    def wait_for_completion(
        self,
        workflow_id: str,
        *,
        poll_interval: float | None = None,
        timeout: float | None = None,
    ) -> WorkflowResult:
        """Block until the run finishes and record the outcome locally.

        The result is returned but not persisted. Failure and timeout errors
        are re-raised after the record has been marked failed.
        """

        self._store.get_or_raise(workflow_id)
        try:
            result = self.client.wait_for_completion(
                workflow_id, poll_interval=poll_interval, timeout=timeout
            )
        except WorkflowFailedError as e:
            self.mark_failed(workflow_id, e.status_name)
            raise
        except WorkflowTimeoutError:
            self.mark_failed(workflow_id, TIMED_OUT)
            raise

        self.mark_completed(workflow_id)
        return result
