"""Background polling for execution records.

Each poll is a fire-and-forget job that reschedules itself until the record
is terminal. Jobs run on daemon timer threads by default; tests inject a
scheduler that records jobs instead of running them.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

from output_workflows.config import WorkflowSettings
from output_workflows.errors import ExecutionNotFoundError
from output_workflows.execution.service import ExecutionService
from output_workflows.execution.store import ExecutionStore

logger = logging.getLogger(__name__)

MAX_RETRIES_REASON = "Max retries exceeded"


class Scheduler(Protocol):
    def schedule(self, delay: float, func: Callable[..., Any], **kwargs: Any) -> None: ...


class ThreadScheduler:
    """Run each job once, after ``delay`` seconds, on a daemon timer thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timers: set[threading.Timer] = set()
        self._closed = False

    def schedule(self, delay: float, func: Callable[..., Any], **kwargs: Any) -> None:
        if delay < 0:
            raise ValueError("delay must be >= 0")

        def _run() -> None:
            with self._lock:
                self._timers.discard(timer)
            func(**kwargs)

        timer = threading.Timer(delay, _run)
        timer.daemon = True
        with self._lock:
            if self._closed:
                logger.debug("Scheduler is shut down; dropping job")
                return
            self._timers.add(timer)
        timer.start()

    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def shutdown(self) -> None:
        """Cancel every timer that has not fired yet."""

        with self._lock:
            self._closed = True
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()


class PollingCoordinator:
    def __init__(
        self,
        *,
        service: ExecutionService,
        store: ExecutionStore,
        settings: WorkflowSettings,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._service = service
        self._store = store
        self._settings = settings
        self._scheduler: Scheduler = scheduler or ThreadScheduler()

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def schedule(
        self, workflow_id: str, *, delay: float | None = None, retry_count: int = 0
    ) -> None:
        if delay is None:
            delay = self._settings.default_poll_interval
        self._scheduler.schedule(
            delay, self.perform, workflow_id=workflow_id, retry_count=retry_count
        )

    def perform(self, workflow_id: str, retry_count: int = 0) -> None:
        """Poll once and reschedule until the record is terminal."""

        try:
            record = self._store.get(workflow_id)
        except Exception as e:
            logger.exception("Failed to load execution", extra={"workflow_id": workflow_id})
            self._handle_failure(workflow_id, retry_count, e)
            return
        if record is None:
            logger.debug("Execution no longer exists", extra={"workflow_id": workflow_id})
            return
        if record.terminal:
            return

        try:
            reached_terminal = self._service.poll_status(workflow_id)
        except Exception as e:
            self._handle_failure(workflow_id, retry_count, e)
            return

        if not reached_terminal:
            self.schedule(workflow_id)

    def _handle_failure(self, workflow_id: str, retry_count: int, error: Exception) -> None:
        max_retries = self._settings.poll_max_retries
        if retry_count < max_retries:
            delay = self._settings.poll_retry_delay * (retry_count + 1)
            logger.warning(
                "Status poll failed; retrying",
                extra={
                    "workflow_id": workflow_id,
                    "retry_count": retry_count + 1,
                    "delay_seconds": delay,
                    "error": str(error),
                },
            )
            self.schedule(workflow_id, delay=delay, retry_count=retry_count + 1)
            return

        logger.error(
            "Status poll failed; giving up",
            extra={"workflow_id": workflow_id, "retry_count": retry_count, "error": str(error)},
        )
        try:
            self._service.mark_failed(workflow_id, f"{MAX_RETRIES_REASON}: {error}")
        except ExecutionNotFoundError:
            logger.debug("Execution no longer exists", extra={"workflow_id": workflow_id})
        except Exception:
            logger.exception("Failed to record poll failure", extra={"workflow_id": workflow_id})
