"""Execution record model and its transition rules.

Transitions are pure functions: they take a record and return the updated
copy. Persistence and concurrency control live in
:mod:`output_workflows.execution.store`.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from output_workflows.errors import IllegalTransitionError


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES: frozenset[ExecutionStatus] = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED}
)

ALLOWED_TRANSITIONS: dict[ExecutionStatus, set[ExecutionStatus]] = {
    ExecutionStatus.PENDING: {
        ExecutionStatus.RUNNING,
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
    },
    ExecutionStatus.RUNNING: {
        ExecutionStatus.RUNNING,
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
    },
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.FAILED: set(),
}


def is_terminal(status: ExecutionStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_active(status: ExecutionStatus) -> bool:
    return status not in TERMINAL_STATUSES


def utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


class ProgressEntry(BaseModel):
    name: str
    extra_info: str | None = None
    at: str


class ExecutableRef(BaseModel):
    """Weak reference to the domain object that owns an execution.

    Only used to look up a completion callback; the record never loads or
    owns the referenced object.
    """

    type: str
    id: str


class ExecutionRecord(BaseModel):
    """Locally persisted state of one remote workflow run."""

    workflow_id: str = Field(min_length=1)
    workflow_name: str = Field(min_length=1)
    status: ExecutionStatus = ExecutionStatus.PENDING

    started_at: str | None = None
    completed_at: str | None = None
    error_message: str | None = None

    progress: list[ProgressEntry] = Field(default_factory=list)
    executable: ExecutableRef | None = None

    created_at: str = Field(default_factory=utc_iso_now)
    updated_at: str = Field(default_factory=utc_iso_now)

    # Optimistic concurrency token; bumped by every persisted write.
    version: int = 0

    @property
    def terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def active(self) -> bool:
        return is_active(self.status)


def transition(
    record: ExecutionRecord,
    to: ExecutionStatus,
    *,
    error_message: str | None = None,
    now: str | None = None,
) -> ExecutionRecord:
    """Move ``record`` to ``to``, stamping the lifecycle timestamps.

    ``started_at`` is set by the first move into running and ``completed_at``
    by the move into a terminal state; neither is ever overwritten.
    """

    allowed = ALLOWED_TRANSITIONS.get(record.status, set())
    if to not in allowed:
        raise IllegalTransitionError(
            f"Illegal transition for {record.workflow_id}: {record.status.value} -> {to.value}"
        )

    now = now or utc_iso_now()
    updates: dict[str, object] = {"status": to}
    if to == ExecutionStatus.RUNNING and record.started_at is None:
        updates["started_at"] = now
    if is_terminal(to):
        updates["completed_at"] = record.completed_at or now
        if to == ExecutionStatus.FAILED:
            updates["error_message"] = error_message
    return record.model_copy(update=updates)


def mark_running(record: ExecutionRecord) -> ExecutionRecord:
    return transition(record, ExecutionStatus.RUNNING)


def mark_completed(record: ExecutionRecord) -> ExecutionRecord:
    return transition(record, ExecutionStatus.COMPLETED)


def mark_failed(record: ExecutionRecord, reason: str | None = None) -> ExecutionRecord:
    return transition(record, ExecutionStatus.FAILED, error_message=reason)


def append_progress(
    record: ExecutionRecord,
    *,
    name: str,
    extra_info: str | None,
    max_entries: int,
) -> ExecutionRecord:
    """Prepend a progress entry and keep at most ``max_entries``.

    Progress implies the run has started, so a pending record is promoted to
    running.
    """

    if max_entries <= 0:
        raise ValueError("max_entries must be > 0")
    if record.terminal:
        raise IllegalTransitionError(
            f"Cannot append progress to terminal execution {record.workflow_id}"
        )

    entry = ProgressEntry(name=name, extra_info=extra_info, at=utc_iso_now())
    progress = [entry, *record.progress][:max_entries]
    updated = record.model_copy(update={"progress": progress})
    if updated.status == ExecutionStatus.PENDING:
        updated = mark_running(updated)
    return updated


def clear_progress(record: ExecutionRecord) -> ExecutionRecord:
    if not record.terminal:
        raise IllegalTransitionError(
            f"Progress can only be cleared once terminal: {record.workflow_id} is "
            f"{record.status.value}"
        )
    return record.model_copy(update={"progress": []})
