"""Parsed responses from the remote workflow API.

Both types are ephemeral views produced fresh per request. Nothing here is
persisted locally.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

STATUS_PENDING = "PENDING"
STATUS_RUNNING = "RUNNING"
STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"
STATUS_TERMINATED = "TERMINATED"
STATUS_TIMED_OUT = "TIMED_OUT"
STATUS_CANCELED = "CANCELED"

FAILED_STATUSES: frozenset[str] = frozenset(
    {STATUS_FAILED, STATUS_TERMINATED, STATUS_TIMED_OUT, STATUS_CANCELED}
)


def _str_or_none(value: object) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _int_or_none(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    """The remote authority's view of a workflow run at one point in time."""

    workflow_id: str
    status_name: str
    run_id: str | None = None
    status_code: int | None = None
    history_url: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    @staticmethod
    def from_json(obj: dict[str, Any]) -> StatusSnapshot:
        status = obj.get("status")
        if isinstance(status, dict):
            name = status.get("name")
            code = status.get("code")
        else:
            name = status if isinstance(status, str) else obj.get("statusName")
            code = obj.get("statusCode")

        return StatusSnapshot(
            workflow_id=_str_or_none(obj.get("workflowId")) or "",
            status_name=(_str_or_none(name) or "").upper(),
            run_id=_str_or_none(obj.get("runId")),
            status_code=_int_or_none(code),
            history_url=_str_or_none(obj.get("historyUrl")),
            started_at=_str_or_none(obj.get("startedAt") or obj.get("startTime")),
            completed_at=_str_or_none(obj.get("completedAt") or obj.get("closeTime")),
        )

    @property
    def pending(self) -> bool:
        return self.status_name == STATUS_PENDING

    @property
    def running(self) -> bool:
        return self.status_name == STATUS_RUNNING

    @property
    def completed(self) -> bool:
        return self.status_name == STATUS_COMPLETED

    @property
    def failed(self) -> bool:
        return self.status_name in FAILED_STATUSES

    @property
    def terminal(self) -> bool:
        return self.completed or self.failed

    def to_json(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class WorkflowResult:
    """Input/output payload of a finished run.

    Callers extract what they need into their own models; the execution table
    never stores it.
    """

    workflow_id: str
    run_id: str | None = None
    input: Any = None
    output: Any = None
    trace: Any = None

    @staticmethod
    def from_json(obj: dict[str, Any]) -> WorkflowResult:
        return WorkflowResult(
            workflow_id=_str_or_none(obj.get("workflowId")) or "",
            run_id=_str_or_none(obj.get("runId")),
            input=obj.get("input"),
            output=obj.get("output"),
            trace=obj.get("trace"),
        )

    def to_json(self) -> dict[str, object]:
        return asdict(self)
