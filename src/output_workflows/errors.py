"""Error taxonomy for output-workflows.

Transport failures never cross the client boundary as ``requests`` exceptions;
they are normalized into :class:`APIError`.
"""

from __future__ import annotations

from typing import Any


class OutputWorkflowsError(Exception):
    """Base class for all output-workflows errors."""


class ConfigurationError(OutputWorkflowsError):
    """Raised when settings are missing or invalid."""


class APIError(OutputWorkflowsError):
    """Raised when a request to the remote workflow API fails."""

    def __init__(
        self,
        message: str,
        *,
        response_status: int | None = None,
        response_body: Any = None,
    ) -> None:
        super().__init__(message)
        self.response_status = response_status
        self.response_body = response_body


class WorkflowTimeoutError(OutputWorkflowsError, TimeoutError):
    """Raised when a synchronous wait exceeds its time budget."""


class WorkflowNotFoundError(OutputWorkflowsError):
    """Raised when the remote API has no record of a workflow during a wait."""


class WorkflowFailedError(OutputWorkflowsError):
    """Raised when the remote API reports a failed-family terminal status."""

    def __init__(self, message: str, *, workflow_id: str, status_name: str) -> None:
        super().__init__(message)
        self.workflow_id = workflow_id
        self.status_name = status_name


class MissingSecretError(OutputWorkflowsError):
    pass


class VerificationError(OutputWorkflowsError):
    pass


class InvalidPayloadError(OutputWorkflowsError):
    pass


class ExecutionNotFoundError(OutputWorkflowsError, KeyError):
    def __str__(self) -> str:
        return f"Execution not found: {self.args[0]!r}" if self.args else "Execution not found"


class DuplicateExecutionError(OutputWorkflowsError):
    pass


class ConcurrentUpdateError(OutputWorkflowsError):
    """Raised when a compare-and-update loses against a concurrent writer."""


class IllegalTransitionError(OutputWorkflowsError, ValueError):
    pass


class StateFileError(OutputWorkflowsError):
    """Raised when the execution state file exists but cannot be decoded."""
