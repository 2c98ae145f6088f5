"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from output_workflows.execution.state_machine import ExecutableRef, ExecutionStatus


class StartWorkflowRequest(BaseModel):
    workflow_name: str = Field(min_length=1)
    input: dict[str, Any] = Field(default_factory=dict)
    task_queue: str | None = None
    executable: ExecutableRef | None = None
    poll: bool = True


class CancelResponse(BaseModel):
    ok: bool
    status: ExecutionStatus
    reason: str | None = None


class WebhookResponse(BaseModel):
    handled: bool
