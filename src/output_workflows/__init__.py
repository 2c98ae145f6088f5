"""output-workflows.

Track the lifecycle of workflows executed by a remote orchestration API:
- start runs and persist a local execution record per run
- reconcile local state by polling, or block on a synchronous wait
- accept signed progress webhooks
"""

__version__ = "0.1.0"

from output_workflows.client import RemoteWorkflowClient
from output_workflows.config import WorkflowSettings
from output_workflows.execution.service import (
    CancelOutcome,
    CompletionCallbacks,
    ExecutionService,
)
from output_workflows.execution.state_machine import (
    ExecutableRef,
    ExecutionRecord,
    ExecutionStatus,
)
from output_workflows.execution.store import ExecutionStore

__all__ = [
    "__version__",
    "CancelOutcome",
    "CompletionCallbacks",
    "ExecutableRef",
    "ExecutionRecord",
    "ExecutionService",
    "ExecutionStatus",
    "ExecutionStore",
    "RemoteWorkflowClient",
    "WorkflowSettings",
]
