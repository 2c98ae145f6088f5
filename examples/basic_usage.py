#!/usr/bin/env python3
"""Programmatic workflow execution example.

This demonstrates using the components directly:

* load settings from `.env`
* start a remote workflow and track it in `output_state/executions.json`
* register a completion callback for the owning domain object
* block until the run finishes and print its output
"""

from __future__ import annotations

import argparse
import json
from typing import Sequence

from output_workflows.client import RemoteWorkflowClient
from output_workflows.config import WorkflowSettings
from output_workflows.errors import WorkflowFailedError, WorkflowTimeoutError
from output_workflows.execution.service import CompletionCallbacks, ExecutionService
from output_workflows.execution.state_machine import ExecutableRef, ExecutionRecord
from output_workflows.execution.store import ExecutionStore
from output_workflows.logging import configure_logging


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a remote workflow and wait for it.")
    parser.add_argument("--workflow", required=True, help="Remote workflow name")
    parser.add_argument("--input", default="{}", help="Workflow input as a JSON object")
    parser.add_argument("--report-id", default="1", help="Id of the owning report (optional)")
    parser.add_argument("--timeout", type=float, default=None, help="Give up after N seconds")
    return parser.parse_args(argv)


def _report_finished(record: ExecutionRecord) -> None:
    print(f"Report {record.executable.id if record.executable else '?'} -> {record.status.value}")


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = WorkflowSettings()
    configure_logging(settings.log_level)

    callbacks = CompletionCallbacks()
    callbacks.register("Report", _report_finished)

    with RemoteWorkflowClient(settings) as client:
        service = ExecutionService(
            store=ExecutionStore(settings.executions_state_file),
            client=client,
            callbacks=callbacks,
        )
        record = service.start(
            args.workflow,
            json.loads(args.input),
            executable=ExecutableRef(type="Report", id=args.report_id),
        )
        print(f"Started {record.workflow_name}: {record.workflow_id}")

        try:
            result = service.wait_for_completion(record.workflow_id, timeout=args.timeout)
        except (WorkflowFailedError, WorkflowTimeoutError) as exc:
            print(f"Workflow did not complete: {exc}")
            return 1

    print(json.dumps(result.output, indent=2, default=str))
    print(f"Persisted to: {settings.executions_state_file}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
