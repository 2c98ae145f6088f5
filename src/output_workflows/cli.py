"""CLI entrypoint for output-workflows.

Each command builds its collaborators from :class:`WorkflowSettings` and runs a
single operation against the local execution store and the remote API.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError

from output_workflows import __version__
from output_workflows.client import RemoteWorkflowClient
from output_workflows.config import WorkflowSettings
from output_workflows.errors import (
    ConfigurationError,
    DuplicateExecutionError,
    ExecutionNotFoundError,
    OutputWorkflowsError,
)
from output_workflows.execution.service import ExecutionService
from output_workflows.execution.state_machine import ExecutionStatus
from output_workflows.execution.store import ExecutionStore
from output_workflows.logging import configure_logging

logger = logging.getLogger(__name__)


def _parse_input(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"--input must be a JSON object: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise argparse.ArgumentTypeError("--input must be a JSON object")
    return parsed


def _print_json(obj: object) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="output-workflows",
        description="Start and track workflows on a remote orchestration API",
    )
    parser.add_argument("--version", action="version", version=f"output-workflows {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser("start", help="Start a workflow and track it locally")
    start.add_argument("workflow_name", help="Name of the remote workflow")
    start.add_argument("--input", default=None, help="Workflow input as a JSON object")
    start.add_argument("--task-queue", default=None, help="Remote task queue override")

    status = subparsers.add_parser("status", help="Show local and remote status of a run")
    status.add_argument("workflow_id")

    poll = subparsers.add_parser("poll", help="Reconcile a run with the remote API once")
    poll.add_argument("workflow_id")

    wait = subparsers.add_parser("wait", help="Block until a run finishes and print its output")
    wait.add_argument("workflow_id")
    wait.add_argument(
        "--poll-interval", type=float, default=None, help="Seconds between status polls"
    )
    wait.add_argument("--timeout", type=float, default=None, help="Give up after N seconds")

    cancel = subparsers.add_parser("cancel", help="Cancel a run")
    cancel.add_argument("workflow_id")

    list_cmd = subparsers.add_parser("list", help="List local execution records")
    list_cmd.add_argument(
        "--status",
        choices=[s.value for s in ExecutionStatus],
        default=None,
        help="Only show records in this status",
    )

    purge = subparsers.add_parser("purge", help="Delete old terminal execution records")
    purge.add_argument("--days", type=int, default=30, help="Minimum age in days")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = WorkflowSettings()
    except ValidationError as e:
        # Logging isn't configured yet.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)
    store = ExecutionStore(settings.executions_state_file)

    try:
        if args.command == "list":
            status_filter = ExecutionStatus(args.status) if args.status else None
            _print_json([r.model_dump(mode="json") for r in store.list(status=status_filter)])
            return 0

        if args.command == "purge":
            removed = store.purge_terminal(older_than_days=args.days)
            print(f"Purged {removed} execution(s)")
            return 0

        with RemoteWorkflowClient(settings) as client:
            service = ExecutionService(store=store, client=client, settings=settings)

            if args.command == "start":
                record = service.start(
                    args.workflow_name,
                    _parse_input(args.input),
                    task_queue=args.task_queue,
                )
                print(record.workflow_id)
                return 0

            if args.command == "status":
                local = store.get(args.workflow_id)
                remote = client.workflow_status(args.workflow_id)
                _print_json(
                    {
                        "local": local.model_dump(mode="json") if local else None,
                        "remote": remote.to_json() if remote else None,
                    }
                )
                return 0

            if args.command == "poll":
                service.poll_status(args.workflow_id)
                record = store.get_or_raise(args.workflow_id)
                print(f"{record.workflow_id}: {record.status.value}")
                return 0

            if args.command == "wait":
                result = service.wait_for_completion(
                    args.workflow_id,
                    poll_interval=args.poll_interval,
                    timeout=args.timeout,
                )
                _print_json(result.output)
                return 0

            if args.command == "cancel":
                outcome = service.cancel(args.workflow_id)
                print(outcome.reason or outcome.status.value)
                return 0 if outcome.ok else 1

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except argparse.ArgumentTypeError as e:
        print(str(e), file=sys.stderr)
        return 2

    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    except (ExecutionNotFoundError, DuplicateExecutionError) as e:
        print(str(e), file=sys.stderr)
        return 1

    except OutputWorkflowsError as e:
        logger.error("Command failed", extra={"command": args.command, "error": str(e)})
        print(str(e), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
