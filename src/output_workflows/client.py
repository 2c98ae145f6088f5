"""HTTP client for the remote workflow API.

Every failure raised by ``requests`` (connection errors, socket timeouts,
non-2xx responses, undecodable bodies) is converted to
:class:`output_workflows.errors.APIError` before leaving this module.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any
from urllib.parse import quote

import requests

from output_workflows.config import WorkflowSettings
from output_workflows.errors import (
    APIError,
    ConfigurationError,
    WorkflowFailedError,
    WorkflowNotFoundError,
    WorkflowTimeoutError,
)
from output_workflows.responses import StatusSnapshot, WorkflowResult

logger = logging.getLogger(__name__)

_ALREADY_STOPPED_STATUSES = frozenset({404, 410})
_SNAKE_SEGMENT = re.compile(r"_([a-z])")


def _camelize(key: object) -> str:
    return _SNAKE_SEGMENT.sub(lambda m: m.group(1).upper(), str(key))


def camelize_keys(obj: dict[Any, Any]) -> dict[str, Any]:
    """Recursively convert snake_case mapping keys to camelCase."""

    out: dict[str, Any] = {}
    for key, value in obj.items():
        out[_camelize(key)] = camelize_keys(value) if isinstance(value, dict) else value
    return out


def _response_body(resp: requests.Response | None) -> Any:
    if resp is None:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text


class RemoteWorkflowClient:
    """Thin wrapper around a ``requests.Session`` for the workflow endpoints."""

    def __init__(
        self,
        settings: WorkflowSettings,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self._settings = settings
        self._base_url = settings.require_api_url().rstrip("/")
        self._timeout = settings.request_timeout

        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
                "User-Agent": "output-workflows",
            }
        )
        if settings.api_key:
            self._session.headers["Authorization"] = f"Basic {settings.api_key}"

    @property
    def settings(self) -> WorkflowSettings:
        return self._settings

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> RemoteWorkflowClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _workflow_url(self, workflow_id: str, suffix: str) -> str:
        if not workflow_id:
            raise ValueError("workflow_id is required")
        return self._url(f"/workflow/{quote(workflow_id, safe='')}/{suffix}")

    def _request(
        self,
        method: str,
        url: str,
        *,
        action: str,
        json_body: dict[str, Any] | None = None,
    ) -> requests.Response:
        try:
            resp = self._session.request(method, url, json=json_body, timeout=self._timeout)
            resp.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise APIError(
                f"Failed to {action}: {e}",
                response_status=status,
                response_body=_response_body(e.response),
            ) from e
        except requests.RequestException as e:
            raise APIError(f"Failed to {action}: {e}") from e
        return resp

    def _json(self, resp: requests.Response, *, action: str) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise APIError(
                f"Failed to {action}: response is not valid JSON",
                response_status=resp.status_code,
                response_body=resp.text,
            ) from e
        if not isinstance(data, dict):
            raise APIError(
                f"Failed to {action}: expected a JSON object",
                response_status=resp.status_code,
                response_body=data,
            )
        return data

    def start_workflow(
        self,
        workflow_name: str,
        input: dict[str, Any] | None = None,
        *,
        task_queue: str | None = None,
    ) -> str:
        """Start a workflow run and return the remote-assigned workflow id."""

        if not workflow_name:
            raise ValueError("workflow_name is required")

        params: dict[str, Any] = {"workflow_name": workflow_name, "input": input or {}}
        queue = task_queue or self._settings.task_queue
        if queue:
            params["task_queue"] = queue

        action = f"start workflow {workflow_name}"
        resp = self._request(
            "POST",
            self._url("/workflow/start"),
            action=action,
            json_body=camelize_keys(params),
        )
        body = self._json(resp, action=action)

        workflow_id = body.get("workflowId")
        if not isinstance(workflow_id, str) or not workflow_id:
            raise APIError(
                "No workflowId returned",
                response_status=resp.status_code,
                response_body=body,
            )

        logger.info(
            "Started workflow",
            extra={"workflow_name": workflow_name, "workflow_id": workflow_id},
        )
        return workflow_id

    def workflow_status(self, workflow_id: str) -> StatusSnapshot | None:
        """Return the current status, or ``None`` when the remote has no such run."""

        action = f"get status for workflow {workflow_id}"
        try:
            resp = self._request("GET", self._workflow_url(workflow_id, "status"), action=action)
        except APIError as e:
            if e.response_status == 404:
                return None
            raise
        return StatusSnapshot.from_json(self._json(resp, action=action))

    def workflow_result(self, workflow_id: str) -> WorkflowResult:
        action = f"get result for workflow {workflow_id}"
        resp = self._request("GET", self._workflow_url(workflow_id, "result"), action=action)
        return WorkflowResult.from_json(self._json(resp, action=action))

    def cancel_workflow(self, workflow_id: str) -> bool:
        """Request cancellation.

        Returns:
            True if the remote accepted the stop request, False if the run no
            longer exists there (404/410). Cancellation is idempotent.
        """

        try:
            self._request(
                "PATCH",
                self._workflow_url(workflow_id, "stop"),
                action=f"cancel workflow {workflow_id}",
            )
        except APIError as e:
            if e.response_status in _ALREADY_STOPPED_STATUSES:
                logger.info(
                    "Workflow already stopped",
                    extra={"workflow_id": workflow_id, "response_status": e.response_status},
                )
                return False
            raise
        return True

    def wait_for_completion(
        self,
        workflow_id: str,
        *,
        poll_interval: float | None = None,
        timeout: float | None = None,
    ) -> WorkflowResult:
        """Block until the run completes, polling its status.

        Raises:
            WorkflowTimeoutError: ``timeout`` seconds elapsed. Checked before
                every remote call, so no request starts after the budget.
            WorkflowNotFoundError: the remote has no record of the run.
            WorkflowFailedError: the run ended in a failed-family status.
        """

        if poll_interval is None:
            poll_interval = self._settings.default_poll_interval
        if timeout is None:
            timeout = self._settings.default_timeout
        if poll_interval <= 0:
            raise ConfigurationError("poll_interval must be > 0")
        if timeout <= 0:
            raise ConfigurationError("timeout must be > 0")

        started = time.monotonic()
        while True:
            elapsed = time.monotonic() - started
            if elapsed > timeout:
                raise WorkflowTimeoutError(
                    f"Workflow {workflow_id} timed out after {timeout} seconds"
                )

            snapshot = self.workflow_status(workflow_id)
            if snapshot is None:
                raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")

            if snapshot.completed:
                return self.workflow_result(workflow_id)
            if snapshot.failed:
                raise WorkflowFailedError(
                    f"Workflow {workflow_id} failed with status: {snapshot.status_name}",
                    workflow_id=workflow_id,
                    status_name=snapshot.status_name,
                )

            logger.debug(
                "Workflow still running",
                extra={"workflow_id": workflow_id, "status_name": snapshot.status_name},
            )
            time.sleep(poll_interval)
