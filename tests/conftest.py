"""Test configuration and fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest
import requests

from output_workflows.client import RemoteWorkflowClient
from output_workflows.config import WorkflowSettings
from output_workflows.execution.service import CompletionCallbacks, ExecutionService
from output_workflows.execution.store import ExecutionStore

API_URL = "http://output.test"


def make_response(status: int, body: Any = None, *, text: str | None = None) -> requests.Response:
    """Build a real ``requests.Response`` without any network I/O."""

    resp = requests.Response()
    resp.status_code = status
    resp.url = API_URL
    resp.encoding = "utf-8"
    if text is not None:
        resp._content = text.encode("utf-8")
    elif body is not None:
        resp._content = json.dumps(body).encode("utf-8")
        resp.headers["Content-Type"] = "application/json"
    else:
        resp._content = b""
    return resp


class FakeClock:
    """Deterministic replacement for ``time.monotonic`` / ``time.sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def settings(tmp_path: Path) -> WorkflowSettings:
    """Provide settings isolated from the developer's environment and `.env`."""
    return WorkflowSettings(
        _env_file=None,
        api_url=API_URL,
        api_key="test-key",
        webhook_secret="test-secret",
        default_timeout=30,
        default_poll_interval=1,
        max_progress_entries=5,
        poll_max_retries=3,
        poll_retry_delay=10,
        state_path=tmp_path / "output_state",
    )


@pytest.fixture
def store(settings: WorkflowSettings) -> ExecutionStore:
    return ExecutionStore(settings.executions_state_file)


@pytest.fixture
def mock_client(settings: WorkflowSettings) -> Mock:
    client = Mock(spec=RemoteWorkflowClient)
    client.settings = settings
    return client


@pytest.fixture
def callbacks() -> CompletionCallbacks:
    return CompletionCallbacks()


@pytest.fixture
def service(
    store: ExecutionStore,
    mock_client: Mock,
    settings: WorkflowSettings,
    callbacks: CompletionCallbacks,
) -> ExecutionService:
    return ExecutionService(
        store=store, client=mock_client, settings=settings, callbacks=callbacks
    )


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    import output_workflows.client as client_module

    fake = FakeClock()
    monkeypatch.setattr(client_module.time, "monotonic", fake.monotonic)
    monkeypatch.setattr(client_module.time, "sleep", fake.sleep)
    return fake


@pytest.fixture
def http_response() -> Any:
    return make_response
