"""FastAPI app factory.

Endpoints are thin wrappers over the execution service. The webhook endpoint
verifies the signature over the raw request body before anything is parsed
or mutated.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from output_workflows import __version__
from output_workflows.client import RemoteWorkflowClient
from output_workflows.config import WorkflowSettings
from output_workflows.errors import (
    APIError,
    ExecutionNotFoundError,
    InvalidPayloadError,
    MissingSecretError,
    VerificationError,
)
from output_workflows.execution.polling import PollingCoordinator, Scheduler
from output_workflows.execution.service import CompletionCallbacks, ExecutionService
from output_workflows.execution.state_machine import ExecutionRecord, ExecutionStatus
from output_workflows.execution.store import ExecutionStore
from output_workflows.server.models import CancelResponse, StartWorkflowRequest, WebhookResponse
from output_workflows.webhooks.dispatcher import WebhookDispatcher
from output_workflows.webhooks.verifier import WebhookVerifier

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Output-Signature"


def create_app(
    settings: WorkflowSettings | None = None,
    *,
    store: ExecutionStore | None = None,
    client: RemoteWorkflowClient | None = None,
    callbacks: CompletionCallbacks | None = None,
    scheduler: Scheduler | None = None,
) -> FastAPI:
    settings = settings or WorkflowSettings()
    store = store or ExecutionStore(settings.executions_state_file)
    if client is None and settings.api_url.strip():
        client = RemoteWorkflowClient(settings)

    service = ExecutionService(store=store, client=client, settings=settings, callbacks=callbacks)
    coordinator = PollingCoordinator(
        service=service, store=store, settings=settings, scheduler=scheduler
    )
    dispatcher = WebhookDispatcher(service=service, store=store)

    verifier: WebhookVerifier | None
    try:
        verifier = WebhookVerifier(settings.webhook_secret)
    except MissingSecretError:
        logger.warning("OUTPUT_WEBHOOK_SECRET is not set; webhook endpoint will reject requests")
        verifier = None

    app = FastAPI(
        title="Output Workflows",
        version=__version__,
        description="Execution tracking and webhook ingress for remote workflows.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings
    app.state.store = store
    app.state.service = service
    app.state.coordinator = coordinator
    app.state.dispatcher = dispatcher

    def _require_client() -> None:
        if client is None:
            raise HTTPException(
                status_code=409,
                detail="OUTPUT_API_URL is required for this endpoint",
            )

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.post("/webhooks/output", response_model=WebhookResponse)
    async def receive_webhook(request: Request) -> WebhookResponse:
        if verifier is None:
            raise HTTPException(status_code=503, detail="Webhook secret is not configured")

        body = await request.body()
        try:
            verifier.verify(body, request.headers.get(SIGNATURE_HEADER))
        except VerificationError as e:
            logger.warning("Rejected webhook", extra={"reason": str(e)})
            raise HTTPException(status_code=401, detail="Invalid webhook signature") from e

        try:
            handled = await run_in_threadpool(dispatcher.dispatch, body)
        except InvalidPayloadError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return WebhookResponse(handled=handled)

    @app.get("/api/v1/executions", response_model=list[ExecutionRecord])
    def list_executions(
        status: ExecutionStatus | None = None, workflow_name: str | None = None
    ) -> list[ExecutionRecord]:
        return store.list(status=status, workflow_name=workflow_name)

    @app.get("/api/v1/executions/{workflow_id}", response_model=ExecutionRecord)
    def get_execution(workflow_id: str) -> ExecutionRecord:
        record = store.get(workflow_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Execution not found")
        return record

    @app.post("/api/v1/executions", response_model=ExecutionRecord, status_code=201)
    def start_execution(req: StartWorkflowRequest) -> ExecutionRecord:
        _require_client()
        try:
            record = service.start(
                req.workflow_name,
                req.input,
                executable=req.executable,
                task_queue=req.task_queue,
            )
        except APIError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        if req.poll:
            coordinator.schedule(record.workflow_id)
        return record

    @app.post("/api/v1/executions/{workflow_id}/cancel", response_model=CancelResponse)
    def cancel_execution(workflow_id: str) -> CancelResponse:
        _require_client()
        try:
            outcome = service.cancel(workflow_id)
        except ExecutionNotFoundError as e:
            raise HTTPException(status_code=404, detail="Execution not found") from e
        return CancelResponse(ok=outcome.ok, status=outcome.status, reason=outcome.reason)

    return app
