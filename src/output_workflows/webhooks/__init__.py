"""Inbound webhook verification and dispatch."""

from __future__ import annotations

from output_workflows.webhooks.dispatcher import (
    PROGRESS_ACTION,
    ProgressHandler,
    WebhookDispatcher,
    WebhookHandler,
    normalize_payload,
)
from output_workflows.webhooks.verifier import WebhookVerifier, compute_signature

__all__ = [
    "PROGRESS_ACTION",
    "ProgressHandler",
    "WebhookDispatcher",
    "WebhookHandler",
    "WebhookVerifier",
    "compute_signature",
    "normalize_payload",
]
