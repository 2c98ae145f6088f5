"""FastAPI server adapter for output-workflows.

Design intent:
- Keep lifecycle logic in `output_workflows.execution.*`
- Keep server-specific concerns (routing, signature headers, HTTP errors) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from output_workflows.server.app import create_app
