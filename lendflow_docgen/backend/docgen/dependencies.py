# backend/docgen/dependencies.py
from __future__ import annotations

from fastapi import Request

from .services.pipeline_orchestrator import PipelineDeps


def get_pipeline_deps(request: Request) -> PipelineDeps:
    """Collaborators owned by the app instance (see main.create_app)."""
    return request.app.state.pipeline_deps
