# backend/docgen/main.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .errors import InvariantViolation, PipelineError, ProjectInputError, ProjectNotFound
from .logging_config import configure_logging
from .middleware.request_id import RequestIdMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware
from .routers.analysis import router as analysis_router
from .routers.documents import router as documents_router
from .routers.health import router as health_router
from .routers.projects import router as projects_router
from .services.pipeline_orchestrator import PipelineDeps, build_deps

log = logging.getLogger(__name__)

API_PREFIX = "/api"


def _cors_origins() -> list[str]:
    val = getattr(settings, "cors_allow_origins", ["*"])
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


def _error_status(err: PipelineError) -> int:
    if isinstance(err, InvariantViolation):
        return 409
    if isinstance(err, ProjectInputError):
        return 422
    if isinstance(err, ProjectNotFound):
        return 404
    # prose / storage / timeout surfacing outside the pipeline loop
    return 502


async def _pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    status = _error_status(exc)
    body: dict = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ProjectInputError):
        body["missing"] = exc.missing
    if status >= 500:
        log.warning("pipeline_error_response", extra={"status": status}, exc_info=exc)
    return JSONResponse(status_code=status, content=body)


def create_app(deps: Optional[PipelineDeps] = None) -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="LendFlow DocGen",
        version=getattr(settings, "decision_version", "dev"),
    )

    # the app owns the market-rate cache and the pipeline collaborators
    app.state.pipeline_deps = deps or build_deps()

    # added last = outermost: request id is set before the request log line reads it
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PipelineError, _pipeline_error_handler)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(projects_router, prefix=API_PREFIX)
    app.include_router(documents_router, prefix=API_PREFIX)
    app.include_router(analysis_router, prefix=API_PREFIX)
    return app


app = create_app()
