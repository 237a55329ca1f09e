# backend/docgen/workers/pipeline_tasks.py
from __future__ import annotations

import logging

from ..db import session_scope
from ..errors import InvariantViolation
from ..services.market_rates import MarketRateCache
from ..services.pipeline_orchestrator import build_deps, trigger
from .celery_app import celery_app

log = logging.getLogger(__name__)

# one cache per worker process, shared by every task it runs
rate_cache = MarketRateCache()


@celery_app.task(name="docgen.workers.pipeline_tasks.run_project_pipeline")
def run_project_pipeline(project_id: int, triggered_at: str) -> dict:
    """
    Runs (or replays) one pipeline trigger.

    A repeated delivery of the same (project_id, triggered_at) returns the
    recorded outcome. When the original delivery died with its worker, the
    run is still marked running; once it is older than the run limit the
    redelivery closes it and moves the project to ERROR, so it can be
    retried. Invariant violations are already persisted as ERROR on the
    project and are not retried.
    """
    with session_scope() as db:
        try:
            return trigger(db, int(project_id), str(triggered_at), build_deps(rate_cache)).to_dict()
        except InvariantViolation as e:
            log.error("pipeline_task_invariant", extra={"project_id": project_id, "run_key": f"{project_id}:{triggered_at}"})
            return {"project_id": int(project_id), "triggered_at": triggered_at, "status": "error", "error_message": str(e)}
