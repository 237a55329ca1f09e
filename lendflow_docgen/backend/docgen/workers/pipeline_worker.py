# backend/docgen/workers/pipeline_worker.py
from __future__ import annotations

import logging

from sqlalchemy import select

from docgen.db import session_scope
from docgen.errors import InvariantViolation
from docgen.logging_config import configure_logging
from docgen.models import Project
from docgen.services import project_lifecycle as lc
from docgen.services.market_rates import MarketRateCache
from docgen.services.pipeline_orchestrator import build_deps, new_trigger_token, recover_stale_run, trigger

log = logging.getLogger(__name__)


def main(limit: int = 50) -> None:
    """
    Manual worker (CLI):
    - Useful in dev if you don't want celery running
    - Moves projects held by a lost run to ERROR so they can be retried
    - Picks up projects waiting in GENERATING_DOCS with no run holding them
    """
    configure_logging()
    deps = build_deps(MarketRateCache())
    with session_scope() as db:
        held = db.scalars(
            select(Project.id)
            .where(Project.status == lc.GENERATING_DOCS, Project.active_run_key.is_not(None))
            .order_by(Project.id.asc())
            .limit(limit)
        ).all()
        db.rollback()
        for pid in held:
            if recover_stale_run(db, int(pid), deps):
                print(f"[pipeline_worker] project_id={pid} lost its run; moved to ERROR")

        ids = db.scalars(
            select(Project.id)
            .where(Project.status == lc.GENERATING_DOCS, Project.active_run_key.is_(None))
            .order_by(Project.id.asc())
            .limit(limit)
        ).all()
        db.rollback()

        for pid in ids:
            try:
                out = trigger(db, int(pid), new_trigger_token(), deps)
            except InvariantViolation:
                log.error("pipeline_worker_invariant", extra={"project_id": pid}, exc_info=True)
                continue
            print(f"[pipeline_worker] project_id={pid} status={out.status} docs={out.docs_generated}")


if __name__ == "__main__":
    main()
