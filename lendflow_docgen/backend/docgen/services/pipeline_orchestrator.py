# backend/docgen/services/pipeline_orchestrator.py
"""
Per-project document pipeline.

trigger() is idempotent on (project_id, triggered_at): the PipelineRun
unique constraint records every key once, and a repeated key returns the
recorded outcome. Execution is gated by an atomic claim on the project
row (status GENERATING_DOCS and no active run), so a stale or concurrent
trigger is recorded as skipped instead of running twice.

Each document is one unit of work: dispatch and the storage write run in
a worker thread under a per-type timeout, while every database write
stays on the caller's thread and session.
"""
from __future__ import annotations

import contextvars
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..documents.dispatcher import DispatchResult, generate_document
from ..documents.renderer import DOCX_CONTENT_TYPE, render_placeholder
from ..domain.audit import audit_document, audit_project
from ..domain.catalog import FailurePolicy, filter_doc_types, is_ai_doc, pipeline_config
from ..domain.findings import Finding, VerificationIssue, compliance_status_for
from ..domain.project_context import DocumentInput, build_document_input
from ..errors import (
    InvariantViolation,
    PipelineConflict,
    ProjectNotFound,
    StepTimeoutError,
    StorageError,
    truncate_error,
)
from ..integrations.prose_client import OpenAICompatibleProseClient, ProseClient
from ..logging_config import log_context
from ..models import GeneratedDocument, PipelineRun, Project
from . import project_lifecycle as lc
from .analysis_service import load_extractions
from .document_versions import current_document, insert_document, next_version
from .market_rates import MarketRateCache
from .storage import ArtifactStorage, LocalArtifactStorage, artifact_key

log = logging.getLogger(__name__)

TERMINAL_RUN = {"complete", "needs_review", "error", "skipped"}


@dataclass
class PipelineDeps:
    prose_client: ProseClient
    storage: ArtifactStorage
    rate_cache: MarketRateCache
    ai_timeout_seconds: float = field(default_factory=lambda: settings.ai_step_timeout_seconds)
    deterministic_timeout_seconds: float = field(default_factory=lambda: settings.deterministic_step_timeout_seconds)

    def timeout_for(self, module: str, doc_type: str) -> float:
        return self.ai_timeout_seconds if is_ai_doc(module, doc_type) else self.deterministic_timeout_seconds


def build_deps(rate_cache: Optional[MarketRateCache] = None) -> PipelineDeps:
    return PipelineDeps(
        prose_client=OpenAICompatibleProseClient(),
        storage=LocalArtifactStorage(),
        rate_cache=rate_cache or MarketRateCache(),
    )


@dataclass(frozen=True)
class TriggerResult:
    project_id: int
    triggered_at: str
    status: str  # complete|needs_review|error|skipped|running
    run_id: Optional[int] = None
    docs_generated: int = 0
    idempotent: bool = False
    error_message: Optional[str] = None
    error_step: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "triggered_at": self.triggered_at,
            "status": self.status,
            "run_id": self.run_id,
            "docs_generated": self.docs_generated,
            "idempotent": self.idempotent,
            "error_message": self.error_message,
            "error_step": self.error_step,
        }


@dataclass(frozen=True)
class RetryResult:
    triggered_at: str
    cleanup: dict[str, int]
    run: Optional[TriggerResult] = None


def new_trigger_token() -> str:
    return datetime.utcnow().isoformat(timespec="microseconds")


def _run_key(project_id: int, triggered_at: str) -> str:
    return f"{project_id}:{triggered_at}"


def _result_from_run(run: PipelineRun, *, idempotent: bool) -> TriggerResult:
    return TriggerResult(
        project_id=run.project_id,
        triggered_at=run.triggered_at,
        status=run.status,
        run_id=run.id,
        docs_generated=int(run.docs_generated or 0),
        idempotent=idempotent,
        error_message=run.error_message,
        error_step=run.error_step,
    )


def _get_project(db: Session, project_id: int) -> Project:
    p = db.get(Project, int(project_id), populate_existing=True)
    if p is None:
        raise ProjectNotFound(project_id)
    return p


# -------------------- lost runs --------------------

WORKER_LOST_STEP = "worker_lost"


def run_limit_seconds(module: str, deps: PipelineDeps) -> float:
    """Longest a healthy run can take: every unit hits its limit, plus grace."""
    try:
        doc_types = pipeline_config(module).doc_types
    except ValueError:
        doc_types = ()
    return sum(deps.timeout_for(module, dt) for dt in doc_types) + settings.stale_run_grace_seconds


def _close_if_stale(db: Session, run: PipelineRun, module: str, deps: PipelineDeps, now: datetime) -> bool:
    limit = run_limit_seconds(module, deps)
    elapsed = (now - run.started_at).total_seconds()
    if run.status != "running" or elapsed <= limit:
        return False

    msg = f"Run lost its worker: still running after {limit:g}s"
    n = db.execute(
        update(PipelineRun)
        .where(PipelineRun.id == run.id, PipelineRun.status == "running")
        .values(status="error", error_message=msg, error_step=WORKER_LOST_STEP, finished_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    if not n:
        db.rollback()
        return False
    run_key = _run_key(run.project_id, run.triggered_at)
    lc.mark_error(db, run.project_id, step=WORKER_LOST_STEP, err=msg, run_key=run_key)
    db.commit()
    log.warning("pipeline_run_lost", extra={"project_id": run.project_id, "run_key": run_key, "elapsed_ms": int(elapsed * 1000)})
    return True


def recover_stale_run(db: Session, project_id: int, deps: PipelineDeps, *, now: Optional[datetime] = None) -> bool:
    """
    A run still marked running past run_limit_seconds died with its worker
    and will never release the project. Close it as error and move the
    project to ERROR so retry can take over. Regeneration holds are not runs
    and are left alone.
    """
    project = db.get(Project, int(project_id), populate_existing=True)
    if project is None or not project.active_run_key:
        return False
    holder, _, triggered_at = project.active_run_key.partition(":")
    if holder != str(project.id):
        return False
    run = db.scalar(
        select(PipelineRun).where(PipelineRun.project_id == project.id, PipelineRun.triggered_at == triggered_at)
    )
    if run is None:
        return False
    return _close_if_stale(db, run, project.module, deps, now or datetime.utcnow())


# -------------------- unit of work --------------------

def _execute_unit(
    inp: DocumentInput,
    doc_type: str,
    storage_key: str,
    deps: PipelineDeps,
    *,
    feedback: Optional[str] = None,
) -> DispatchResult:
    """
    Dispatch + storage put bounded by the doc type's timeout. A call that
    outlives its limit keeps running in its thread but leaves nothing behind:
    the abandoned flag is checked before the put, and a put that was already
    in flight when the limit hit is deleted once it lands. Placeholders for a
    timed-out unit go to a separate key.
    """
    seconds = deps.timeout_for(inp.module, doc_type)
    abandoned = threading.Event()

    def work() -> DispatchResult:
        result = generate_document(inp, doc_type, deps.prose_client, rate_cache=deps.rate_cache, feedback=feedback)
        if abandoned.is_set():
            raise StepTimeoutError(doc_type, seconds)
        deps.storage.put(storage_key, result.buffer, DOCX_CONTENT_TYPE)
        if abandoned.is_set():
            deps.storage.delete(storage_key)
            raise StepTimeoutError(doc_type, seconds)
        return result

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"docgen-{doc_type}")
    try:
        # carry the bound log fields into the worker thread
        future = pool.submit(contextvars.copy_context().run, work)
        try:
            return future.result(timeout=seconds)
        except FutureTimeout:
            abandoned.set()
            future.cancel()
            raise StepTimeoutError(doc_type, seconds) from None
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


def _persist_success(
    db: Session,
    inp: DocumentInput,
    doc_type: str,
    version: int,
    storage_key: str,
    result: DispatchResult,
    *,
    feedback: Optional[str] = None,
) -> GeneratedDocument:
    compliance = compliance_status_for(result.compliance_checks)
    return insert_document(
        db,
        project_id=inp.project_id,
        doc_type=doc_type,
        resolved_doc_type=result.resolved_doc_type,
        version=version,
        storage_key=storage_key,
        status="flagged" if compliance == "flagged" else "draft",
        compliance_status=compliance,
        compliance_issues=result.compliance_checks,
        verification_status="passed" if result.verification.passed else "failed",
        verification_issues=result.verification.issues,
        checks_run=result.verification.checks_run,
        checks_passed=result.verification.checks_passed,
        feedback=feedback,
    )


def _persist_placeholder(
    db: Session,
    inp: DocumentInput,
    doc_type: str,
    version: int,
    storage_key: str,
    err: BaseException,
    deps: PipelineDeps,
) -> GeneratedDocument:
    finding = Finding(
        severity="critical",
        section="generation",
        description=f"Document generation failed: {truncate_error(err, settings.placeholder_error_max_len)}",
        recommendation="Regenerate this document or prepare it manually before closing.",
    )
    try:
        deps.storage.put(storage_key, render_placeholder(doc_type, inp, finding), DOCX_CONTENT_TYPE)
    except StorageError:
        # the row below still carries the flag for reviewers
        log.warning(
            "placeholder_store_failed",
            extra={"project_id": inp.project_id, "doc_type": doc_type, "version": version},
            exc_info=True,
        )

    return insert_document(
        db,
        project_id=inp.project_id,
        doc_type=doc_type,
        version=version,
        storage_key=storage_key,
        status="flagged",
        compliance_status="flagged",
        compliance_issues=[finding],
        verification_status="failed",
        verification_issues=[
            VerificationIssue(field="generation", expected="generated document", found="generation failed", severity="critical")
        ],
    )


# -------------------- run bookkeeping --------------------

def _finish_run(db: Session, run_id: int, *, status: str, docs: int, err: Optional[str] = None, step: Optional[str] = None) -> None:
    db.execute(
        update(PipelineRun)
        .where(PipelineRun.id == run_id)
        .values(
            status=status,
            docs_generated=docs,
            error_message=truncate_error(err, settings.error_message_max_len) if err else None,
            error_step=step,
            finished_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()


def current_documents(db: Session, project_id: int) -> list[GeneratedDocument]:
    rows = db.scalars(
        select(GeneratedDocument)
        .where(GeneratedDocument.project_id == project_id)
        .order_by(GeneratedDocument.doc_type.asc(), GeneratedDocument.version.asc())
    ).all()
    latest: dict[str, GeneratedDocument] = {}
    for r in rows:
        latest[r.doc_type] = r
    return [latest[k] for k in sorted(latest)]


def _aggregate_status(db: Session, project_id: int) -> str:
    docs = current_documents(db, project_id)
    return lc.NEEDS_REVIEW if any(d.compliance_status == "flagged" for d in docs) else lc.COMPLETE


def _finalize(db: Session, project_id: int, run_key: str) -> str:
    held = (Project.active_run_key == run_key,)
    if not lc.compare_and_set_status(db, project_id, expected=lc.GENERATING_DOCS, new_status=lc.COMPLIANCE_REVIEW, extra_where=held):
        db.rollback()
        raise PipelineConflict(project_id, lc.GENERATING_DOCS, f"project {project_id} left GENERATING_DOCS during run {run_key}")
    db.commit()

    final = _aggregate_status(db, project_id)
    n = lc.compare_and_set_status(
        db,
        project_id,
        expected=lc.COMPLIANCE_REVIEW,
        new_status=final,
        values={"error_message": None, "error_step": None, "active_run_key": None},
        extra_where=held,
    )
    if not n:
        db.rollback()
        raise PipelineConflict(project_id, lc.COMPLIANCE_REVIEW)
    db.commit()
    return final


# -------------------- public operations --------------------

def request_generation(db: Session, project_id: int, *, actor: Optional[str] = None) -> str:
    """
    Request-handler hand-off: validates inputs, moves the project into
    GENERATING_DOCS and returns the trigger token to start the run with.
    """
    project = _get_project(db, project_id)
    build_document_input(project)  # ProjectInputError before any step runs

    n = lc.compare_and_set_status(
        db,
        project_id,
        expected=lc.GENERATION_ENTRY,
        new_status=lc.GENERATING_DOCS,
        values={"error_message": None, "error_step": None},
        extra_where=(Project.active_run_key.is_(None),),
    )
    if not n:
        db.rollback()
        raise PipelineConflict(project_id, lc.GENERATION_ENTRY)

    token = new_trigger_token()
    audit_project(db, project, "project.generation_requested", actor=actor, after={"triggered_at": token})
    db.commit()
    return token


def trigger(db: Session, project_id: int, triggered_at: str, deps: PipelineDeps) -> TriggerResult:
    existing = db.scalar(
        select(PipelineRun).where(PipelineRun.project_id == project_id, PipelineRun.triggered_at == triggered_at)
    )
    if existing is not None:
        log.info("pipeline_trigger_duplicate", extra={"project_id": project_id, "run_key": _run_key(project_id, triggered_at)})
        if existing.status == "running":
            # redelivery after a worker crash: the original run will never finish
            project = db.get(Project, int(project_id))
            if project is not None and _close_if_stale(db, existing, project.module, deps, datetime.utcnow()):
                db.refresh(existing)
        return _result_from_run(existing, idempotent=True)

    project = db.get(Project, int(project_id))
    if project is None:
        log.warning("pipeline_project_missing", extra={"project_id": project_id})
        return TriggerResult(project_id, triggered_at, "skipped", error_message="project not found")

    run = PipelineRun(project_id=project_id, triggered_at=triggered_at, status="running", started_at=datetime.utcnow())
    db.add(run)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent trigger with the same key won the insert
        db.rollback()
        run = db.scalar(
            select(PipelineRun).where(PipelineRun.project_id == project_id, PipelineRun.triggered_at == triggered_at)
        )
        return _result_from_run(run, idempotent=True)
    db.refresh(run)

    run_key = _run_key(project_id, triggered_at)
    if not lc.claim_project(db, project_id, run_key):
        db.rollback()
        _finish_run(db, run.id, status="skipped", docs=0)
        log.info("pipeline_trigger_skipped", extra={"project_id": project_id, "run_key": run_key})
        return TriggerResult(project_id, triggered_at, "skipped", run_id=run.id)
    db.commit()

    with log_context(project_id=project_id, run_key=run_key):
        return _execute(db, project_id, run.id, run_key, triggered_at, deps)


def _execute(db: Session, project_id: int, run_id: int, run_key: str, triggered_at: str, deps: PipelineDeps) -> TriggerResult:
    docs_generated = 0
    step: Optional[str] = "load_project"
    try:
        project = _get_project(db, project_id)
        inp = build_document_input(project, load_extractions(db, project_id))
        cfg = pipeline_config(inp.module)
        doc_types = filter_doc_types(inp)
        ctx = {"project_id": project_id, "org_id": inp.org_id, "project_module": inp.module, "run_key": run_key}
        log.info("pipeline_run_started", extra={**ctx, "status": f"{len(doc_types)} docs"})

        for doc_type in doc_types:
            step = doc_type
            version = next_version(db, project_id, doc_type)
            key = artifact_key(inp.module, project_id, doc_type, version)
            db.rollback()  # end the read transaction; nothing is held across the unit

            started = time.monotonic()
            try:
                result = _execute_unit(inp, doc_type, key, deps)
            except InvariantViolation:
                raise
            except Exception as e:
                if cfg.failure_policy is FailurePolicy.FAIL_FAST:
                    log.warning("pipeline_step_failed", extra={**ctx, "doc_type": doc_type}, exc_info=True)
                    lc.mark_error(db, project_id, step=doc_type, err=e, run_key=run_key)
                    db.commit()
                    _finish_run(db, run_id, status="error", docs=docs_generated, err=str(e) or type(e).__name__, step=doc_type)
                    return TriggerResult(
                        project_id, triggered_at, "error", run_id=run_id, docs_generated=docs_generated,
                        error_message=truncate_error(e, settings.error_message_max_len), error_step=doc_type,
                    )
                log.warning("pipeline_step_placeholder", extra={**ctx, "doc_type": doc_type, "version": version}, exc_info=True)
                failed_key = artifact_key(inp.module, project_id, doc_type, version, failed=True)
                _persist_placeholder(db, inp, doc_type, version, failed_key, e, deps)
                docs_generated += 1
                continue

            row = _persist_success(db, inp, doc_type, version, key, result)
            docs_generated += 1
            log.info(
                "pipeline_step_done",
                extra={
                    **ctx, "doc_type": doc_type, "version": version, "document_id": row.id,
                    "status": row.compliance_status, "elapsed_ms": int((time.monotonic() - started) * 1000),
                },
            )

        step = "finalize"
        final = _finalize(db, project_id, run_key)
    except InvariantViolation as e:
        db.rollback()
        log.error("pipeline_invariant_violation", extra={"project_id": project_id, "run_key": run_key, "doc_type": step}, exc_info=True)
        lc.mark_error(db, project_id, step=step, err=e, run_key=run_key)
        db.commit()
        _finish_run(db, run_id, status="error", docs=docs_generated, err=str(e), step=step)
        raise
    except Exception as e:
        db.rollback()
        log.exception("pipeline_run_failed", extra={"project_id": project_id, "run_key": run_key, "doc_type": step})
        lc.mark_error(db, project_id, step=step, err=e, run_key=run_key)
        db.commit()
        _finish_run(db, run_id, status="error", docs=docs_generated, err=str(e) or type(e).__name__, step=step)
        return TriggerResult(
            project_id, triggered_at, "error", run_id=run_id, docs_generated=docs_generated,
            error_message=truncate_error(e, settings.error_message_max_len), error_step=step,
        )

    run_status = "needs_review" if final == lc.NEEDS_REVIEW else "complete"
    _finish_run(db, run_id, status=run_status, docs=docs_generated)
    log.info("pipeline_run_finished", extra={"project_id": project_id, "run_key": run_key, "status": final})
    return TriggerResult(project_id, triggered_at, run_status, run_id=run_id, docs_generated=docs_generated)


def retry(
    db: Session,
    project_id: int,
    deps: PipelineDeps,
    *,
    actor: Optional[str] = None,
    run_inline: bool = True,
) -> RetryResult:
    """
    ERROR -> GENERATING_DOCS as one conditional update; the loser of two
    concurrent retries sees zero rows and gets PipelineConflict. The winner
    discards the previous run's outputs and starts over from the top.
    A project held by a run that lost its worker is moved to ERROR first.
    """
    project = _get_project(db, project_id)
    if project.status == lc.GENERATING_DOCS and recover_stale_run(db, project_id, deps):
        project = _get_project(db, project_id)
    before = {"status": project.status, "error_message": project.error_message, "error_step": project.error_step}

    n = lc.compare_and_set_status(
        db,
        project_id,
        expected=lc.ERROR,
        new_status=lc.GENERATING_DOCS,
        values={"error_message": None, "error_step": None, "active_run_key": None},
    )
    if not n:
        db.rollback()
        raise PipelineConflict(project_id, lc.ERROR, f"project {project_id} is not in ERROR status")

    cleanup = lc.reset_for_retry(db, project_id, deps.storage)
    token = new_trigger_token()
    audit_project(
        db,
        project,
        "project.retried",
        actor=actor,
        before=before,
        after={"status": lc.GENERATING_DOCS, "triggered_at": token, **cleanup},
    )
    db.commit()
    log.info("pipeline_retry_accepted", extra={"project_id": project_id, "run_key": _run_key(project_id, token)})

    run = trigger(db, project_id, token, deps) if run_inline else None
    return RetryResult(triggered_at=token, cleanup=cleanup, run=run)


def get_status(db: Session, project_id: int) -> dict[str, Any]:
    p = _get_project(db, project_id)
    out: dict[str, Any] = {"project_id": p.id, "status": p.status}
    if p.error_message:
        out["error_message"] = p.error_message
    if p.error_step:
        out["error_step"] = p.error_step
    return out


def get_documents(db: Session, project_id: int, *, current_only: bool = False) -> list[GeneratedDocument]:
    _get_project(db, project_id)
    if current_only:
        return current_documents(db, project_id)
    return list(
        db.scalars(
            select(GeneratedDocument)
            .where(GeneratedDocument.project_id == project_id)
            .order_by(GeneratedDocument.doc_type.asc(), GeneratedDocument.version.asc())
        ).all()
    )


def regenerate_document(
    db: Session,
    project_id: int,
    doc_type: str,
    deps: PipelineDeps,
    *,
    feedback: Optional[str] = None,
    actor: Optional[str] = None,
) -> GeneratedDocument:
    """
    New version of one doc type with reviewer feedback. The project is held
    for the duration, so it cannot overlap a full run; the previous version
    shows "regenerating" meanwhile and gets its status back afterwards.
    """
    project = _get_project(db, project_id)
    inp = build_document_input(project, load_extractions(db, project_id))
    if doc_type not in pipeline_config(inp.module).doc_types:
        raise ValueError(f"{doc_type} is not a {inp.module} document")

    hold = f"regen:{doc_type}:{uuid.uuid4().hex[:12]}"
    if not lc.claim_project(db, project_id, hold, statuses=(lc.COMPLETE, lc.NEEDS_REVIEW)):
        db.rollback()
        raise PipelineConflict(project_id, (lc.COMPLETE, lc.NEEDS_REVIEW), f"project {project_id} is busy or not reviewable")

    previous = current_document(db, project_id, doc_type)
    prev_id = previous.id if previous is not None else None
    prev_status = previous.status if previous is not None else None
    if previous is not None:
        previous.status = "regenerating"
        db.add(previous)
    db.commit()

    version = next_version(db, project_id, doc_type)
    key = artifact_key(inp.module, project_id, doc_type, version)
    db.rollback()

    try:
        result = _execute_unit(inp, doc_type, key, deps, feedback=feedback)
        row = _persist_success(db, inp, doc_type, version, key, result, feedback=feedback)
    finally:
        db.rollback()
        if prev_id is not None:
            db.execute(
                update(GeneratedDocument)
                .where(GeneratedDocument.id == prev_id, GeneratedDocument.status == "regenerating")
                .values(status=prev_status)
                .execution_options(synchronize_session=False)
            )
        lc.release_project(db, project_id, hold)
        db.commit()

    final = _aggregate_status(db, project_id)
    lc.compare_and_set_status(db, project_id, expected=(lc.COMPLETE, lc.NEEDS_REVIEW), new_status=final)
    audit_document(db, project, row, "document.regenerated", actor=actor, after={"feedback": feedback})
    db.commit()
    db.refresh(row)
    log.info("document_regenerated", extra={"project_id": project_id, "doc_type": doc_type, "version": version, "document_id": row.id})
    return row


def mark_reviewed(db: Session, document_id: int, *, actor: Optional[str] = None) -> GeneratedDocument:
    doc = db.get(GeneratedDocument, int(document_id))
    if doc is None:
        raise LookupError(f"document {document_id} not found")

    current = current_document(db, doc.project_id, doc.doc_type)
    if current is None or current.id != doc.id:
        raise PipelineConflict(doc.project_id, "current", f"document {document_id} is not the current version")

    n = db.execute(
        update(GeneratedDocument)
        .where(GeneratedDocument.id == doc.id, GeneratedDocument.status.in_(("draft", "flagged")))
        .values(status="reviewed", reviewed_by=actor, reviewed_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount
    if not n:
        db.rollback()
        raise PipelineConflict(doc.project_id, ("draft", "flagged"), f"document {document_id} cannot be reviewed from its status")

    project = db.get(Project, doc.project_id)
    audit_document(db, project, doc, "document.reviewed", actor=actor)
    db.commit()
    db.refresh(doc)
    return doc
