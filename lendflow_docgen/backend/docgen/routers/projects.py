# backend/docgen/routers/projects.py
from __future__ import annotations

import json
import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_project
from ..config import settings
from ..db import get_db, session_scope
from ..dependencies import get_pipeline_deps
from ..domain.audit import audit_project, project_history
from ..errors import InvariantViolation
from ..models import ExtractionRecord, Project
from ..schemas import (
    AuditEventOut,
    DocumentOut,
    ExtractionIn,
    ExtractionOut,
    GenerateOut,
    ProjectCreate,
    ProjectOut,
    ProjectStatusOut,
    RetryOut,
)
from ..services import pipeline_orchestrator as orch
from ..services.analysis_service import EXTRACTION_KINDS
from ..workers.pipeline_tasks import run_project_pipeline

log = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


def _run_inline(project_id: int, triggered_at: str, deps: orch.PipelineDeps) -> None:
    # background task: own session, outcome lands on the project row
    with session_scope() as db:
        try:
            orch.trigger(db, project_id, triggered_at, deps)
        except InvariantViolation:
            log.error("pipeline_inline_invariant", extra={"project_id": project_id, "run_key": f"{project_id}:{triggered_at}"})


def _launch(background: BackgroundTasks, project_id: int, triggered_at: str, deps: orch.PipelineDeps) -> str:
    mode = (settings.pipeline_execution or "inline").strip().lower()
    if mode == "celery":
        run_project_pipeline.delay(project_id=int(project_id), triggered_at=triggered_at)
        return "celery"
    background.add_task(_run_inline, int(project_id), triggered_at, deps)
    return "inline"


@router.post("", response_model=ProjectOut)
def create_project(
    payload: ProjectCreate,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    now = datetime.utcnow()
    proj = Project(
        org_id=p.org_id,
        module=payload.module,
        name=payload.name.strip(),
        counterparty_name=payload.counterparty_name.strip(),
        terms_json=json.dumps(payload.terms, sort_keys=True, default=str),
        created_at=now,
        updated_at=now,
    )
    db.add(proj)
    db.flush()
    audit_project(db, proj, "project.created", actor=p.email, after={"module": proj.module, "name": proj.name})
    db.commit()
    db.refresh(proj)
    return ProjectOut.model_validate(proj)


@router.get("/{project_id}", response_model=ProjectOut)
def get_project(project_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return ProjectOut.model_validate(require_project(db, project_id, p))


@router.get("/{project_id}/status", response_model=ProjectStatusOut)
def project_status(project_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    require_project(db, project_id, p)
    return ProjectStatusOut(**orch.get_status(db, project_id))


@router.post("/{project_id}/extractions", response_model=ExtractionOut)
def add_extraction(
    project_id: int,
    payload: ExtractionIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    require_project(db, project_id, p)
    if payload.kind not in EXTRACTION_KINDS:
        raise HTTPException(status_code=400, detail=f"kind must be one of {', '.join(EXTRACTION_KINDS)}")

    row = ExtractionRecord(
        project_id=int(project_id),
        source_document_id=payload.source_document_id,
        kind=payload.kind,
        data_json=json.dumps(payload.data, sort_keys=True, default=str),
        created_at=datetime.utcnow(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@router.post("/{project_id}/generate", response_model=GenerateOut)
def generate(
    project_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
    deps: orch.PipelineDeps = Depends(get_pipeline_deps),
):
    require_project(db, project_id, p)
    token = orch.request_generation(db, project_id, actor=p.email)
    execution = _launch(background, project_id, token, deps)
    return GenerateOut(project_id=project_id, status="GENERATING_DOCS", triggered_at=token, execution=execution)


@router.post("/{project_id}/retry", response_model=RetryOut)
def retry(
    project_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
    deps: orch.PipelineDeps = Depends(get_pipeline_deps),
):
    require_project(db, project_id, p)
    out = orch.retry(db, project_id, deps, actor=p.email, run_inline=False)
    _launch(background, project_id, out.triggered_at, deps)
    return RetryOut(project_id=project_id, triggered_at=out.triggered_at, cleanup=out.cleanup)


@router.get("/{project_id}/documents", response_model=list[DocumentOut])
def list_documents(
    project_id: int,
    current_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    require_project(db, project_id, p)
    return [DocumentOut.model_validate(d) for d in orch.get_documents(db, project_id, current_only=current_only)]


@router.get("/{project_id}/history", response_model=list[AuditEventOut])
def history(project_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    require_project(db, project_id, p)
    return [AuditEventOut.model_validate(e) for e in project_history(db, project_id)]
