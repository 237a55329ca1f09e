# backend/docgen/routers/documents.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_project
from ..db import get_db
from ..dependencies import get_pipeline_deps
from ..documents.renderer import DOCX_CONTENT_TYPE
from ..models import GeneratedDocument
from ..schemas import DocumentOut, RegenerateIn
from ..services import pipeline_orchestrator as orch

router = APIRouter(prefix="/documents", tags=["documents"])


def _require_document(db: Session, document_id: int, p: Principal) -> GeneratedDocument:
    doc = db.get(GeneratedDocument, int(document_id))
    if doc is None:
        raise HTTPException(status_code=404, detail="Document not found")
    require_project(db, doc.project_id, p)
    return doc


@router.get("/{document_id}", response_model=DocumentOut)
def get_document(document_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return DocumentOut.model_validate(_require_document(db, document_id, p))


@router.get("/{document_id}/download")
def download(
    document_id: int,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
    deps: orch.PipelineDeps = Depends(get_pipeline_deps),
):
    doc = _require_document(db, document_id, p)
    data = deps.storage.get(doc.storage_key)
    filename = doc.storage_key.rsplit("/", 1)[-1]
    return Response(
        content=data,
        media_type=DOCX_CONTENT_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/{document_id}/regenerate", response_model=DocumentOut)
def regenerate(
    document_id: int,
    payload: RegenerateIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
    deps: orch.PipelineDeps = Depends(get_pipeline_deps),
):
    doc = _require_document(db, document_id, p)
    try:
        row = orch.regenerate_document(db, doc.project_id, doc.doc_type, deps, feedback=payload.feedback, actor=p.email)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return DocumentOut.model_validate(row)


@router.post("/{document_id}/review", response_model=DocumentOut)
def review(document_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    _require_document(db, document_id, p)
    return DocumentOut.model_validate(orch.mark_reviewed(db, document_id, actor=p.email))
