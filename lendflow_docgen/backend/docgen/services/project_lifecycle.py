# backend/docgen/services/project_lifecycle.py
"""
Project status transitions.

Every write that gates execution is a single conditional UPDATE whose
rowcount decides the outcome; nothing here reads a status and then writes
it back.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import StorageError, truncate_error
from ..models import ExtractionRecord, GeneratedDocument, Project, SourceDocument
from .storage import ArtifactStorage

log = logging.getLogger(__name__)

CREATED = "CREATED"
GENERATING_DOCS = "GENERATING_DOCS"
COMPLIANCE_REVIEW = "COMPLIANCE_REVIEW"
COMPLETE = "COMPLETE"
NEEDS_REVIEW = "NEEDS_REVIEW"
ERROR = "ERROR"

STATUSES = (CREATED, GENERATING_DOCS, COMPLIANCE_REVIEW, COMPLETE, NEEDS_REVIEW, ERROR)
# statuses from which a fresh generation may be requested
GENERATION_ENTRY = (CREATED, COMPLETE, NEEDS_REVIEW)


def compare_and_set_status(
    db: Session,
    project_id: int,
    *,
    expected: str | Iterable[str],
    new_status: str,
    values: Optional[dict] = None,
    extra_where: Iterable = (),
) -> int:
    """
    UPDATE projects SET status=new_status WHERE id=? AND status IN expected.
    Returns rows affected (0 or 1). Does not commit.
    """
    exp = (expected,) if isinstance(expected, str) else tuple(expected)
    stmt = (
        update(Project)
        .where(Project.id == int(project_id), Project.status.in_(exp), *extra_where)
        .values(status=new_status, updated_at=datetime.utcnow(), **(values or {}))
        .execution_options(synchronize_session=False)
    )
    res = db.execute(stmt)
    return int(res.rowcount or 0)


def claim_project(db: Session, project_id: int, run_key: str, statuses: Iterable[str] = (GENERATING_DOCS,)) -> bool:
    """Project in one of statuses with no holder -> held by run_key."""
    n = db.execute(
        update(Project)
        .where(
            Project.id == int(project_id),
            Project.status.in_(tuple(statuses)),
            Project.active_run_key.is_(None),
        )
        .values(active_run_key=run_key, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount
    return bool(n)


def release_project(db: Session, project_id: int, run_key: str) -> None:
    db.execute(
        update(Project)
        .where(Project.id == int(project_id), Project.active_run_key == run_key)
        .values(active_run_key=None)
        .execution_options(synchronize_session=False)
    )


def mark_error(db: Session, project_id: int, *, step: Optional[str], err: BaseException | str, run_key: Optional[str] = None) -> None:
    """Any state -> ERROR. Releases the run hold when run_key is given."""
    values = {
        "status": ERROR,
        "error_message": truncate_error(err, settings.error_message_max_len),
        "error_step": step,
        "updated_at": datetime.utcnow(),
    }
    stmt = update(Project).where(Project.id == int(project_id))
    if run_key is not None:
        values["active_run_key"] = None
        stmt = stmt.where(Project.active_run_key == run_key)
    db.execute(stmt.values(**values).execution_options(synchronize_session=False))


def reset_for_retry(db: Session, project_id: int, storage: Optional[ArtifactStorage]) -> dict[str, int]:
    """
    Fresh-run cleanup after a successful ERROR -> GENERATING_DOCS swap:
    generated documents and extractions are deleted, sources go back to pending.
    Stored artifacts are removed best effort; a storage failure is logged, never raised.
    """
    keys = list(db.scalars(select(GeneratedDocument.storage_key).where(GeneratedDocument.project_id == project_id)))

    docs = db.execute(delete(GeneratedDocument).where(GeneratedDocument.project_id == project_id)).rowcount or 0
    extractions = db.execute(delete(ExtractionRecord).where(ExtractionRecord.project_id == project_id)).rowcount or 0
    sources = (
        db.execute(
            update(SourceDocument)
            .where(SourceDocument.project_id == project_id)
            .values(status="pending", doc_type=None, doc_year=None, page_count=None)
            .execution_options(synchronize_session=False)
        ).rowcount
        or 0
    )

    removed = 0
    if storage is not None:
        for key in keys:
            try:
                storage.delete(key)
                removed += 1
            except StorageError:
                log.warning("artifact_delete_failed", extra={"project_id": project_id, "storage_key": key}, exc_info=True)

    return {
        "documents_deleted": int(docs),
        "extractions_deleted": int(extractions),
        "sources_reset": int(sources),
        "artifacts_deleted": removed,
    }
