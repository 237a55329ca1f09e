# backend/docgen/services/document_versions.py
from __future__ import annotations

import json
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..domain.findings import ComplianceCheck, Finding, VerificationIssue
from ..errors import VersionConflict
from ..models import GeneratedDocument


def _dumps(v: Any) -> str:
    return json.dumps(v, sort_keys=True, default=str)


def _loads(s: Optional[str], default: Any) -> Any:
    if not s:
        return default
    try:
        return json.loads(s)
    except (TypeError, ValueError):
        return default


def next_version(db: Session, project_id: int, doc_type: str) -> int:
    cur = db.scalar(
        select(func.max(GeneratedDocument.version)).where(
            GeneratedDocument.project_id == project_id,
            GeneratedDocument.doc_type == doc_type,
        )
    )
    return int(cur or 0) + 1


def current_document(db: Session, project_id: int, doc_type: str) -> Optional[GeneratedDocument]:
    return db.scalar(
        select(GeneratedDocument)
        .where(GeneratedDocument.project_id == project_id, GeneratedDocument.doc_type == doc_type)
        .order_by(GeneratedDocument.version.desc())
        .limit(1)
    )


def insert_document(
    db: Session,
    *,
    project_id: int,
    doc_type: str,
    version: int,
    storage_key: str,
    status: str,
    compliance_status: str,
    compliance_issues: Sequence[ComplianceCheck | Finding],
    verification_status: str,
    verification_issues: Sequence[VerificationIssue],
    checks_run: int = 0,
    checks_passed: int = 0,
    resolved_doc_type: Optional[str] = None,
    feedback: Optional[str] = None,
) -> GeneratedDocument:
    """
    Inserts one version and commits. The (project, doc_type, version) unique
    constraint backs allocation; losing that race is a VersionConflict.
    """
    row = GeneratedDocument(
        project_id=project_id,
        doc_type=doc_type,
        resolved_doc_type=resolved_doc_type,
        version=version,
        storage_key=storage_key,
        status=status,
        compliance_status=compliance_status,
        compliance_issues_json=_dumps([c.to_dict() for c in compliance_issues]),
        verification_status=verification_status,
        verification_issues_json=_dumps([i.to_dict() for i in verification_issues]),
        verification_checks_run=int(checks_run),
        verification_checks_passed=int(checks_passed),
        feedback=feedback,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise VersionConflict(project_id, doc_type, version) from e
    db.refresh(row)
    return row


def compliance_issues(row: GeneratedDocument) -> list[dict[str, Any]]:
    return _loads(row.compliance_issues_json, [])


def verification_issues(row: GeneratedDocument) -> list[dict[str, Any]]:
    return _loads(row.verification_issues_json, [])
