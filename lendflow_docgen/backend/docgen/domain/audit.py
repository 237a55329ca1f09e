# backend/docgen/domain/audit.py
"""
Append-only audit trail for state changes a reviewer may need to explain:
project creation, generation requests, retries, regenerations, sign-offs.
Writers add the row to the caller's session and never commit, so the audit
row lands in the same transaction as the change it describes.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import AuditEvent, GeneratedDocument, Project


def _dumps(v: Optional[dict[str, Any]]) -> Optional[str]:
    return None if v is None else json.dumps(v, sort_keys=True, default=str)


def audit_write(
    db: Session,
    *,
    org_id: int,
    action: str,
    entity_type: str,
    entity_id: str | int,
    actor: Optional[str] = None,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    row = AuditEvent(
        org_id=org_id,
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=_dumps(before),
        after_json=_dumps(after),
        created_at=datetime.utcnow(),
    )
    db.add(row)
    return row


def audit_project(
    db: Session,
    project: Project,
    action: str,
    *,
    actor: Optional[str] = None,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    return audit_write(
        db,
        org_id=project.org_id,
        action=action,
        entity_type="Project",
        entity_id=project.id,
        actor=actor,
        before=before,
        after=after,
    )


def audit_document(
    db: Session,
    project: Project,
    doc: GeneratedDocument,
    action: str,
    *,
    actor: Optional[str] = None,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    return audit_write(
        db,
        org_id=project.org_id,
        action=action,
        entity_type="GeneratedDocument",
        entity_id=doc.id,
        actor=actor,
        before=before,
        after={"project_id": project.id, "doc_type": doc.doc_type, "version": doc.version, **(after or {})},
    )


def project_history(db: Session, project_id: int) -> list[AuditEvent]:
    """Project-level events in write order."""
    return list(
        db.scalars(
            select(AuditEvent)
            .where(AuditEvent.entity_type == "Project", AuditEvent.entity_id == str(project_id))
            .order_by(AuditEvent.id)
        )
    )
