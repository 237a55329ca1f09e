# backend/docgen/auth.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .models import Organization, Project


@dataclass(frozen=True)
class Principal:
    org_id: int
    org_slug: str
    email: str


def _resolve_org(db: Session, org_slug: str) -> Organization:
    org = db.scalar(select(Organization).where(Organization.slug == org_slug))
    if org is not None:
        return org

    org = Organization(slug=org_slug, name=org_slug, created_at=datetime.utcnow())
    db.add(org)
    try:
        db.commit()
    except IntegrityError:
        # provisioned by a concurrent request
        db.rollback()
        return db.scalar(select(Organization).where(Organization.slug == org_slug))
    db.refresh(org)
    return org


def get_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    """
    Dev header auth: the org slug header selects (and auto-provisions) the
    tenant, the email header names the actor recorded on audit events.
    """
    org_slug = (request.headers.get(settings.dev_header_org_slug) or "").strip()
    if not org_slug:
        raise HTTPException(status_code=401, detail=f"Missing {settings.dev_header_org_slug} (active org context).")

    email = (request.headers.get(settings.dev_header_user_email) or "").strip().lower()
    if not email:
        raise HTTPException(status_code=401, detail=f"Missing {settings.dev_header_user_email} for dev auth")

    org = _resolve_org(db, org_slug)
    return Principal(org_id=int(org.id), org_slug=str(org.slug), email=email)


def require_project(db: Session, project_id: int, p: Principal) -> Project:
    """Org-scoped lookup; other tenants' projects are indistinguishable from missing ones."""
    proj = db.get(Project, int(project_id))
    if proj is None or int(proj.org_id) != int(p.org_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return proj
