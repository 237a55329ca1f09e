# backend/docgen/routers/analysis.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_project
from ..db import get_db
from ..schemas import DscrIn, DscrOut
from ..services.analysis_service import analyze_project_dscr

router = APIRouter(prefix="/projects", tags=["analysis"])


@router.post("/{project_id}/analysis/dscr", response_model=DscrOut)
def dscr(
    project_id: int,
    payload: DscrIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    proj = require_project(db, project_id, p)
    out = analyze_project_dscr(
        db,
        proj,
        proposed_loan_payment=payload.proposed_loan_payment,
        proposed_rate=payload.proposed_rate,
        proposed_term=payload.proposed_term,
        loan_amount=payload.loan_amount,
    )
    return DscrOut(**out.to_dict())
