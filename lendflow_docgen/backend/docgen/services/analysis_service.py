# backend/docgen/services/analysis_service.py
from __future__ import annotations

import json
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.dscr import DscrAnalysis, calculate_dscr
from ..domain.project_context import parse_terms
from ..models import ExtractionRecord, Project

EXTRACTION_KINDS = ("income", "bank_statement", "rental")


def load_extractions(db: Session, project_id: int) -> dict[str, Any]:
    """
    Latest record per kind. Bank statement payment lists are concatenated
    across records so multi-account uploads are all scanned for debt.
    """
    rows = db.scalars(
        select(ExtractionRecord)
        .where(ExtractionRecord.project_id == project_id)
        .order_by(ExtractionRecord.id.asc())
    ).all()

    out: dict[str, Any] = {}
    payments: list[Any] = []
    for r in rows:
        try:
            data = json.loads(r.data_json or "{}")
        except (TypeError, ValueError):
            continue
        if not isinstance(data, dict) or r.kind not in EXTRACTION_KINDS:
            continue
        if r.kind == "bank_statement":
            for k in ("regularPaymentsDetected", "regularPayments", "recurringDebits"):
                if isinstance(data.get(k), list):
                    payments.extend(data[k])
                    break
        out[r.kind] = data

    if payments:
        out["bank_statement"] = {**out.get("bank_statement", {}), "regularPaymentsDetected": payments}
    return out


def analyze_project_dscr(
    db: Session,
    project: Project,
    *,
    proposed_loan_payment: Optional[float] = None,
    proposed_rate: Optional[float] = None,
    proposed_term: Optional[int] = None,
    loan_amount: Optional[float] = None,
) -> DscrAnalysis:
    """
    Computed fresh on every call from the current extraction feed.
    Explicit overrides win over the project's stored terms.
    """
    try:
        raw = json.loads(project.terms_json or "{}")
    except (TypeError, ValueError):
        raw = {}
    terms = parse_terms(raw if isinstance(raw, dict) else {})
    ex = load_extractions(db, project.id)

    return calculate_dscr(
        income_analysis=ex.get("income"),
        bank_statement_data=ex.get("bank_statement"),
        rental_data=ex.get("rental"),
        proposed_loan_payment=proposed_loan_payment if proposed_loan_payment is not None else terms.monthly_payment,
        proposed_rate=proposed_rate if proposed_rate is not None else terms.interest_rate,
        proposed_term=proposed_term if proposed_term is not None else (terms.amortization_months or terms.term_months),
        loan_amount=loan_amount if loan_amount is not None else terms.approved_amount,
    )
